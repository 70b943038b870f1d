"""Filename proposals derived from extracted document fields.

``propose`` is a pure function: the same record always yields the same path,
and it never touches the clock, the filesystem or a random source. Collision
handling happens later, in PathAllocator.
"""

import os
import re
from typing import List

from .document_record import (
    DocumentRecord,
    GenericFields,
    InvoiceFields,
    MovieCoverFields,
)


DEFAULT_CURRENCY = "EUR"

_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*.,\x00-\x1f\x7f]')
_WHITESPACE = re.compile(r'\s+')
_UNDERSCORES = re.compile(r'_+')


def sanitize_field(value: str) -> str:
    """Make one field value safe for use inside a filename."""
    text = _ILLEGAL_CHARS.sub("_", str(value or ""))
    text = _WHITESPACE.sub("_", text)
    text = _UNDERSCORES.sub("_", text)
    return text.strip("_")


def _is_zero(value: str) -> bool:
    return value.strip() in ("", "0")


def _invoice_parts(fields: InvoiceFields) -> List[str]:
    parts = [
        sanitize_field(fields.invoice_date),
        sanitize_field(fields.company_name),
        sanitize_field(fields.description),
    ]
    amount = sanitize_field(fields.invoice_amount)
    if amount:
        currency = sanitize_field(fields.invoice_currency) or DEFAULT_CURRENCY
        parts.append(currency + amount)
    return [part for part in parts if part]


def _generic_parts(fields: GenericFields) -> List[str]:
    parts = [
        sanitize_field(fields.document_date),
        sanitize_field(fields.document_category),
        sanitize_field(fields.source),
        sanitize_field(fields.description),
    ]
    return [part for part in parts if part]


def _movie_cover_parts(fields: MovieCoverFields) -> List[str]:
    title = sanitize_field(fields.movie_title)
    if not title:
        return []
    parts = [title]
    if not _is_zero(fields.season):
        parts.append("S" + sanitize_field(fields.season))
    if not _is_zero(fields.disc_number):
        parts.append(sanitize_field(fields.disc_number))
    parts.append(sanitize_field(fields.media_format))
    parts.append(sanitize_field(fields.duration))
    return [part for part in parts if part]


def proposed_filename(record: DocumentRecord) -> str:
    """Bare proposed filename, or '' when no rename is recommended."""
    fields = record.fields
    if fields is None:
        return ""

    if isinstance(fields, InvoiceFields):
        stem = "-".join(_invoice_parts(fields))
    elif isinstance(fields, MovieCoverFields):
        stem = "-".join(_movie_cover_parts(fields))
    elif isinstance(fields, GenericFields):
        stem = "_".join(_generic_parts(fields))
    else:
        return ""

    ext = os.path.splitext(record.current_path)[1]
    filename = f"{stem}{ext}".strip()
    if not stem or not filename or filename == ext or filename.startswith("."):
        return ""
    return filename


def propose(record: DocumentRecord) -> str:
    """Propose a new path for the record, in the same directory.

    Returns:
        The proposed full path, or the record's current path unchanged when
        there are no usable fields.
    """
    filename = proposed_filename(record)
    if not filename:
        return record.current_path
    return os.path.join(os.path.dirname(record.current_path), filename)


def differs_materially(record: DocumentRecord) -> bool:
    """True if renaming the record to its proposal would change its name.

    A current name equal to the proposal plus a ``_N`` collision suffix
    counts as already renamed.
    """
    filename = proposed_filename(record)
    if not filename:
        return False
    current = record.filename
    if current == filename:
        return False
    stem, ext = os.path.splitext(filename)
    current_stem, current_ext = os.path.splitext(current)
    if current_ext == ext and re.fullmatch(re.escape(stem) + r"_\d+", current_stem):
        return False
    return True
