"""DocumentRecord and extracted-field dataclasses for the document ledger."""

import dataclasses
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, ClassVar, Dict, List, Optional, Tuple, Type


STATUS_NEW = "new"
STATUS_ANALYZED = "analyzed"
STATUS_BAD = "bad"
STATUSES = (STATUS_NEW, STATUS_ANALYZED, STATUS_BAD)


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class DocumentFields:
    """Base for extracted fields. Subclasses are keyed by DOCUMENT_TYPE."""

    confidence: str = "low"              # low | medium | high
    extraction_status: str = "partial"   # success | partial | failed

    DOCUMENT_TYPE: ClassVar[str] = ""
    REQUIRED: ClassVar[Tuple[str, ...]] = ()

    def missing_fields(self) -> List[str]:
        """Names of required fields that are empty."""
        return [name for name in self.REQUIRED if not str(getattr(self, name) or "").strip()]

    def to_dict(self) -> Dict[str, str]:
        return dataclasses.asdict(self)

    def merged(self, updates: Dict[str, object]) -> "DocumentFields":
        """Return a copy with known keys from ``updates`` applied."""
        names = {f.name for f in dataclasses.fields(self)}
        changes = {key: _as_text(value) for key, value in updates.items() if key in names}
        return dataclasses.replace(self, **changes)


@dataclass
class InvoiceFields(DocumentFields):
    invoice_date: str = ""       # YYYYMMDD
    company_name: str = ""
    description: str = ""
    invoice_amount: str = ""
    invoice_currency: str = ""

    DOCUMENT_TYPE: ClassVar[str] = "invoice"
    REQUIRED: ClassVar[Tuple[str, ...]] = (
        "invoice_date", "company_name", "description", "invoice_amount",
    )


@dataclass
class GenericFields(DocumentFields):
    document_date: str = ""      # YYYYMMDD
    document_category: str = ""
    source: str = ""
    description: str = ""

    DOCUMENT_TYPE: ClassVar[str] = "generic"
    REQUIRED: ClassVar[Tuple[str, ...]] = (
        "document_date", "document_category", "description",
    )


@dataclass
class MovieCoverFields(DocumentFields):
    movie_title: str = ""
    type: str = ""               # movie | series
    season: str = ""
    disc_number: str = ""
    media_format: str = ""       # DVD | Blu-ray
    description: str = ""
    duration: str = ""           # HH:MM
    imdb_id: str = ""

    DOCUMENT_TYPE: ClassVar[str] = "movie_cover"
    REQUIRED: ClassVar[Tuple[str, ...]] = ("movie_title", "type", "media_format")


FIELD_TYPES: Dict[str, Type[DocumentFields]] = {
    InvoiceFields.DOCUMENT_TYPE: InvoiceFields,
    GenericFields.DOCUMENT_TYPE: GenericFields,
    MovieCoverFields.DOCUMENT_TYPE: MovieCoverFields,
}
DOCUMENT_TYPES = tuple(FIELD_TYPES)


def _as_text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def fields_from_dict(document_type: str, data: Dict[str, object]) -> DocumentFields:
    """Build the field variant for ``document_type`` from a plain dict.

    Unknown keys are ignored; missing keys keep their defaults.

    Raises:
        ValueError: If document_type is not one of DOCUMENT_TYPES
    """
    try:
        field_type = FIELD_TYPES[document_type]
    except KeyError:
        raise ValueError(f"Unknown document type: {document_type}")
    names = {f.name for f in dataclasses.fields(field_type)}
    return field_type(**{key: _as_text(value) for key, value in data.items() if key in names})


@dataclass
class DocumentRecord:
    """One tracked physical file in the ledger."""

    id: str                                    # uuid4 hex, immutable
    original_path: str                         # path when first discovered
    current_path: str                          # unique among live records
    kind: str = "pdf"                          # pdf | image
    document_type: str = "invoice"
    fields: Optional[DocumentFields] = None    # None unless analyzed
    status: str = STATUS_NEW
    error: Optional[str] = None
    created_at: str = ""
    last_modified_at: str = ""

    @classmethod
    def create(cls, path: str, kind: str, document_type: str = "invoice") -> "DocumentRecord":
        """Create a fresh 'new' record for a discovered file."""
        now = utc_now()
        return cls(
            id=uuid.uuid4().hex,
            original_path=path,
            current_path=path,
            kind=kind,
            document_type=document_type,
            created_at=now,
            last_modified_at=now,
        )

    @property
    def is_renamed(self) -> bool:
        return os.path.basename(self.current_path) != os.path.basename(self.original_path)

    @property
    def filename(self) -> str:
        return os.path.basename(self.current_path)

    def touch(self) -> None:
        self.last_modified_at = utc_now()

    def mark_analyzed(self, fields: DocumentFields) -> None:
        """Adopt extracted fields; clears any previous error."""
        self.document_type = fields.DOCUMENT_TYPE
        self.fields = fields
        self.status = STATUS_ANALYZED
        self.error = None
        self.touch()

    def mark_bad(self, error: str) -> None:
        """Record a failed analysis. Fields are dropped as untrusted."""
        self.fields = None
        self.status = STATUS_BAD
        self.error = error
        self.touch()

    def reset(self) -> None:
        """Return a bad record to 'new' so it can be analyzed again."""
        self.fields = None
        self.status = STATUS_NEW
        self.error = None
        self.touch()

    def modified_since(self, since: datetime) -> bool:
        stamp = self.last_modified_at or self.created_at
        return bool(stamp) and parse_timestamp(stamp) > since

    def display(self, output_fn: Callable[[str], None] = print) -> None:
        """Display record in UI format."""
        output_fn(f"File: {self.filename} ({self.kind}, {self.status})")
        if self.error:
            output_fn(f"Error: {self.error}")
        if self.fields is not None:
            output_fn(f"Type: {self.document_type} ({self.fields.confidence} confidence)")
            for key, value in self.fields.to_dict().items():
                if value and key not in ("confidence", "extraction_status"):
                    output_fn(f"  {key}: {value}")
        if self.is_renamed:
            output_fn(f"Originally: {os.path.basename(self.original_path)}")

    def to_dict(self) -> dict:
        """Convert to dict for the snapshot file."""
        data = {
            "id": self.id,
            "originalPath": self.original_path,
            "currentPath": self.current_path,
            "kind": self.kind,
            "documentType": self.document_type,
            "extractedFields": self.fields.to_dict() if self.fields is not None else None,
            "status": self.status,
            "createdAt": self.created_at,
            "lastModifiedAt": self.last_modified_at,
        }
        if self.error:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "DocumentRecord":
        """Create from a snapshot dict.

        Raises:
            KeyError/ValueError: If required keys are missing or invalid
        """
        status = data.get("status") or STATUS_NEW
        if status not in STATUSES:
            raise ValueError(f"Unknown status: {status}")
        document_type = data.get("documentType") or "invoice"
        raw_fields = data.get("extractedFields")
        fields = None
        if status == STATUS_ANALYZED and raw_fields:
            fields = fields_from_dict(document_type, raw_fields)
        return cls(
            id=data["id"],
            original_path=data["originalPath"],
            current_path=data["currentPath"],
            kind=data.get("kind") or "pdf",
            document_type=document_type,
            fields=fields,
            status=status,
            error=(data.get("error") or "Analysis failed") if status == STATUS_BAD else None,
            created_at=data.get("createdAt", ""),
            last_modified_at=data.get("lastModifiedAt") or data.get("createdAt", ""),
        )
