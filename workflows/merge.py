"""Merging scanned page images into one PDF, and in-place image rotation."""

import os
import tempfile
from typing import Callable, List, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from scanledger import ScanLedger
from .document_record import DocumentRecord
from .errors import FilesystemConflict, NotFound, ValidationError
from .path_allocator import PathAllocator, rename_without_clobber
from .registry import DocumentRegistry


RETIRED_PREFIX = "_delete_"
ROTATION_ANGLES = {"left": 90, "right": -90}


def _load_page(path: str) -> Image.Image:
    """Open an image as an RGB page (PDF pages can't carry alpha)."""
    with Image.open(path) as img:
        img.load()
        if img.mode == "RGB":
            return img.copy()
        if img.mode in ("RGBA", "LA", "P"):
            rgba = img.convert("RGBA")
            page = Image.new("RGB", rgba.size, (255, 255, 255))
            page.paste(rgba, mask=rgba.split()[-1])
            return page
        return img.convert("RGB")


def write_pdf(image_paths: Sequence[str], output_path: str) -> None:
    """Write images as full-bleed pages of a new PDF, in order.

    Each page has exactly the pixel size of its image, so nothing is scaled
    or padded. The file is written next to ``output_path`` and then moved
    into place without overwriting anything.

    Raises:
        ValidationError: If an image can't be decoded
        FilesystemConflict: If output_path appeared meanwhile or writing fails
    """
    try:
        pages = [_load_page(path) for path in image_paths]
    except (OSError, UnidentifiedImageError) as e:
        raise ValidationError(f"Cannot read image for merge: {e}")

    fd, temp_path = tempfile.mkstemp(prefix=".merge-", suffix=".pdf",
                                     dir=os.path.dirname(output_path))
    os.close(fd)
    try:
        pages[0].save(temp_path, "PDF", save_all=True, append_images=pages[1:])
        rename_without_clobber(temp_path, output_path)
    except OSError as e:
        raise FilesystemConflict(f"Failed to write {output_path}: {e}")
    finally:
        for page in pages:
            page.close()
        if os.path.exists(temp_path):
            os.unlink(temp_path)


def rotate_image(path: str, direction: str) -> None:
    """Rotate an image file 90 degrees in place.

    EXIF data and the file's access/modification times are kept.

    Raises:
        ValidationError: If direction is not 'left' or 'right', or the file
            is not a readable image
    """
    if direction not in ROTATION_ANGLES:
        raise ValidationError(f"Invalid direction: {direction}. Must be 'left' or 'right'")
    stat = os.stat(path)
    try:
        with Image.open(path) as img:
            img.load()
            exif = img.info.get("exif")
            image_format = img.format
            rotated = img.rotate(ROTATION_ANGLES[direction], expand=True)
    except (OSError, UnidentifiedImageError) as e:
        raise ValidationError(f"Cannot rotate {os.path.basename(path)}: {e}")

    save_kwargs = {"format": image_format}
    if exif:
        save_kwargs["exif"] = exif
    if image_format == "JPEG":
        save_kwargs["quality"] = 95
    rotated.save(path, **save_kwargs)
    os.utime(path, (stat.st_atime, stat.st_mtime))


class MergeEngine:
    """Combines image records into one PDF record.

    Sources are not deleted: each one is renamed to ``_delete_<name>`` next
    to where it was, so the originals can be checked before removing them
    by hand.
    """

    def __init__(self, registry: DocumentRegistry,
                 log: Callable[[str], None] = ScanLedger.print_right,
                 activity: Callable[[str, str], None] = ScanLedger.print_left) -> None:
        self.registry = registry
        self._log = log
        self._activity = activity

    def _sources(self, ordered_ids: Sequence[str]) -> List[DocumentRecord]:
        if len(ordered_ids) < 2:
            raise ValidationError("At least 2 files are required to merge")
        if len(set(ordered_ids)) != len(ordered_ids):
            raise ValidationError("The same file was selected more than once")
        records = [self.registry.require(record_id) for record_id in ordered_ids]
        not_images = [r.filename for r in records if r.kind != "image"]
        if not_images:
            raise ValidationError(f"All files must be images: {', '.join(not_images)}")
        missing = [r.current_path for r in records if not os.path.exists(r.current_path)]
        if missing:
            raise NotFound(f"File(s) do not exist on disk: {', '.join(missing)}")
        return records

    def _retire(self, records: Sequence[DocumentRecord], allocator: PathAllocator,
                merged_path: str) -> List[str]:
        """Rename every source to _delete_<name>; undo everything on failure."""
        retired: List[Tuple[str, str]] = []
        try:
            for record in records:
                directory, name = os.path.split(record.current_path)
                target = allocator.allocate(os.path.join(directory, RETIRED_PREFIX + name))
                rename_without_clobber(record.current_path, target)
                retired.append((record.current_path, target))
        except FilesystemConflict:
            for original, target in reversed(retired):
                try:
                    os.rename(target, original)
                except OSError as e:
                    self._log(f"[red]Could not restore {original} from {target}: {e}[/red]")
            try:
                os.unlink(merged_path)
            except OSError as e:
                self._log(f"[red]Could not remove merged file {merged_path}: {e}[/red]")
            raise
        return [target for _, target in retired]

    def merge(self, ordered_ids: Sequence[str]) -> DocumentRecord:
        """Merge image records, in the given order, into one PDF record.

        Returns:
            The new 'new' generic record for the merged PDF

        Raises:
            ValidationError: Fewer than 2 ids, duplicates, or non-image records
            NotFound: Unknown id, or a source file missing on disk
            FilesystemConflict: Writing or retiring failed; disk is restored
        """
        records = self._sources(ordered_ids)
        first = records[0]
        allocator = PathAllocator(reserved=[r.current_path for r in self.registry.records()])

        stem = os.path.splitext(first.current_path)[0]
        output_path = allocator.allocate(stem + ".pdf")
        write_pdf([r.current_path for r in records], output_path)

        stat = os.stat(first.current_path)
        os.utime(output_path, (stat.st_atime, stat.st_mtime))

        retired = self._retire(records, allocator, output_path)

        merged = DocumentRecord.create(output_path, "pdf", document_type="generic")
        with self.registry.batch():
            for record in records:
                self.registry.remove(record.id)
            self.registry.add(merged)

        self._log(f"Successfully merged {len(records)} files into: {output_path}")
        self._activity(f"[green]Merged[/green] {len(records)} files",
                       f"  -> {os.path.basename(output_path)} "
                       f"(retired: {', '.join(os.path.basename(p) for p in retired)})")
        return merged
