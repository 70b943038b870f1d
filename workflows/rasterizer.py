"""Page images for the vision model.

PDFs are rendered to one JPEG per page with pdf2image (poppler). Photos of
covers are often far larger than the model needs, so images are scaled down
to at most 300 DPI, assuming the physical size of a DVD cover.
"""

import os
import shutil
import tempfile
from typing import Callable, List, Sequence, Set

from pdf2image import convert_from_path
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
from PIL import Image, UnidentifiedImageError

from scanledger import ScanLedger
from .errors import ExternalServiceError


RENDER_DPI = 300
MAX_DPI = 300

# Standard DVD cover dimensions in inches
DVD_COVER_WIDTH_INCHES = 5.5
DVD_COVER_HEIGHT_INCHES = 7.5


class PageRasterizer:
    """Turns documents into page images and cleans up after itself.

    Only files created by this instance are ever deleted by ``cleanup``.
    """

    def __init__(self, dpi: int = RENDER_DPI,
                 log: Callable[[str], None] = ScanLedger.print_right) -> None:
        self.dpi = dpi
        self._log = log
        self._temp_dirs: Set[str] = set()

    def _make_temp_dir(self) -> str:
        temp_dir = tempfile.mkdtemp(prefix="scanledger-")
        self._temp_dirs.add(temp_dir)
        return temp_dir

    def _is_temp(self, path: str) -> bool:
        return os.path.dirname(path) in self._temp_dirs

    def to_images(self, pdf_path: str) -> List[str]:
        """Render every page of a PDF to a JPEG, in page order.

        Raises:
            ExternalServiceError: If poppler is missing or the PDF can't be read
        """
        temp_dir = self._make_temp_dir()
        try:
            paths = convert_from_path(
                pdf_path,
                dpi=self.dpi,
                output_folder=temp_dir,
                fmt="jpeg",
                output_file="page",
                paths_only=True,
            )
        except (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError, OSError) as e:
            self._remove_dir(temp_dir)
            raise ExternalServiceError(f"Failed to rasterize {os.path.basename(pdf_path)}: {e}")

        paths = sorted(str(p) for p in paths)
        if not paths:
            self._remove_dir(temp_dir)
            raise ExternalServiceError(f"No pages rendered from {os.path.basename(pdf_path)}")
        self._log(f"Rendered {len(paths)} page(s) from {os.path.basename(pdf_path)}")
        return paths

    @staticmethod
    def estimate_dpi(width: int, height: int) -> float:
        """DPI of an image if it were a DVD cover; the larger axis wins."""
        return max(width / DVD_COVER_WIDTH_INCHES, height / DVD_COVER_HEIGHT_INCHES)

    def rescale_image(self, image_path: str) -> str:
        """Return a downscaled copy above MAX_DPI, else the original path.

        Rescaling problems are logged and the original is used instead.
        """
        try:
            with Image.open(image_path) as img:
                width, height = img.size
                dpi = self.estimate_dpi(width, height)
                if dpi <= MAX_DPI:
                    return image_path

                scale = MAX_DPI / dpi
                new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
                self._log(f"Rescaling {os.path.basename(image_path)} from {width}x{height} "
                          f"({dpi:.0f} DPI) to {new_size[0]}x{new_size[1]}")

                target_dir = (os.path.dirname(image_path) if self._is_temp(image_path)
                              else self._make_temp_dir())
                stem, ext = os.path.splitext(os.path.basename(image_path))
                target = os.path.join(target_dir, f"{stem}_rescaled{ext}")
                resized = img.resize(new_size, Image.LANCZOS)
                if resized.mode not in ("RGB", "L") and ext.lower() in (".jpg", ".jpeg"):
                    resized = resized.convert("RGB")
                resized.save(target)
                return target
        except (OSError, UnidentifiedImageError, ValueError) as e:
            self._log(f"[yellow]Could not rescale {os.path.basename(image_path)}: {e}[/yellow]")
            return image_path

    def rescale_images(self, image_paths: Sequence[str]) -> List[str]:
        return [self.rescale_image(path) for path in image_paths]

    def cleanup(self, paths: Sequence[str]) -> None:
        """Delete temporary images made by this instance.

        A temp directory is removed once its last image is gone.
        """
        touched = set()
        for path in paths:
            if not self._is_temp(path):
                continue
            touched.add(os.path.dirname(path))
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
        for temp_dir in touched:
            if not os.listdir(temp_dir):
                self._remove_dir(temp_dir)

    def _remove_dir(self, temp_dir: str) -> None:
        shutil.rmtree(temp_dir, ignore_errors=True)
        self._temp_dirs.discard(temp_dir)
