"""Local filesystem storage driver and file discovery."""

import os
from typing import Callable, Iterable, List, Optional, Sequence

from .base import StorageDriver, StorageError, FileInfo, SUPPORTED_EXTENSIONS, file_kind


class LocalDriver(StorageDriver):
    """Storage driver for local filesystem.

    All paths are relative to the root_path provided at construction.
    Absolute paths are accepted as well and used unchanged.
    """

    def __init__(self, root_path: str) -> None:
        """Initialize local storage driver.

        Args:
            root_path: Path to the root directory

        Raises:
            StorageError: If root_path doesn't exist
        """
        self.root_path = os.path.abspath(root_path)
        if not os.path.exists(self.root_path):
            raise StorageError(f"Directory does not exist: {self.root_path}")
        if not os.path.isdir(self.root_path):
            raise StorageError(f"Not a directory: {self.root_path}")

    @property
    def display_name(self) -> str:
        return f"{self.root_path} (local)"

    def _full_path(self, path: str) -> str:
        """Convert relative path to absolute path."""
        if not path:
            return self.root_path
        return os.path.join(self.root_path, path)

    def _file_info(self, abs_path: str) -> FileInfo:
        try:
            size = os.path.getsize(abs_path)
        except OSError:
            size = None
        name = os.path.basename(abs_path)
        return FileInfo(
            path=os.path.relpath(abs_path, self.root_path),
            name=name,
            root=self.root_path,
            size=size,
            kind=file_kind(name),
        )

    def list_files(self, path: str = "", recursive: bool = False,
                   extensions: Optional[Sequence[str]] = None) -> List[FileInfo]:
        """List files at the given path."""
        full_path = self._full_path(path)

        if not os.path.exists(full_path):
            raise StorageError(f"Path does not exist: {path}")
        if not os.path.isdir(full_path):
            raise StorageError(f"Not a directory: {path}")

        allowed = tuple(ext.lower() for ext in extensions) if extensions else None
        results = []

        if recursive:
            for root, dirs, files in os.walk(full_path):
                dirs.sort()
                for filename in files:
                    if allowed and not filename.lower().endswith(allowed):
                        continue
                    results.append(self._file_info(os.path.join(root, filename)))
        else:
            for filename in os.listdir(full_path):
                abs_path = os.path.join(full_path, filename)
                if not os.path.isfile(abs_path):
                    continue
                if allowed and not filename.lower().endswith(allowed):
                    continue
                results.append(self._file_info(abs_path))

        results.sort(key=lambda info: info.path)
        return results

    def file_exists(self, path: str) -> bool:
        """Check if a file exists at the given path."""
        return os.path.isfile(self._full_path(path))


def find_files(folders: Iterable[str],
               log: Optional[Callable[[str], None]] = None) -> List[FileInfo]:
    """Recursively discover supported documents under each folder.

    Folders that don't exist are reported through ``log`` and skipped so
    one bad entry in FOLDERS doesn't hide the others.
    """
    found: List[FileInfo] = []
    for folder in folders:
        try:
            driver = LocalDriver(folder)
            files = driver.list_files(recursive=True, extensions=SUPPORTED_EXTENSIONS)
        except StorageError as e:
            if log:
                log(f"[red]Error scanning folder {folder}: {e}[/red]")
            continue
        if log:
            log(f"Scanning {driver.display_name}: {len(files)} supported file(s)")
        found.extend(files)
    return found
