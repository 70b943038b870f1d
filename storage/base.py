"""Base classes for storage drivers.

This module defines the interface the document pipeline uses to discover
files. Only the local filesystem is supported; the abstraction keeps
discovery swappable in tests.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


# Extension allowlist for discovery, lowercase
PDF_EXTENSIONS = ('.pdf',)
IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png')
SUPPORTED_EXTENSIONS = PDF_EXTENSIONS + IMAGE_EXTENSIONS


def file_kind(name: str) -> Optional[str]:
    """Classify a filename as 'pdf' or 'image', or None if unsupported."""
    ext = os.path.splitext(name)[1].lower()
    if ext in PDF_EXTENSIONS:
        return "pdf"
    if ext in IMAGE_EXTENSIONS:
        return "image"
    return None


@dataclass
class FileInfo:
    """Information about a discovered file.

    Attributes:
        path: Relative path within the storage root
        name: Filename only (no directory)
        root: Absolute path of the storage root the file was found under
        size: File size in bytes (optional)
        kind: 'pdf' or 'image'
    """
    path: str
    name: str
    root: str = ""
    size: Optional[int] = None
    kind: Optional[str] = None

    @property
    def full_path(self) -> str:
        return os.path.join(self.root, self.path)


class StorageDriver(ABC):
    """Abstract base class for storage backends."""

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable name for this storage (e.g., '/scans (local)')."""
        pass

    @abstractmethod
    def list_files(self, path: str = "", recursive: bool = False,
                   extensions: Optional[Sequence[str]] = None) -> List[FileInfo]:
        """List files at the given path.

        Args:
            path: Relative path within storage (empty string for root)
            recursive: If True, include files in subdirectories
            extensions: Only include files with one of these extensions
                        (e.g., ('.pdf', '.png')), case-insensitive

        Returns:
            List of FileInfo objects, sorted by relative path

        Raises:
            StorageError: If path doesn't exist or can't be accessed
        """
        pass

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """Check if a file exists at the given path."""
        pass
