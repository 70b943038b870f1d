"""Storage driver abstraction for scanledger.

Provides file discovery over the local filesystem:
- LocalDriver: lists supported documents under a root folder
- find_files: recursive discovery across several folders

Usage:
    from storage import find_files

    for info in find_files(["/scans/inbox", "/scans/archive"]):
        print(info.full_path, info.kind)
"""

from .base import (
    StorageDriver,
    StorageError,
    FileInfo,
    file_kind,
    PDF_EXTENSIONS,
    IMAGE_EXTENSIONS,
    SUPPORTED_EXTENSIONS,
)
from .local import LocalDriver, find_files


__all__ = [
    'StorageDriver',
    'StorageError',
    'FileInfo',
    'file_kind',
    'PDF_EXTENSIONS',
    'IMAGE_EXTENSIONS',
    'SUPPORTED_EXTENSIONS',
    'LocalDriver',
    'find_files',
]
