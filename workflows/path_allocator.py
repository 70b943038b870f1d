"""Collision-free target paths for renames and merges."""

import os
from typing import Callable, Iterable, Optional, Set

from .errors import FilesystemConflict


DEFAULT_MAX_ATTEMPTS = 1000


class PathAllocator:
    """Hands out paths that are free on disk and not yet promised in this batch.

    The reserved set starts with paths that must never be handed out (for a
    rename batch: the current paths of every other live record) and grows
    with each allocation, so two items in the same batch can't be given the
    same target.
    """

    def __init__(self, reserved: Optional[Iterable[str]] = None,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 exists: Callable[[str], bool] = os.path.exists) -> None:
        self._reserved: Set[str] = set(reserved or ())
        self.max_attempts = max_attempts
        self._exists = exists

    def _is_free(self, path: str) -> bool:
        return path not in self._reserved and not self._exists(path)

    def allocate(self, candidate: str) -> str:
        """Reserve and return ``candidate`` or the first free ``<stem>_N<ext>``.

        Raises:
            FilesystemConflict: If no free name is found within max_attempts
        """
        if self._is_free(candidate):
            self._reserved.add(candidate)
            return candidate

        stem, ext = os.path.splitext(candidate)
        for counter in range(1, self.max_attempts + 1):
            path = f"{stem}_{counter}{ext}"
            if self._is_free(path):
                self._reserved.add(path)
                return path

        raise FilesystemConflict(
            f"Could not find a free name for {os.path.basename(candidate)} "
            f"after {self.max_attempts} attempts"
        )

    def reserve(self, path: str) -> None:
        self._reserved.add(path)

    def release(self, path: str) -> None:
        """Give back a reservation whose rename did not happen."""
        self._reserved.discard(path)

    def is_reserved(self, path: str) -> bool:
        return path in self._reserved


def rename_without_clobber(src: str, dest: str) -> None:
    """Rename src to dest, refusing to overwrite an existing file.

    Raises:
        FilesystemConflict: If src is gone, dest exists, or the OS refuses
    """
    if not os.path.exists(src):
        raise FilesystemConflict(f"Source file no longer exists: {src}")
    if os.path.exists(dest):
        raise FilesystemConflict(f"Target already exists: {dest}")
    try:
        os.rename(src, dest)
    except OSError as e:
        raise FilesystemConflict(f"Failed to rename {src} to {dest}: {e}")
