"""Atomic, backup-protected JSON snapshot files.

Both the document registry and the analysis cache persist a single JSON
object of the form::

    {"version": 1, "<list_key>": [...], "<stamp_key>": "<ISO-8601>"}

Writes go to a temp file in the same directory which is fsynced and then
renamed over the canonical path, so readers only ever see the previous or
the next complete snapshot. Before every write the previous snapshot is
copied into ``backups/`` next to it; only the newest ``backup_count`` copies
are kept.

Loading a file that fails to parse runs the recovery policy:

1. the corrupt file is moved aside as ``<name>.corrupt-<timestamp>``
2. the newest backup that parses is used
3. otherwise the items preceding the parse error are salvaged
4. otherwise the snapshot starts empty

Every step is reported through ``log``.
"""

import json
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional

from scanledger import ScanLedger
from .errors import PersistenceError, StorageCorruption


SNAPSHOT_VERSION = 1
BACKUP_DIR_NAME = "backups"


def _file_timestamp() -> str:
    return datetime.now().strftime("%Y%m%dT%H%M%S%f")


@dataclass
class LoadResult:
    """Outcome of SnapshotStore.load().

    Attributes:
        items: Parsed list entries
        stamp: Value of the stamp key, if present
        source: 'file', 'missing', 'backup', 'truncated' or 'empty'
    """
    items: List[Any] = field(default_factory=list)
    stamp: Optional[str] = None
    source: str = "file"

    @property
    def recovered(self) -> bool:
        return self.source in ("backup", "truncated", "empty")


class SnapshotStore:
    """One snapshot file plus its rolling backups."""

    def __init__(self, path: str, list_key: str, stamp_key: str,
                 backup_count: int = 5,
                 log: Callable[[str], None] = ScanLedger.print_right) -> None:
        self.path = os.path.abspath(path)
        self.directory = os.path.dirname(self.path)
        self.backup_dir = os.path.join(self.directory, BACKUP_DIR_NAME)
        self.list_key = list_key
        self.stamp_key = stamp_key
        self.backup_count = max(0, backup_count)
        self._log = log

        name = os.path.basename(self.path)
        self._stem, self._ext = os.path.splitext(name)

    # =========================================================================
    # Writing
    # =========================================================================

    def write(self, items: List[Any], stamp: str) -> None:
        """Back up the current snapshot, then atomically replace it.

        Raises:
            PersistenceError: If the backup or the write fails. The
                canonical file is left untouched in that case.
        """
        payload = {
            "version": SNAPSHOT_VERSION,
            self.list_key: items,
            self.stamp_key: stamp,
        }
        try:
            os.makedirs(self.directory, exist_ok=True)
            self._backup_current()
        except OSError as e:
            raise PersistenceError(f"Failed to back up {self.path}: {e}")

        fd, temp_path = tempfile.mkstemp(prefix=f".{self._stem}.", suffix=".tmp",
                                         dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise PersistenceError(f"Failed to write {self.path}: {e}")

    def _backup_current(self) -> None:
        if self.backup_count == 0 or not os.path.exists(self.path):
            return
        os.makedirs(self.backup_dir, exist_ok=True)
        backup_path = os.path.join(self.backup_dir,
                                   f"{self._stem}.{_file_timestamp()}{self._ext}")
        shutil.copy2(self.path, backup_path)
        for stale in self.backups()[self.backup_count:]:
            os.unlink(stale)

    def backups(self) -> List[str]:
        """Backup file paths, newest first."""
        if not os.path.isdir(self.backup_dir):
            return []
        prefix = f"{self._stem}."
        names = [
            name for name in os.listdir(self.backup_dir)
            if name.startswith(prefix) and name.endswith(self._ext)
        ]
        names.sort(reverse=True)
        return [os.path.join(self.backup_dir, name) for name in names]

    # =========================================================================
    # Reading
    # =========================================================================

    def load(self, parse_item: Callable[[Any], Any] = lambda item: item) -> LoadResult:
        """Read the snapshot, recovering from corruption if needed.

        Args:
            parse_item: Converts one raw list entry; any KeyError, ValueError
                        or TypeError it raises marks the snapshot as corrupt.

        Returns:
            LoadResult; ``source`` is 'missing' when no file exists yet.

        Raises:
            PersistenceError: If the file exists but can't be read at all
        """
        try:
            with open(self.path, "rb") as f:
                raw = f.read()
        except FileNotFoundError:
            return LoadResult(source="missing")
        except OSError as e:
            raise PersistenceError(f"Failed to read {self.path}: {e}")

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            # A write cut off inside a multi-byte character
            self._log(f"[red]Corrupt snapshot {self.path}: invalid UTF-8: {e}[/red]")
            return self._recover(raw.decode("utf-8", errors="replace"), parse_item)

        try:
            items, stamp = self._parse(text, parse_item)
            return LoadResult(items=items, stamp=stamp, source="file")
        except StorageCorruption as e:
            self._log(f"[red]Corrupt snapshot {self.path}: {e}[/red]")
            return self._recover(text, parse_item)

    def _parse(self, text: str, parse_item: Callable[[Any], Any]):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise StorageCorruption(f"invalid JSON: {e}")
        if not isinstance(data, dict):
            raise StorageCorruption("top level is not an object")
        version = data.get("version", SNAPSHOT_VERSION)
        if version != SNAPSHOT_VERSION:
            raise StorageCorruption(f"unsupported version {version!r}")
        raw_items = data.get(self.list_key)
        if not isinstance(raw_items, list):
            raise StorageCorruption(f"missing '{self.list_key}' list")
        try:
            items = [parse_item(item) for item in raw_items]
        except (KeyError, ValueError, TypeError) as e:
            raise StorageCorruption(f"malformed entry: {e!r}")
        stamp = data.get(self.stamp_key)
        return items, stamp if isinstance(stamp, str) else None

    def _recover(self, text: str, parse_item: Callable[[Any], Any]) -> LoadResult:
        corrupt_path = f"{self.path}.corrupt-{_file_timestamp()}"
        try:
            os.replace(self.path, corrupt_path)
            self._log(f"[yellow]Moved corrupt snapshot to {corrupt_path}[/yellow]")
        except OSError as e:
            self._log(f"[red]Could not move corrupt snapshot aside: {e}[/red]")

        for backup_path in self.backups():
            try:
                with open(backup_path, "r", encoding="utf-8") as f:
                    items, stamp = self._parse(f.read(), parse_item)
            except (OSError, UnicodeDecodeError, StorageCorruption) as e:
                self._log(f"[yellow]Skipping unusable backup {backup_path}: {e}[/yellow]")
                continue
            self._log(f"[yellow]Recovered {len(items)} entries from backup "
                      f"{os.path.basename(backup_path)}[/yellow]")
            return LoadResult(items=items, stamp=stamp, source="backup")

        items = self._salvage_truncated(text, parse_item)
        if items:
            self._log(f"[yellow]Salvaged {len(items)} complete entries from truncated "
                      f"snapshot {os.path.basename(self.path)}[/yellow]")
            return LoadResult(items=items, source="truncated")

        self._log(f"[red]No recoverable data for {os.path.basename(self.path)}, "
                  f"starting empty[/red]")
        return LoadResult(source="empty")

    def _salvage_truncated(self, text: str, parse_item: Callable[[Any], Any]) -> List[Any]:
        """Decode list entries one by one up to the first broken one."""
        key_pos = text.find(f'"{self.list_key}"')
        if key_pos < 0:
            return []
        pos = text.find("[", key_pos)
        if pos < 0:
            return []
        pos += 1

        decoder = json.JSONDecoder()
        items: List[Any] = []
        while True:
            while pos < len(text) and text[pos] in " \t\r\n,":
                pos += 1
            if pos >= len(text) or text[pos] == "]":
                break
            try:
                raw, pos = decoder.raw_decode(text, pos)
                items.append(parse_item(raw))
            except (KeyError, ValueError, TypeError):
                break
        return items
