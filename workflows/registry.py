"""Document registry: the durable ledger of every tracked file.

Records live in memory and are persisted as one JSON snapshot through
SnapshotStore. Every mutation holds a single re-entrant lock, so a save
never observes a half-applied change even when the TUI thread reads while a
batch runs on a worker thread.
"""

import os
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional

from scanledger import ScanLedger
from .document_record import (
    DocumentRecord,
    STATUS_BAD,
    STATUS_NEW,
    parse_timestamp,
    utc_now,
)
from .errors import NotFound, ValidationError
from .snapshot_store import SnapshotStore


STATE_FILE_NAME = "state.json"


class DocumentRegistry:
    """In-memory record set backed by an atomic snapshot file.

    Mutations mark the registry dirty and save immediately, unless they run
    inside ``batch()``, which defers the save to the end of the block.
    """

    def __init__(self, state_dir: str, backup_count: int = 5,
                 log: Callable[[str], None] = ScanLedger.print_right) -> None:
        self.state_dir = os.path.abspath(state_dir)
        self.path = os.path.join(self.state_dir, STATE_FILE_NAME)
        self._store = SnapshotStore(self.path, "records", "lastRun",
                                    backup_count=backup_count, log=log)
        self._log = log
        self._lock = threading.RLock()
        self._records: List[DocumentRecord] = []
        self._last_run: str = utc_now()
        self._batch_depth = 0
        self._dirty = False

    # =========================================================================
    # Persistence
    # =========================================================================

    def load(self) -> None:
        """Load the snapshot, creating or recovering it as needed."""
        with self._lock:
            result = self._store.load(DocumentRecord.from_dict)
            self._dirty = False
            self._records = self._dedupe(result.items)
            self._last_run = result.stamp or utc_now()
            if result.source == "missing":
                self._log("No state file found, creating new state file")
                self.save()
            elif result.recovered:
                self._log(f"[yellow]Registry recovered ({result.source}): "
                          f"{len(self._records)} record(s)[/yellow]")
                self.save()
            else:
                self._log(f"Loaded {len(self._records)} record(s) from {self.path}")
                if self._dirty:
                    self.save()

    def save(self) -> None:
        """Write the snapshot atomically (see SnapshotStore.write).

        Raises:
            PersistenceError: If writing fails; in-memory state stays as is
                and remains dirty so the next save retries.
        """
        with self._lock:
            self._last_run = utc_now()
            self._store.write([record.to_dict() for record in self._records], self._last_run)
            self._dirty = False

    @contextmanager
    def batch(self) -> Iterator["DocumentRegistry"]:
        """Defer saves until the outermost batch block exits."""
        with self._lock:
            self._batch_depth += 1
            try:
                yield self
            finally:
                self._batch_depth -= 1
                if self._batch_depth == 0 and self._dirty:
                    self.save()

    def _changed(self) -> None:
        self._dirty = True
        if self._batch_depth == 0:
            self.save()

    def _dedupe(self, records: List[DocumentRecord]) -> List[DocumentRecord]:
        """Drop records whose id or currentPath repeats an earlier one."""
        seen_ids = set()
        seen_paths = set()
        unique = []
        for record in records:
            if record.id in seen_ids or record.current_path in seen_paths:
                self._log(f"[yellow]Dropping duplicate record for {record.current_path}[/yellow]")
                self._dirty = True
                continue
            seen_ids.add(record.id)
            seen_paths.add(record.current_path)
            unique.append(record)
        return unique

    @property
    def last_run(self) -> str:
        return self._last_run

    @property
    def backups(self) -> List[str]:
        return self._store.backups()

    # =========================================================================
    # Queries
    # =========================================================================

    def records(self) -> List[DocumentRecord]:
        """Snapshot copy of the record list, safe to iterate from any thread."""
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def get_by_id(self, record_id: str) -> Optional[DocumentRecord]:
        with self._lock:
            return next((r for r in self._records if r.id == record_id), None)

    def get_by_path(self, path: str) -> Optional[DocumentRecord]:
        with self._lock:
            return next((r for r in self._records if r.current_path == path), None)

    def require(self, record_id: str) -> DocumentRecord:
        """Return the record or raise NotFound."""
        record = self.get_by_id(record_id)
        if record is None:
            raise NotFound(f"Record not found: {record_id}")
        return record

    def is_known(self, path: str) -> bool:
        return self.get_by_path(path) is not None

    def records_since(self, since: str) -> List[DocumentRecord]:
        """Records created or modified after the given ISO-8601 timestamp."""
        try:
            cutoff: datetime = parse_timestamp(since)
        except ValueError:
            raise ValidationError(f"Invalid timestamp: {since}")
        with self._lock:
            return [r for r in self._records if r.modified_since(cutoff)]

    def counts(self) -> Dict[str, int]:
        """Record counts per status plus 'renamed' and 'total'."""
        with self._lock:
            counts = {"new": 0, "analyzed": 0, "bad": 0, "renamed": 0,
                      "total": len(self._records)}
            for record in self._records:
                counts[record.status] += 1
                if record.is_renamed:
                    counts["renamed"] += 1
            return counts

    # =========================================================================
    # Mutations
    # =========================================================================

    def add(self, record: DocumentRecord) -> None:
        """Add a record.

        Raises:
            ValidationError: If another record already has this path or id
        """
        with self._lock:
            if self.get_by_path(record.current_path) is not None:
                raise ValidationError(f"File already known: {record.current_path}")
            if self.get_by_id(record.id) is not None:
                raise ValidationError(f"Duplicate record id: {record.id}")
            self._records.append(record)
            self._changed()

    def update(self, record_id: str, mutate: Callable[[DocumentRecord], None]) -> DocumentRecord:
        """Apply ``mutate`` to a record under the lock and persist it.

        Raises:
            NotFound: If the id is unknown
        """
        with self._lock:
            record = self.require(record_id)
            mutate(record)
            self._changed()
            return record

    def set_current_path(self, record_id: str, new_path: str) -> DocumentRecord:
        """Point a record at its new on-disk location.

        Raises:
            NotFound: If the id is unknown
            ValidationError: If another live record already owns new_path
        """
        with self._lock:
            owner = self.get_by_path(new_path)
            if owner is not None and owner.id != record_id:
                raise ValidationError(f"Path already tracked by another record: {new_path}")

            def move(record: DocumentRecord) -> None:
                record.current_path = new_path
                record.touch()

            return self.update(record_id, move)

    def mark_modified(self, record_id: str) -> None:
        """Stamp lastModifiedAt only."""
        self.update(record_id, lambda record: record.touch())

    def remove(self, record_id: str) -> DocumentRecord:
        """Remove one record.

        Raises:
            NotFound: If the id is unknown
        """
        with self._lock:
            record = self.require(record_id)
            self._records.remove(record)
            self._log(f"Removed record {record_id} ({record.filename})")
            self._changed()
            return record

    def _remove_where(self, predicate: Callable[[DocumentRecord], bool]) -> List[DocumentRecord]:
        with self._lock:
            kept: List[DocumentRecord] = []
            removed: List[DocumentRecord] = []
            for record in self._records:
                (removed if predicate(record) else kept).append(record)
            if removed:
                self._records = kept
                self._changed()
            return removed

    def remove_renamed(self) -> int:
        """Forget records whose file has been renamed."""
        removed = self._remove_where(lambda r: r.is_renamed)
        self._log(f"Removed {len(removed)} renamed file(s) from state")
        return len(removed)

    def remove_not_analyzed(self) -> int:
        """Forget records that are still new or bad."""
        removed = self._remove_where(lambda r: r.status in (STATUS_NEW, STATUS_BAD))
        self._log(f"Removed {len(removed)} not analyzed and bad file(s) from state")
        return len(removed)

    def remove_missing(self) -> int:
        """Forget records whose file no longer exists on disk."""
        removed = self._remove_where(lambda r: not os.path.exists(r.current_path))
        for record in removed:
            self._log(f"[yellow]File no longer exists, removing from state: "
                      f"{record.current_path}[/yellow]")
        return len(removed)

    def reset_bad(self) -> int:
        """Return every bad record to 'new'."""
        with self._lock:
            bad = [r for r in self._records if r.status == STATUS_BAD]
            for record in bad:
                record.reset()
            if bad:
                self._changed()
            self._log(f"Reset {len(bad)} bad file(s)")
            return len(bad)

    def clear(self) -> int:
        """Forget every record."""
        with self._lock:
            count = len(self._records)
            self._records = []
            self._changed()
            self._log("State reset to empty")
            return count
