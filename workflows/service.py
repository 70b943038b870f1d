"""Facade used by the TUI and CLI.

Every mutating call returns an OperationResult instead of raising, so the
presentation layer only has to show ``message``. Only one mutating operation
runs at a time; a second request while one is in progress is refused.
Queries never wait for a running batch.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from scanledger import ScanLedger
from .analysis_cache import AnalysisCache
from .document_record import DocumentRecord, STATUSES, fields_from_dict
from .errors import LedgerError, NotFound, ValidationError
from .filename_policy import propose
from .merge import MergeEngine, rotate_image
from .pipeline import CancellationToken, PipelineOrchestrator, RunProgress
from .registry import DocumentRegistry


@dataclass
class OperationResult:
    success: bool
    message: str = ""
    data: Any = None


class Busy(LedgerError):
    """Another mutating operation is already running."""
    pass


class LedgerService:
    """Single entry point for everything the UI can ask for."""

    def __init__(self, registry: DocumentRegistry, cache: AnalysisCache,
                 orchestrator: PipelineOrchestrator, merge_engine: MergeEngine,
                 folders: Sequence[str],
                 log: Callable[[str], None] = ScanLedger.print_right) -> None:
        self.registry = registry
        self.cache = cache
        self.orchestrator = orchestrator
        self.merge_engine = merge_engine
        self.folders = list(folders)
        self._log = log
        self._run_lock = threading.Lock()
        self._token: Optional[CancellationToken] = None

    @contextmanager
    def _exclusive(self, token: Optional[CancellationToken] = None) -> Iterator[None]:
        if not self._run_lock.acquire(blocking=False):
            raise Busy("Another operation is already running")
        self._token = token
        try:
            yield
        finally:
            self._token = None
            self._run_lock.release()

    def _run(self, action: Callable[[], OperationResult]) -> OperationResult:
        try:
            with self._exclusive():
                return action()
        except LedgerError as e:
            self._log(f"[red]{e}[/red]")
            return OperationResult(False, str(e))

    def _run_batch(self, name: str, batch: Callable[[CancellationToken], Any]) -> OperationResult:
        token = CancellationToken()
        try:
            with self._exclusive(token):
                result = batch(token)
        except LedgerError as e:
            self._log(f"[red]{name} failed: {e}[/red]")
            return OperationResult(False, str(e))
        message = (f"{name} {result.status}: {result.succeeded} succeeded, "
                   f"{result.failed} failed")
        return OperationResult(True, message, result)

    @property
    def busy(self) -> bool:
        return self._run_lock.locked()

    # =========================================================================
    # Queries
    # =========================================================================

    def list_records(self, status: Optional[str] = None, document_type: Optional[str] = None,
                     since: Optional[str] = None) -> List[DocumentRecord]:
        """Records, optionally filtered. ``since`` is an ISO-8601 timestamp.

        Raises:
            ValidationError: If status or since is invalid
        """
        if status is not None and status not in STATUSES:
            raise ValidationError(f"Unknown status: {status}")
        records = self.registry.records_since(since) if since else self.registry.records()
        if status is not None:
            records = [r for r in records if r.status == status]
        if document_type is not None:
            records = [r for r in records if r.document_type == document_type]
        return records

    def get_record(self, record_id: str) -> Optional[DocumentRecord]:
        return self.registry.get_by_id(record_id)

    def propose_name(self, record_id: str) -> str:
        """Proposed path for a record (its current path if none).

        Raises:
            NotFound: If the id is unknown
        """
        return propose(self.registry.require(record_id))

    def progress(self) -> RunProgress:
        return self.orchestrator.progress()

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def counts(self) -> Dict[str, int]:
        return self.registry.counts()

    # =========================================================================
    # Batches
    # =========================================================================

    def scan(self) -> OperationResult:
        return self._run_batch("Scan", lambda token: self.orchestrator.scan(self.folders, token))

    def analyze_all(self, force: bool = False) -> OperationResult:
        return self._run_batch("Analysis",
                               lambda token: self.orchestrator.analyze_all(token, force=force))

    def rename_all(self) -> OperationResult:
        return self._run_batch("Rename", self.orchestrator.rename_all)

    def stop(self) -> OperationResult:
        """Ask the running batch to stop after its current item."""
        token = self._token
        if token is None:
            return OperationResult(False, "No operation is running")
        token.cancel()
        self._log("Stop requested, finishing current item")
        return OperationResult(True, "Stop requested")

    # =========================================================================
    # Single-record operations
    # =========================================================================

    def analyze_one(self, record_id: str, force: bool = False) -> OperationResult:
        def action() -> OperationResult:
            item = self.orchestrator.analyze_one(record_id, force=force)
            return OperationResult(item.success, item.message, self.registry.get_by_id(record_id))
        return self._run(action)

    def rename_one(self, record_id: str) -> OperationResult:
        def action() -> OperationResult:
            item = self.orchestrator.rename_one(record_id)
            return OperationResult(item.success, item.message, self.registry.get_by_id(record_id))
        return self._run(action)

    def merge(self, ordered_ids: Sequence[str]) -> OperationResult:
        def action() -> OperationResult:
            merged = self.merge_engine.merge(ordered_ids)
            return OperationResult(True, f"Merged {len(ordered_ids)} files into {merged.filename}",
                                   merged)
        return self._run(action)

    def rotate_images(self, record_ids: Sequence[str], direction: str) -> OperationResult:
        """Rotate image records 90 degrees 'left' or 'right' on disk."""
        def action() -> OperationResult:
            if not record_ids:
                raise ValidationError("No files selected")
            records = [self.registry.require(record_id) for record_id in record_ids]
            not_images = [r.filename for r in records if r.kind != "image"]
            if not_images:
                raise ValidationError(f"All files must be images: {', '.join(not_images)}")
            for record in records:
                try:
                    rotate_image(record.current_path, direction)
                except FileNotFoundError:
                    raise NotFound(f"File does not exist on disk: {record.current_path}")
                self.registry.mark_modified(record.id)
                self._log(f"Rotated {record.filename} {direction}")
            return OperationResult(True, f"Rotated {len(records)} image(s) {direction}",
                                   [r.id for r in records])
        return self._run(action)

    def update_fields(self, record_id: str, updates: Dict[str, Any],
                      document_type: Optional[str] = None) -> OperationResult:
        """Manually set extracted fields; the record becomes 'analyzed'.

        Updates are merged into the existing fields when the document type
        stays the same, otherwise they start a fresh field set.
        """
        def action() -> OperationResult:
            record = self.registry.require(record_id)
            target_type = document_type or record.document_type
            try:
                if record.fields is not None and record.fields.DOCUMENT_TYPE == target_type:
                    fields = record.fields.merged(updates)
                else:
                    fields = fields_from_dict(target_type, updates)
            except ValueError as e:
                raise ValidationError(str(e))
            updated = self.registry.update(record_id, lambda r: r.mark_analyzed(fields))
            self._log(f"Updated fields of {updated.filename}")
            return OperationResult(True, "Fields updated", updated)
        return self._run(action)

    # =========================================================================
    # Cleanup
    # =========================================================================

    def reset_bad(self) -> OperationResult:
        return self._run(lambda: self._count_result("Reset {} bad file(s)",
                                                    self.registry.reset_bad()))

    def remove_renamed(self) -> OperationResult:
        return self._run(lambda: self._count_result("Removed {} renamed file(s)",
                                                    self.registry.remove_renamed()))

    def remove_not_analyzed(self) -> OperationResult:
        return self._run(lambda: self._count_result("Removed {} not analyzed file(s)",
                                                    self.registry.remove_not_analyzed()))

    def remove_missing(self) -> OperationResult:
        return self._run(lambda: self._count_result("Removed {} missing file(s)",
                                                    self.registry.remove_missing()))

    def clear(self) -> OperationResult:
        return self._run(lambda: self._count_result("Cleared {} record(s)",
                                                    self.registry.clear()))

    def clear_cache(self) -> OperationResult:
        return self._run(lambda: self._count_result("Cleared {} cache entries",
                                                    self.cache.clear()))

    def purge_cache(self, analyzed_after: Optional[str] = None) -> OperationResult:
        """Remove cached PDF analyses, optionally only those after a date."""
        return self._run(lambda: self._count_result(
            "Removed {} PDF entries from cache",
            self.cache.purge("pdf", analyzed_after=analyzed_after)))

    @staticmethod
    def _count_result(template: str, count: int) -> OperationResult:
        return OperationResult(True, template.format(count), count)
