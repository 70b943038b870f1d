"""Batch operations over the registry: scan, analyze and rename.

Each batch is one run of a small state machine::

    idle -> running -> completed | cancelled | failed

Items are processed one at a time. Cancellation is cooperative: the
CancellationToken is checked between items, never in the middle of one, so
every reported count reflects fully completed work.
"""

import copy
import os
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from models import LLM, LLMError
from scanledger import ScanLedger
from storage import FileInfo, find_files
from .analysis_cache import AnalysisCache, compute_sha256
from .document_record import DocumentRecord, STATUS_ANALYZED, STATUS_BAD, STATUS_NEW, fields_from_dict
from .errors import (
    ExternalServiceError,
    FilesystemConflict,
    LedgerError,
    PersistenceError,
    ValidationError,
)
from .filename_policy import differs_materially, propose, proposed_filename
from .path_allocator import PathAllocator, rename_without_clobber
from .rasterizer import PageRasterizer
from .registry import DocumentRegistry


RUN_IDLE = "idle"
RUN_RUNNING = "running"
RUN_COMPLETED = "completed"
RUN_CANCELLED = "cancelled"
RUN_FAILED = "failed"

DEFAULT_SCAN_BATCH_SIZE = 100


class CancellationToken:
    """Cooperative stop signal shared between a batch and its requester."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class RunProgress:
    """Snapshot of the current (or last) batch, polled by the UI."""
    operation: str = ""
    status: str = RUN_IDLE
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    current_item: str = ""
    message: str = ""

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "currentItem": self.current_item,
            "message": self.message,
        }


@dataclass
class ItemResult:
    id: str
    success: bool
    message: str = ""
    path: Optional[str] = None


@dataclass
class BatchResult:
    operation: str
    status: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    items: List[ItemResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed


class PipelineOrchestrator:
    """Runs scan/analyze/rename batches against one registry and cache.

    Args:
        registry: Loaded DocumentRegistry
        cache: Loaded AnalysisCache
        llm_factory: Zero-argument callable returning the vision LLM. Called
                     on first use so a missing API key only matters once
                     something actually needs analysis.
        rasterizer: PageRasterizer for PDFs and oversized images
        discover: File discovery function, ``find_files`` by default
        scan_batch_size: Registry is saved every this many new records
    """

    def __init__(self, registry: DocumentRegistry, cache: AnalysisCache,
                 llm_factory: Callable[[], LLM],
                 rasterizer: Optional[PageRasterizer] = None,
                 discover: Callable[..., List[FileInfo]] = find_files,
                 scan_batch_size: int = DEFAULT_SCAN_BATCH_SIZE,
                 log: Callable[[str], None] = ScanLedger.print_right,
                 activity: Callable[[str, str], None] = ScanLedger.print_left,
                 report_progress: Callable[[int, int], None] = ScanLedger.set_progress) -> None:
        self.registry = registry
        self.cache = cache
        self._llm_factory = llm_factory
        self._llm: Optional[LLM] = None
        self.rasterizer = rasterizer or PageRasterizer(log=log)
        self._discover = discover
        self.scan_batch_size = max(1, scan_batch_size)
        self._log = log
        self._activity = activity
        self._report_progress = report_progress
        self._progress_lock = threading.Lock()
        self._progress = RunProgress()

    # =========================================================================
    # Progress
    # =========================================================================

    def progress(self) -> RunProgress:
        with self._progress_lock:
            return copy.copy(self._progress)

    def _begin(self, operation: str, total: int) -> BatchResult:
        with self._progress_lock:
            self._progress = RunProgress(operation=operation, status=RUN_RUNNING, total=total)
        self._report_progress(0, total)
        return BatchResult(operation=operation, status=RUN_RUNNING, total=total)

    def _set_current(self, label: str) -> None:
        with self._progress_lock:
            self._progress.current_item = label

    def _record(self, batch: BatchResult, item: ItemResult) -> None:
        batch.items.append(item)
        if item.success:
            batch.succeeded += 1
        else:
            batch.failed += 1
        with self._progress_lock:
            self._progress.succeeded = batch.succeeded
            self._progress.failed = batch.failed
            self._progress.message = item.message
        self._report_progress(batch.processed, batch.total)

    def _finish(self, batch: BatchResult, status: str, message: str = "") -> BatchResult:
        batch.status = status
        with self._progress_lock:
            self._progress.status = status
            self._progress.current_item = ""
            if message:
                self._progress.message = message
        summary = (f"{batch.operation}: {batch.succeeded} succeeded, "
                   f"{batch.failed} failed of {batch.total} ({status})")
        color = "green" if status == RUN_COMPLETED and not batch.failed else "yellow"
        self._log(f"[{color}]{summary}[/{color}]")
        return batch

    @staticmethod
    def _should_stop(token: Optional[CancellationToken]) -> bool:
        return token is not None and token.cancelled

    # =========================================================================
    # Scan
    # =========================================================================

    def _report_known(self, record: DocumentRecord) -> None:
        if record.status == STATUS_NEW:
            self._log(f"Not analyzed: {record.filename}")
        elif record.status == STATUS_BAD or record.fields is None:
            self._log(f"Incomplete data: {record.filename} ({record.error or 'no fields'})")
        else:
            missing = record.fields.missing_fields()
            if missing:
                self._log(f"Incomplete data: {record.filename} - missing {', '.join(missing)}")
            else:
                self._log(f"Complete data: {record.filename}")

    def scan(self, folders: Iterable[str],
             token: Optional[CancellationToken] = None) -> BatchResult:
        """Register every supported file under ``folders`` not yet known.

        Records whose file disappeared are dropped first. The registry is
        saved every ``scan_batch_size`` new records and after the last one.
        """
        self.registry.remove_missing()
        files = self._discover(list(folders), log=self._log)

        new_files: List[FileInfo] = []
        for info in files:
            record = self.registry.get_by_path(info.full_path)
            if record is None:
                new_files.append(info)
            else:
                self._report_known(record)

        batch = self._begin("scan", len(new_files))
        status = RUN_COMPLETED
        try:
            with self.registry.batch():
                for index, info in enumerate(new_files):
                    if self._should_stop(token):
                        status = RUN_CANCELLED
                        break
                    self._set_current(info.name)
                    record = DocumentRecord.create(info.full_path, info.kind or "pdf")
                    try:
                        self.registry.add(record)
                    except ValidationError as e:
                        self._log(f"[red]Error adding {info.full_path}: {e}[/red]")
                        self._record(batch, ItemResult(record.id, False, str(e), info.full_path))
                        continue
                    self._log(f"Adding {info.full_path}")
                    self._record(batch, ItemResult(record.id, True, "Added", info.full_path))
                    if (index + 1) % self.scan_batch_size == 0 or index == len(new_files) - 1:
                        self.registry.save()
        except LedgerError as e:
            self._finish(batch, RUN_FAILED, str(e))
            raise

        self._log(f"Scan found {len(files)} file(s), added {batch.succeeded}, "
                  f"{len(self.registry)} in state")
        return self._finish(batch, status)

    # =========================================================================
    # Analyze
    # =========================================================================

    @property
    def llm(self) -> LLM:
        """The vision LLM, created on first use.

        Raises:
            ExternalServiceError: If the provider can't be initialized
        """
        if self._llm is None:
            try:
                self._llm = self._llm_factory()
            except Exception as e:
                raise ExternalServiceError(f"Failed to initialize LLM provider: {e}")
        return self._llm

    def _page_images(self, record: DocumentRecord) -> List[str]:
        if record.kind == "pdf":
            pages = self.rasterizer.to_images(record.current_path)
        else:
            pages = [record.current_path]
        rescaled = self.rasterizer.rescale_images(pages)
        # Rendered pages that were replaced by a rescaled copy are no longer needed
        replaced = [p for p, r in zip(pages, rescaled) if p != r]
        self.rasterizer.cleanup(replaced)
        return rescaled

    def _extract(self, record: DocumentRecord):
        images = self._page_images(record)
        try:
            result = self.llm.extract(images, record.filename)
        except LLMError as e:
            raise ExternalServiceError(str(e))
        finally:
            self.rasterizer.cleanup(images)

        data = dict(result.fields)
        data["confidence"] = result.confidence
        data["extraction_status"] = result.extraction_status
        try:
            return fields_from_dict(result.document_type, data)
        except ValueError as e:
            raise ExternalServiceError(str(e))

    def _analyze_record(self, record: DocumentRecord, force: bool) -> ItemResult:
        """Analyze one record; failures mark it bad instead of raising."""
        self._set_current(record.filename)
        try:
            if not os.path.exists(record.current_path):
                raise FilesystemConflict(f"File no longer exists: {record.current_path}")
            content_hash = compute_sha256(record.current_path)

            cached = None if force else self.cache.get(content_hash)
            if cached is not None:
                fields = cached.to_fields()
                source = "cache"
            else:
                self._log(f"Processing file with LLM: {record.filename}")
                fields = self._extract(record)
                source = "llm"
                try:
                    self.cache.put(content_hash, record.current_path, fields)
                except PersistenceError as e:
                    self._log(f"[yellow]Could not cache analysis of {record.filename}: {e}[/yellow]")
        except (LedgerError, OSError) as e:
            message = f"Error analyzing file: {e}"
            self.registry.update(record.id, lambda r: r.mark_bad(message))
            self._log(f"[red]File marked as bad: {record.filename} ({e})[/red]")
            return ItemResult(record.id, False, message, record.current_path)

        self.registry.update(record.id, lambda r: r.mark_analyzed(fields))
        if source == "cache":
            self._log(f"[yellow]Retrieved cached analysis: {record.filename}[/yellow]")
        self._activity(f"[green]{fields.DOCUMENT_TYPE}[/green] {record.filename}",
                       f"  -> {proposed_filename(record) or '(no proposal)'}")
        return ItemResult(record.id, True, f"Analyzed ({source})", record.current_path)

    def analyze_one(self, record_id: str, force: bool = False) -> ItemResult:
        """Analyze a single record.

        A bad record stays bad until reset, unless ``force`` is given;
        ``force`` also skips the cache.

        Raises:
            NotFound: If the id is unknown
            ValidationError: If the record is bad and force is not set
        """
        record = self.registry.require(record_id)
        if record.status == STATUS_BAD and not force:
            raise ValidationError(
                f"File has been marked as bad after failed analysis: {record.filename}")
        return self._analyze_record(record, force)

    def analyze_all(self, token: Optional[CancellationToken] = None,
                    force: bool = False) -> BatchResult:
        """Analyze every new or bad record, one at a time.

        Each item is attempted once; the registry is saved after each one.
        """
        pending = [r for r in self.registry.records() if r.status in (STATUS_NEW, STATUS_BAD)]
        batch = self._begin("analyze", len(pending))
        for record in pending:
            if self._should_stop(token):
                self._log("Analysis stopped")
                return self._finish(batch, RUN_CANCELLED)
            current = self.registry.get_by_id(record.id)
            if current is None:
                self._record(batch, ItemResult(record.id, False, "Record no longer exists"))
                continue
            try:
                item = self._analyze_record(current, force)
            except LedgerError as e:
                self._finish(batch, RUN_FAILED, str(e))
                raise
            self._record(batch, item)
        return self._finish(batch, RUN_COMPLETED)

    # =========================================================================
    # Rename
    # =========================================================================

    def _allocator_for(self, records: Iterable[DocumentRecord]) -> PathAllocator:
        """Allocator that treats every live record's current path as taken."""
        return PathAllocator(reserved=[r.current_path for r in records])

    def _rename_record(self, record: DocumentRecord, allocator: PathAllocator) -> ItemResult:
        self._set_current(record.filename)
        old_path = record.current_path
        allocator.release(old_path)
        target = None
        try:
            target = allocator.allocate(propose(record))
            rename_without_clobber(old_path, target)
        except FilesystemConflict as e:
            if target is not None:
                allocator.release(target)
            allocator.reserve(old_path)
            self._log(f"[red]Failed to rename {record.filename}: {e}[/red]")
            return ItemResult(record.id, False, str(e), old_path)

        self.registry.set_current_path(record.id, target)
        self._activity(f"[green]Renamed[/green] {os.path.basename(old_path)}",
                       f"  -> {os.path.basename(target)}")
        return ItemResult(record.id, True, "Renamed", target)

    def rename_one(self, record_id: str) -> ItemResult:
        """Rename one analyzed record to its proposed name.

        Raises:
            NotFound: If the id is unknown
            ValidationError: If the record isn't analyzed or no rename is
                recommended
        """
        record = self.registry.require(record_id)
        if record.status != STATUS_ANALYZED:
            raise ValidationError(f"File has not been analyzed: {record.filename}")
        if not differs_materially(record):
            raise ValidationError(f"No rename recommended for {record.filename}")
        allocator = self._allocator_for(self.registry.records())
        return self._rename_record(record, allocator)

    def rename_all(self, token: Optional[CancellationToken] = None) -> BatchResult:
        """Rename every analyzed record whose proposal differs from its name.

        Items are processed in (proposed name, extension, current path) order
        so collision suffixes come out the same on every run.
        """
        records = self.registry.records()
        candidates = [r for r in records if r.status == STATUS_ANALYZED and differs_materially(r)]

        def sort_key(record: DocumentRecord):
            stem, ext = os.path.splitext(proposed_filename(record))
            return (stem, ext, record.current_path)

        candidates.sort(key=sort_key)
        allocator = self._allocator_for(records)
        batch = self._begin("rename", len(candidates))
        for record in candidates:
            if self._should_stop(token):
                self._log("Rename stopped")
                return self._finish(batch, RUN_CANCELLED)
            try:
                item = self._rename_record(record, allocator)
            except LedgerError as e:
                self._finish(batch, RUN_FAILED, str(e))
                raise
            self._record(batch, item)
        return self._finish(batch, RUN_COMPLETED)
