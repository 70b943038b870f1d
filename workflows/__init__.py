"""Workflow layer for scanledger.

Contains the document ledger and the processing pipeline built on it:
- Registry: durable record of every tracked file
- Analysis cache: extraction results keyed by content hash
- Pipeline: scan, analyze and rename batches with cancellation
- Merge: combine page images into one PDF
- Service: facade used by the TUI and CLI
"""

from .errors import (
    LedgerError,
    NotFound,
    ValidationError,
    ExternalServiceError,
    FilesystemConflict,
    StorageCorruption,
    PersistenceError,
)
from .document_record import (
    DocumentRecord,
    DocumentFields,
    InvoiceFields,
    GenericFields,
    MovieCoverFields,
    fields_from_dict,
    STATUS_NEW,
    STATUS_ANALYZED,
    STATUS_BAD,
)
from .snapshot_store import SnapshotStore, LoadResult
from .registry import DocumentRegistry
from .analysis_cache import AnalysisCache, CacheEntry, compute_sha256
from .filename_policy import propose, sanitize_field
from .path_allocator import PathAllocator, rename_without_clobber
from .rasterizer import PageRasterizer
from .pipeline import (
    PipelineOrchestrator,
    CancellationToken,
    RunProgress,
    BatchResult,
    ItemResult,
)
from .merge import MergeEngine, rotate_image
from .service import LedgerService, OperationResult


__all__ = [
    # Errors
    'LedgerError',
    'NotFound',
    'ValidationError',
    'ExternalServiceError',
    'FilesystemConflict',
    'StorageCorruption',
    'PersistenceError',

    # Records
    'DocumentRecord',
    'DocumentFields',
    'InvoiceFields',
    'GenericFields',
    'MovieCoverFields',
    'fields_from_dict',
    'STATUS_NEW',
    'STATUS_ANALYZED',
    'STATUS_BAD',

    # Persistence
    'SnapshotStore',
    'LoadResult',
    'DocumentRegistry',
    'AnalysisCache',
    'CacheEntry',
    'compute_sha256',

    # Naming
    'propose',
    'sanitize_field',
    'PathAllocator',
    'rename_without_clobber',

    # Pipeline
    'PageRasterizer',
    'PipelineOrchestrator',
    'CancellationToken',
    'RunProgress',
    'BatchResult',
    'ItemResult',
    'MergeEngine',
    'rotate_image',

    # Facade
    'LedgerService',
    'OperationResult',
]
