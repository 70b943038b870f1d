"""Error taxonomy for registry and pipeline operations."""


class LedgerError(Exception):
    """Base exception for document ledger operations."""
    pass


class NotFound(LedgerError):
    """Unknown record id or path."""
    pass


class ValidationError(LedgerError):
    """Malformed request, or nothing to do (e.g. no rename recommended)."""
    pass


class ExternalServiceError(LedgerError):
    """Extraction or rasterization failed after the collaborator's retries."""
    pass


class FilesystemConflict(LedgerError):
    """Target already exists, or the source vanished mid-operation."""
    pass


class StorageCorruption(LedgerError):
    """A snapshot file could not be parsed."""
    pass


class PersistenceError(LedgerError):
    """Writing a snapshot to disk failed."""
    pass
