"""Content-addressed cache of extraction results.

Entries are keyed by the SHA-256 of a file's bytes, so a renamed or moved
file is recognised without calling the vision model again. The cache lives
in its own snapshot file next to the registry and shares its atomic write,
backup and recovery behaviour (see snapshot_store).
"""

import hashlib
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from scanledger import ScanLedger
from storage import file_kind
from .document_record import DocumentFields, fields_from_dict, parse_timestamp, utc_now
from .errors import ValidationError
from .snapshot_store import SnapshotStore


CACHE_FILE_NAME = "analysis-cache.json"


def compute_sha256(file_path: str) -> str:
    """Compute SHA256 hash of a file."""
    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256_hash.update(chunk)
    return sha256_hash.hexdigest()


@dataclass
class CacheEntry:
    """One cached extraction, keyed by content hash."""
    content_hash: str
    source_path: str
    document_type: str
    extracted_fields: Dict[str, str] = field(default_factory=dict)
    confidence: str = "low"
    extraction_status: str = "partial"
    cached_at: str = ""

    def to_fields(self) -> DocumentFields:
        """Rebuild the typed field variant for this entry."""
        data = dict(self.extracted_fields)
        data["confidence"] = self.confidence
        data["extraction_status"] = self.extraction_status
        return fields_from_dict(self.document_type, data)

    def to_dict(self) -> dict:
        return {
            "contentHash": self.content_hash,
            "sourcePath": self.source_path,
            "documentType": self.document_type,
            "extractedFields": self.extracted_fields,
            "confidence": self.confidence,
            "extractionStatus": self.extraction_status,
            "cachedAt": self.cached_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CacheEntry":
        fields = data.get("extractedFields") or {}
        if not isinstance(fields, dict):
            raise ValueError("extractedFields is not an object")
        return cls(
            content_hash=data["contentHash"],
            source_path=data.get("sourcePath", ""),
            document_type=data["documentType"],
            extracted_fields={str(k): "" if v is None else str(v) for k, v in fields.items()},
            confidence=data.get("confidence") or "low",
            extraction_status=data.get("extractionStatus") or "partial",
            cached_at=data.get("cachedAt", ""),
        )


class AnalysisCache:
    """Hash → CacheEntry map persisted to ``analysis-cache.json``."""

    def __init__(self, state_dir: str, backup_count: int = 5,
                 log: Callable[[str], None] = ScanLedger.print_right) -> None:
        self.path = os.path.join(os.path.abspath(state_dir), CACHE_FILE_NAME)
        self._store = SnapshotStore(self.path, "entries", "lastUpdated",
                                    backup_count=backup_count, log=log)
        self._log = log
        self._lock = threading.RLock()
        self._entries: Dict[str, CacheEntry] = {}
        self._last_updated: Optional[str] = None

    def load(self) -> None:
        """Load entries from disk; a missing file starts an empty cache."""
        with self._lock:
            result = self._store.load(CacheEntry.from_dict)
            self._entries = {}
            for entry in result.items:
                self._entries[entry.content_hash] = entry
            self._last_updated = result.stamp
            if result.recovered:
                self._log(f"[yellow]Analysis cache recovered ({result.source}): "
                          f"{len(self._entries)} entries[/yellow]")
                self.save()
            elif result.source == "file":
                self._log(f"Loaded {len(self._entries)} cached analyses")

    def save(self) -> None:
        """Persist all entries atomically.

        Raises:
            PersistenceError: If writing fails
        """
        with self._lock:
            self._last_updated = utc_now()
            self._store.write([entry.to_dict() for entry in self._entries.values()],
                              self._last_updated)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, content_hash: str) -> bool:
        return content_hash in self._entries

    def get(self, content_hash: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(content_hash)

    def put(self, content_hash: str, source_path: str, fields: DocumentFields) -> CacheEntry:
        """Store (or overwrite) the extraction result for a hash and save."""
        data = fields.to_dict()
        confidence = data.pop("confidence")
        extraction_status = data.pop("extraction_status")
        entry = CacheEntry(
            content_hash=content_hash,
            source_path=source_path,
            document_type=fields.DOCUMENT_TYPE,
            extracted_fields=data,
            confidence=confidence,
            extraction_status=extraction_status,
            cached_at=utc_now(),
        )
        with self._lock:
            self._entries[content_hash] = entry
            self.save()
        return entry

    def remove(self, content_hash: str) -> bool:
        """Drop one entry. Returns False if the hash was not cached."""
        with self._lock:
            if self._entries.pop(content_hash, None) is None:
                return False
            self.save()
            return True

    def clear(self) -> int:
        """Drop every entry."""
        with self._lock:
            count = len(self._entries)
            self._entries = {}
            self.save()
            self._log(f"Analysis cache cleared ({count} entries)")
            return count

    def purge(self, kind: str = "pdf", analyzed_after: Optional[str] = None) -> int:
        """Remove entries whose source file is of ``kind``.

        Args:
            kind: 'pdf' or 'image', matched on the cached source path
            analyzed_after: ISO-8601 cutoff; only entries cached after it
                            are removed. None removes all entries of the kind.

        Raises:
            ValidationError: If the cutoff is not a valid timestamp
        """
        cutoff: Optional[datetime] = None
        if analyzed_after:
            try:
                cutoff = parse_timestamp(analyzed_after)
            except ValueError:
                raise ValidationError(f"Invalid date: {analyzed_after}")

        def matches(entry: CacheEntry) -> bool:
            if file_kind(entry.source_path) != kind:
                return False
            if cutoff is None:
                return True
            return bool(entry.cached_at) and parse_timestamp(entry.cached_at) > cutoff

        with self._lock:
            stale: List[str] = [h for h, entry in self._entries.items() if matches(entry)]
            for content_hash in stale:
                del self._entries[content_hash]
            if stale:
                self.save()
        self._log(f"Removed {len(stale)} {kind} entries from analysis cache")
        return len(stale)

    def stats(self) -> dict:
        with self._lock:
            return {"count": len(self._entries), "lastUpdatedAt": self._last_updated}
