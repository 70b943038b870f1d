"""Tests for AnalysisCache and compute_sha256."""

import hashlib
import json
import os

import pytest

from workflows import AnalysisCache, ValidationError, compute_sha256, fields_from_dict

from conftest import write_file


def invoice_fields(**values):
    return fields_from_dict("invoice", dict({"company_name": "Acme", "confidence": "high",
                                             "extraction_status": "success"}, **values))


def reload(state_dir):
    cache = AnalysisCache(state_dir, log=lambda m: None)
    cache.load()
    return cache


class TestComputeSha256:

    def test_matches_hashlib(self, temp_dir):
        path = write_file(os.path.join(temp_dir, "a.pdf"), b"hello" * 5000)
        assert compute_sha256(path) == hashlib.sha256(b"hello" * 5000).hexdigest()

    def test_identical_bytes_share_entry_and_one_byte_differs(self, temp_dir, cache):
        a = write_file(os.path.join(temp_dir, "a.pdf"), b"same content")
        b = write_file(os.path.join(temp_dir, "b.pdf"), b"same content")
        c = write_file(os.path.join(temp_dir, "c.pdf"), b"same contenT")

        cache.put(compute_sha256(a), a, invoice_fields())
        assert cache.get(compute_sha256(b)) is not None
        assert cache.get(compute_sha256(c)) is None
        assert len(cache) == 1


class TestAnalysisCache:

    def test_put_get_round_trip(self, state_dir, cache):
        cache.put("abc", "/scans/a.pdf", invoice_fields(invoice_amount="10"))
        entry = reload(state_dir).get("abc")
        assert entry.document_type == "invoice"
        assert entry.confidence == "high"
        assert entry.extraction_status == "success"
        fields = entry.to_fields()
        assert fields.company_name == "Acme"
        assert fields.invoice_amount == "10"

    def test_put_overwrites(self, cache):
        cache.put("abc", "/scans/a.pdf", invoice_fields())
        cache.put("abc", "/scans/b.pdf", fields_from_dict("generic", {"source": "Bank"}))
        entry = cache.get("abc")
        assert entry.document_type == "generic"
        assert entry.source_path == "/scans/b.pdf"
        assert len(cache) == 1

    def test_file_format(self, state_dir, cache):
        cache.put("abc", "/scans/a.pdf", invoice_fields())
        with open(os.path.join(state_dir, "analysis-cache.json")) as f:
            data = json.load(f)
        assert data["version"] == 1
        assert data["lastUpdated"]
        entry = data["entries"][0]
        assert entry["contentHash"] == "abc"
        assert entry["extractedFields"]["company_name"] == "Acme"
        assert "confidence" not in entry["extractedFields"]

    def test_remove_and_clear(self, cache):
        cache.put("a", "/s/a.pdf", invoice_fields())
        cache.put("b", "/s/b.pdf", invoice_fields())
        assert cache.remove("a") is True
        assert cache.remove("a") is False
        assert cache.clear() == 1
        assert cache.stats()["count"] == 0

    def test_purge_pdf_entries(self, cache):
        cache.put("pdf", "/s/a.pdf", invoice_fields())
        cache.put("img", "/s/a.jpg", invoice_fields())
        assert cache.purge("pdf") == 1
        assert "pdf" not in cache
        assert "img" in cache

    def test_purge_after_cutoff(self, cache):
        cache.put("old", "/s/old.pdf", invoice_fields())
        cache.get("old").cached_at = "2020-01-01T00:00:00+00:00"
        cache.put("new", "/s/new.pdf", invoice_fields())
        assert cache.purge("pdf", analyzed_after="2021-01-01") == 1
        assert "old" in cache
        assert "new" not in cache

    def test_purge_invalid_date(self, cache):
        with pytest.raises(ValidationError):
            cache.purge("pdf", analyzed_after="not a date")

    def test_stats(self, cache):
        assert cache.stats() == {"count": 0, "lastUpdatedAt": None}
        cache.put("a", "/s/a.pdf", invoice_fields())
        stats = cache.stats()
        assert stats["count"] == 1
        assert stats["lastUpdatedAt"]

    def test_corrupt_cache_recovers(self, state_dir, cache):
        cache.put("a", "/s/a.pdf", invoice_fields())
        with open(os.path.join(state_dir, "analysis-cache.json"), "w") as f:
            f.write('{"version": 1, "entries": [')
        messages = []
        recovered = AnalysisCache(state_dir, log=messages.append)
        recovered.load()
        assert any("Corrupt snapshot" in m for m in messages)
        # No backup existed before the first save and no entry was complete
        assert len(recovered) == 0
        assert any("starting empty" in m for m in messages)
