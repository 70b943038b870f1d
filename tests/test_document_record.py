"""Tests for DocumentRecord and the extracted-field variants."""

from datetime import datetime, timezone

import pytest

from workflows import (
    DocumentRecord,
    GenericFields,
    InvoiceFields,
    MovieCoverFields,
    STATUS_ANALYZED,
    STATUS_BAD,
    STATUS_NEW,
    fields_from_dict,
)


class TestFields:

    def test_variant_by_type(self):
        assert isinstance(fields_from_dict("invoice", {}), InvoiceFields)
        assert isinstance(fields_from_dict("generic", {}), GenericFields)
        assert isinstance(fields_from_dict("movie_cover", {}), MovieCoverFields)
        with pytest.raises(ValueError):
            fields_from_dict("receipt", {})

    def test_unknown_keys_ignored(self):
        fields = fields_from_dict("generic", {"source": " Bank ", "colour": "red"})
        assert fields.source == "Bank"
        assert not hasattr(fields, "colour")

    def test_missing_fields(self):
        fields = fields_from_dict("invoice", {"invoice_date": "20240101", "company_name": "Acme"})
        assert fields.missing_fields() == ["description", "invoice_amount"]
        movie = fields_from_dict("movie_cover", {"movie_title": "Heat", "type": "movie",
                                                 "media_format": "DVD"})
        assert movie.missing_fields() == []


class TestRecordLifecycle:

    def test_create(self):
        record = DocumentRecord.create("/scans/a.pdf", "pdf")
        assert record.status == STATUS_NEW
        assert record.original_path == record.current_path
        assert len(record.id) == 32
        assert not record.is_renamed

    def test_analyzed_then_bad_then_reset(self):
        record = DocumentRecord.create("/scans/a.pdf", "pdf")
        record.mark_analyzed(fields_from_dict("generic", {"source": "Bank"}))
        assert record.status == STATUS_ANALYZED
        assert record.document_type == "generic"

        record.mark_bad("timeout")
        assert record.status == STATUS_BAD
        assert record.fields is None
        assert record.error == "timeout"

        record.reset()
        assert record.status == STATUS_NEW
        assert record.error is None

    def test_renamed_is_derived_from_basename(self):
        record = DocumentRecord.create("/scans/a.pdf", "pdf")
        record.current_path = "/archive/a.pdf"
        assert not record.is_renamed
        record.current_path = "/scans/b.pdf"
        assert record.is_renamed

    def test_dict_round_trip(self):
        record = DocumentRecord.create("/scans/a.jpg", "image")
        record.mark_analyzed(fields_from_dict("movie_cover", {"movie_title": "Heat"}))
        data = record.to_dict()
        assert data["extractedFields"]["movie_title"] == "Heat"
        assert "error" not in data
        assert DocumentRecord.from_dict(data) == record

    def test_bad_record_always_has_error(self):
        data = DocumentRecord.create("/scans/a.pdf", "pdf").to_dict()
        data["status"] = "bad"
        assert DocumentRecord.from_dict(data).error == "Analysis failed"

    def test_from_dict_requires_paths(self):
        with pytest.raises(KeyError):
            DocumentRecord.from_dict({"id": "x", "status": "new"})

    def test_modified_since(self):
        record = DocumentRecord.create("/scans/a.pdf", "pdf")
        assert record.modified_since(datetime(2000, 1, 1, tzinfo=timezone.utc))
        assert not record.modified_since(datetime(2999, 1, 1, tzinfo=timezone.utc))

    def test_display(self):
        lines = []
        record = DocumentRecord.create("/scans/a.pdf", "pdf")
        record.mark_analyzed(fields_from_dict("invoice", {"company_name": "Acme"}))
        record.display(lines.append)
        assert lines[0] == "File: a.pdf (pdf, analyzed)"
        assert "  company_name: Acme" in lines
