"""Tests for PipelineOrchestrator: scan, analyze and rename batches."""

import json
import os

import pytest

from models import ExtractionResult
from workflows import (
    CancellationToken,
    DocumentRecord,
    NotFound,
    STATUS_ANALYZED,
    STATUS_BAD,
    STATUS_NEW,
    ValidationError,
    fields_from_dict,
)
from workflows.pipeline import RUN_CANCELLED, RUN_COMPLETED

from conftest import FailingLLM, PassThroughRasterizer, StubLLM, invoice_result, write_file


def write_scans(scan_dir, count, prefix="scan"):
    return [write_file(os.path.join(scan_dir, f"{prefix}_{i:02d}.pdf"), f"doc {i}".encode())
            for i in range(count)]


class TestScan:

    def test_adds_new_files(self, orchestrator, registry, scan_dir):
        write_scans(scan_dir, 3)
        write_file(os.path.join(scan_dir, "notes.txt"))
        result = orchestrator.scan([scan_dir])
        assert result.status == RUN_COMPLETED
        assert result.succeeded == 3
        assert len(registry) == 3
        assert all(r.status == STATUS_NEW for r in registry.records())

    def test_rescan_skips_known_files(self, orchestrator, registry, scan_dir, messages):
        write_scans(scan_dir, 2)
        orchestrator.scan([scan_dir])
        result = orchestrator.scan([scan_dir])
        assert result.total == 0
        assert len(registry) == 2
        assert any("Not analyzed" in m for m in messages)

    def test_reports_incomplete_data(self, orchestrator, registry, scan_dir, messages):
        path = write_scans(scan_dir, 1)[0]
        orchestrator.scan([scan_dir])
        record = registry.get_by_path(path)
        registry.update(record.id, lambda r: r.mark_analyzed(
            fields_from_dict("invoice", {"company_name": "Acme"})))
        orchestrator.scan([scan_dir])
        assert any("Incomplete data" in m and "invoice_date" in m for m in messages)

    def test_removes_vanished_files(self, orchestrator, registry, scan_dir):
        paths = write_scans(scan_dir, 2)
        orchestrator.scan([scan_dir])
        os.unlink(paths[0])
        orchestrator.scan([scan_dir])
        assert [r.current_path for r in registry.records()] == [paths[1]]

    def test_saves_every_batch_and_after_last_item(self, orchestrator, registry, scan_dir,
                                                   state_dir, monkeypatch):
        write_scans(scan_dir, 5)
        saved_counts = []
        real_save = registry.save

        def counting_save():
            real_save()
            with open(os.path.join(state_dir, "state.json")) as f:
                saved_counts.append(len(json.load(f)["records"]))

        monkeypatch.setattr(registry, "save", counting_save)
        result = orchestrator.scan([scan_dir])
        assert result.succeeded == 5
        # scan_batch_size is 2 in the orchestrator fixture
        assert saved_counts == [2, 4, 5]

    def test_cancel_before_start(self, orchestrator, registry, scan_dir):
        write_scans(scan_dir, 3)
        token = CancellationToken()
        token.cancel()
        result = orchestrator.scan([scan_dir], token)
        assert result.status == RUN_CANCELLED
        assert len(registry) == 0


class TestAnalyze:

    def test_analyze_all_marks_analyzed_and_caches(self, orchestrator, registry, cache, llm, scan_dir):
        write_scans(scan_dir, 2)
        orchestrator.scan([scan_dir])
        result = orchestrator.analyze_all()
        assert result.succeeded == 2
        assert len(llm.calls) == 2
        assert all(r.status == STATUS_ANALYZED for r in registry.records())
        assert len(cache) == 2

    def test_cache_hit_skips_extraction(self, orchestrator, registry, llm, scan_dir):
        write_file(os.path.join(scan_dir, "a.pdf"), b"identical")
        write_file(os.path.join(scan_dir, "b.pdf"), b"identical")
        orchestrator.scan([scan_dir])
        orchestrator.analyze_all()
        assert len(llm.calls) == 1
        assert all(r.status == STATUS_ANALYZED for r in registry.records())

    def test_failure_marks_bad(self, registry, cache, scan_dir, messages):
        from workflows import PipelineOrchestrator
        orchestrator = PipelineOrchestrator(
            registry, cache, llm_factory=FailingLLM,
            rasterizer=PassThroughRasterizer(log=messages.append),
            log=messages.append, activity=lambda a, b: None,
            report_progress=lambda c, t: None,
        )
        write_scans(scan_dir, 1)
        orchestrator.scan([scan_dir])
        result = orchestrator.analyze_all()
        assert result.failed == 1
        record = registry.records()[0]
        assert record.status == STATUS_BAD
        assert "model unavailable" in record.error
        assert record.fields is None

    def test_bad_record_refused_unless_forced(self, orchestrator, registry, llm, scan_dir):
        path = write_scans(scan_dir, 1)[0]
        orchestrator.scan([scan_dir])
        record = registry.get_by_path(path)
        registry.update(record.id, lambda r: r.mark_bad("earlier failure"))
        with pytest.raises(ValidationError):
            orchestrator.analyze_one(record.id)
        item = orchestrator.analyze_one(record.id, force=True)
        assert item.success
        assert registry.get_by_id(record.id).status == STATUS_ANALYZED

    def test_force_bypasses_cache(self, orchestrator, registry, llm, scan_dir):
        path = write_scans(scan_dir, 1)[0]
        orchestrator.scan([scan_dir])
        record = registry.get_by_path(path)
        orchestrator.analyze_one(record.id)
        orchestrator.analyze_one(record.id)
        assert len(llm.calls) == 1
        orchestrator.analyze_one(record.id, force=True)
        assert len(llm.calls) == 2

    def test_analyze_one_unknown(self, orchestrator):
        with pytest.raises(NotFound):
            orchestrator.analyze_one("missing")

    def test_cancel_after_three_of_ten(self, registry, cache, scan_dir, messages):
        from workflows import PipelineOrchestrator
        token = CancellationToken()

        def respond(paths, name):
            if len(llm.calls) == 3:
                token.cancel()
            return invoice_result(description=name)

        llm = StubLLM(respond)
        orchestrator = PipelineOrchestrator(
            registry, cache, llm_factory=lambda: llm,
            rasterizer=PassThroughRasterizer(log=messages.append),
            log=messages.append, activity=lambda a, b: None,
            report_progress=lambda c, t: None,
        )
        write_scans(scan_dir, 10)
        orchestrator.scan([scan_dir])

        result = orchestrator.analyze_all(token)
        assert result.status == RUN_CANCELLED
        assert result.succeeded == 3
        assert result.total == 10
        statuses = [r.status for r in registry.records()]
        assert statuses.count(STATUS_ANALYZED) == 3
        assert statuses.count(STATUS_NEW) == 7
        progress = orchestrator.progress()
        assert progress.status == RUN_CANCELLED
        assert progress.succeeded == 3

    def test_failed_extraction_status_still_analyzed(self, registry, cache, scan_dir, messages):
        from workflows import PipelineOrchestrator
        llm = StubLLM(lambda paths, name: ExtractionResult("generic", {}, "low", "failed"))
        orchestrator = PipelineOrchestrator(
            registry, cache, llm_factory=lambda: llm,
            rasterizer=PassThroughRasterizer(log=messages.append),
            log=messages.append, activity=lambda a, b: None,
            report_progress=lambda c, t: None,
        )
        write_scans(scan_dir, 1)
        orchestrator.scan([scan_dir])
        orchestrator.analyze_all()
        record = registry.records()[0]
        assert record.status == STATUS_ANALYZED
        assert record.fields.extraction_status == "failed"


class TestRename:

    def test_end_to_end(self, orchestrator, registry, scan_dir):
        write_file(os.path.join(scan_dir, "scan_0001.pdf"))
        orchestrator.scan([scan_dir])
        orchestrator.analyze_all()
        result = orchestrator.rename_all()
        assert result.succeeded == 1
        expected = os.path.join(scan_dir, "20240101-Acme-Service-EUR100.pdf")
        assert os.path.exists(expected)
        assert not os.path.exists(os.path.join(scan_dir, "scan_0001.pdf"))
        record = registry.get_by_path(expected)
        assert record.is_renamed
        assert os.path.basename(record.original_path) == "scan_0001.pdf"

    def test_same_batch_collisions(self, orchestrator, registry, scan_dir):
        # Untracked file already holding the proposed name
        write_file(os.path.join(scan_dir, "X.pdf"), b"untracked")
        paths = [write_file(os.path.join(scan_dir, f"in_{i}.pdf"), f"{i}".encode()) for i in range(2)]
        records = []
        for path in paths:
            record = DocumentRecord.create(path, "pdf")
            registry.add(record)
            registry.update(record.id, lambda r: r.mark_analyzed(
                fields_from_dict("generic", {"description": "X"})))
            records.append(record)

        result = orchestrator.rename_all()
        assert result.succeeded == 2
        new_names = sorted(os.path.basename(registry.get_by_id(r.id).current_path) for r in records)
        assert new_names == ["X_1.pdf", "X_2.pdf"]
        with open(os.path.join(scan_dir, "X.pdf"), "rb") as f:
            assert f.read() == b"untracked"

    def test_already_renamed_is_skipped(self, orchestrator, registry, scan_dir):
        write_file(os.path.join(scan_dir, "scan_0001.pdf"))
        orchestrator.scan([scan_dir])
        orchestrator.analyze_all()
        orchestrator.rename_all()
        assert orchestrator.rename_all().total == 0

    def test_rename_one_without_proposal(self, orchestrator, registry, scan_dir):
        path = write_file(os.path.join(scan_dir, "a.pdf"))
        record = DocumentRecord.create(path, "pdf")
        registry.add(record)
        with pytest.raises(ValidationError):
            orchestrator.rename_one(record.id)
        registry.update(record.id, lambda r: r.mark_analyzed(fields_from_dict("generic", {})))
        with pytest.raises(ValidationError):
            orchestrator.rename_one(record.id)

    def test_missing_source_fails_item_only(self, orchestrator, registry, scan_dir):
        paths = [write_file(os.path.join(scan_dir, f"in_{i}.pdf"), f"{i}".encode()) for i in range(2)]
        for i, path in enumerate(paths):
            record = DocumentRecord.create(path, "pdf")
            registry.add(record)
            registry.update(record.id, lambda r, i=i: r.mark_analyzed(
                fields_from_dict("generic", {"description": f"Doc {i}"})))
        os.unlink(paths[0])

        result = orchestrator.rename_all()
        assert result.failed == 1
        assert result.succeeded == 1
        assert os.path.exists(os.path.join(scan_dir, "Doc_1.pdf"))
        failed = [item for item in result.items if not item.success][0]
        assert "no longer exists" in failed.message
