"""Shared fixtures for scanledger tests.

Tests run against temp directories and a stub LLM, so no API keys or
poppler install are needed.
"""

import os
import shutil
import tempfile
from typing import Callable, Dict, List, Optional, Sequence

import pytest
from PIL import Image

from models import LLM, LLMError, ExtractionResult
from workflows import (
    AnalysisCache,
    DocumentRegistry,
    LedgerService,
    MergeEngine,
    PageRasterizer,
    PipelineOrchestrator,
)


class StubLLM(LLM):
    """LLM returning canned results; records every call."""

    def __init__(self, respond: Optional[Callable[[Sequence[str], str], ExtractionResult]] = None):
        self.calls: List[str] = []
        self._respond = respond or (lambda paths, name: invoice_result())

    @property
    def name(self) -> str:
        return "stub"

    def extract(self, image_paths: Sequence[str], source_name: str = "") -> ExtractionResult:
        self.calls.append(source_name)
        return self._respond(image_paths, source_name)


class FailingLLM(LLM):
    @property
    def name(self) -> str:
        return "failing"

    def extract(self, image_paths: Sequence[str], source_name: str = "") -> ExtractionResult:
        raise LLMError("model unavailable")


class PassThroughRasterizer(PageRasterizer):
    """Treats every document as a single page image at its own path."""

    def to_images(self, pdf_path: str) -> List[str]:
        return [pdf_path]

    def rescale_images(self, image_paths: Sequence[str]) -> List[str]:
        return list(image_paths)

    def cleanup(self, paths: Sequence[str]) -> None:
        pass


def invoice_result(**overrides) -> ExtractionResult:
    fields: Dict[str, str] = {
        "invoice_date": "20240101",
        "company_name": "Acme",
        "description": "Service",
        "invoice_amount": "100",
        "invoice_currency": "EUR",
    }
    fields.update(overrides)
    return ExtractionResult("invoice", fields, confidence="high", extraction_status="success")


def write_file(path: str, content: bytes = b"%PDF-1.4 test") -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(content)
    return path


def make_image(path: str, size=(40, 60), color=(200, 30, 30)) -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    Image.new("RGB", size, color).save(path)
    return path


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    dir_path = tempfile.mkdtemp(prefix="scanledger_test_")
    yield dir_path
    shutil.rmtree(dir_path, ignore_errors=True)


@pytest.fixture
def scan_dir(temp_dir):
    path = os.path.join(temp_dir, "scans")
    os.makedirs(path)
    return path


@pytest.fixture
def state_dir(temp_dir):
    return os.path.join(temp_dir, "state")


@pytest.fixture
def messages():
    """Log sink; pass ``messages.append`` as a component's log."""
    return []


@pytest.fixture
def registry(state_dir, messages):
    reg = DocumentRegistry(state_dir, log=messages.append)
    reg.load()
    return reg


@pytest.fixture
def cache(state_dir, messages):
    c = AnalysisCache(state_dir, log=messages.append)
    c.load()
    return c


@pytest.fixture
def llm():
    return StubLLM()


@pytest.fixture
def orchestrator(registry, cache, llm, messages):
    return PipelineOrchestrator(
        registry,
        cache,
        llm_factory=lambda: llm,
        rasterizer=PassThroughRasterizer(log=messages.append),
        scan_batch_size=2,
        log=messages.append,
        activity=lambda line1, line2: messages.append(f"{line1} {line2}"),
        report_progress=lambda current, total: None,
    )


@pytest.fixture
def service(registry, cache, orchestrator, scan_dir, messages):
    merge_engine = MergeEngine(registry, log=messages.append,
                               activity=lambda line1, line2: None)
    return LedgerService(registry, cache, orchestrator, merge_engine, [scan_dir],
                         log=messages.append)
