"""Tests for the shared LLM prompt building and response parsing."""

import base64
import os

import pytest

from models import LLM, LLMError, create_llm
from models.base import MAX_IMAGE_SIZE_MB

from conftest import StubLLM, make_image


@pytest.fixture
def llm():
    return StubLLM()


class TestParseExtractionResponse:

    def test_plain_json(self, llm):
        result = llm._parse_extraction_response(
            '{"document_type": "invoice", "confidence": "high", "extraction_status": "success",'
            ' "fields": {"company_name": "Acme", "invoice_amount": 12.5}}'
        )
        assert result.document_type == "invoice"
        assert result.confidence == "high"
        assert result.fields["company_name"] == "Acme"
        assert result.fields["invoice_amount"] == "12.5"

    def test_code_fence(self, llm):
        result = llm._parse_extraction_response(
            'Here you go:\n```json\n{"document_type": "movie_cover", "fields": {"movie_title": "Heat"}}\n```'
        )
        assert result.document_type == "movie_cover"
        assert result.extraction_status == "partial"

    def test_array_response(self, llm):
        result = llm._parse_extraction_response('[{"document_type": "generic", "fields": {}}]')
        assert result.document_type == "generic"

    def test_alias_types(self, llm):
        result = llm._parse_extraction_response('{"document_type": "Rekeningafschrift"}')
        assert result.document_type == "generic"

    def test_null_fields_become_empty(self, llm):
        result = llm._parse_extraction_response(
            '{"document_type": "invoice", "fields": {"invoice_amount": null}}')
        assert result.fields["invoice_amount"] == ""

    @pytest.mark.parametrize("response", [
        "",
        "not json",
        "[]",
        '"just a string"',
        '{"document_type": "receipt"}',
        '{"document_type": "invoice", "fields": []}',
    ])
    def test_invalid_responses(self, llm, response):
        with pytest.raises(LLMError):
            llm._parse_extraction_response(response)


class TestBuildMessages:

    def test_one_text_part_and_one_image_per_page(self, llm, temp_dir):
        pages = [make_image(os.path.join(temp_dir, f"p{i}.png")) for i in range(2)]
        messages = llm._build_messages(pages, "scan.pdf")
        content = messages[0]["content"]
        assert content[0]["type"] == "text"
        assert "scan.pdf" in content[0]["text"]
        urls = [part["image_url"]["url"] for part in content[1:]]
        assert len(urls) == 2
        assert urls[0].startswith("data:image/png;base64,")
        with open(pages[0], "rb") as f:
            assert urls[0].split(",", 1)[1] == base64.b64encode(f.read()).decode("utf-8")

    def test_no_images(self, llm):
        with pytest.raises(LLMError):
            llm._build_messages([])

    def test_oversized_image(self, llm, temp_dir):
        path = os.path.join(temp_dir, "big.jpg")
        with open(path, "wb") as f:
            f.truncate(MAX_IMAGE_SIZE_MB * 1024 * 1024 + 1)
        with pytest.raises(LLMError):
            llm._build_messages([path])


class TestCreateLLM:

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_llm("llama")

    def test_openai_provider(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "test-key")
        monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:11434/v1")
        monkeypatch.setenv("OPENAI_MODEL_NAME", "llava")
        llm = create_llm("OpenAI")
        assert isinstance(llm, LLM)
        assert llm.name == "openai"
        assert llm.model == "llava"
        assert "localhost:11434" in str(llm.client.base_url)

    def test_mistral_requires_key(self, monkeypatch):
        monkeypatch.delenv("MISTRAL_API_KEY", raising=False)
        with pytest.raises(KeyError):
            create_llm("mistral")
