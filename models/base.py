"""Base classes for vision LLM providers.

This module defines the abstract interface that all extraction backends must
implement, plus the prompt and response parsing they share.
"""

import base64
import json
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Sequence


class LLMError(Exception):
    """Base exception for LLM operations."""
    pass


@dataclass
class ExtractionResult:
    """Result of extracting structured data from document images.

    Attributes:
        document_type: 'invoice', 'generic' or 'movie_cover'
        fields: Raw extracted field values (strings), keyed by field name
        confidence: 'low', 'medium' or 'high'
        extraction_status: 'success', 'partial' or 'failed'
    """
    document_type: str
    fields: Dict[str, str] = field(default_factory=dict)
    confidence: str = "low"
    extraction_status: str = "partial"


# Maximum size of a single image sent to the model (20MB)
MAX_IMAGE_SIZE_MB = 20

DOCUMENT_TYPES = ("invoice", "generic", "movie_cover")

# Types the model sometimes answers with that are filed as generic documents
DOCUMENT_TYPE_ALIASES = {
    "rekeningafschrift": "generic",
    "bank_statement": "generic",
    "document": "generic",
    "movie": "movie_cover",
    "cover": "movie_cover",
}

_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


# Document extraction prompt template
EXTRACTION_PROMPT = """You are an assistant that extracts information from scanned document images. All images belong to the same document. First decide whether the document is an invoice, a movie cover (DVD/Blu-ray) or a generic document, then return exactly one JSON object:

{
  "document_type": "invoice" | "movie_cover" | "generic",
  "extraction_status": "success" | "partial" | "failed",
  "confidence": "low" | "medium" | "high",
  "fields": {
    // invoices
    "invoice_date": "YYYYMMDD",
    "company_name": "Supplier or company name",
    "description": "Short invoice description (max 5 words)",
    "invoice_amount": "Total amount without VAT, no currency symbol; blank if unsure",
    "invoice_currency": "Currency code such as EUR, USD, GBP",

    // movie covers
    "movie_title": "Title of the movie or series",
    "type": "movie" or "series",
    "season": "Season number, 0 if not applicable",
    "disc_number": "Disc number, 0 if not applicable",
    "media_format": "DVD or Blu-ray",
    "description": "Short description of the content",
    "duration": "Duration as HH:MM",
    "imdb_id": "IMDB id if it can be determined",

    // generic documents
    "document_date": "YYYYMMDD",
    "document_category": "Category such as contract, letter, report, tax return",
    "description": "Concise description with the important details",
    "source": "Organization or person that created the document"
  }
}

Rules:
- Only include the fields for the detected document type.
- Leave a field blank if it is missing, but still include it.
- If a page is blank, put "blank" in the description.
- extraction_status is "success" when all fields are clear, "partial" when some are missing, "failed" when nothing could be read.
- Return only the JSON object. No markdown, no commentary.
"""


class LLM(ABC):
    """Abstract base class for vision LLM providers.

    All providers (OpenAI, Mistral) implement this interface for document
    data extraction.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 'openai', 'mistral')."""
        pass

    @abstractmethod
    def extract(self, image_paths: Sequence[str], source_name: str = "") -> ExtractionResult:
        """Extract structured document data from page images.

        Args:
            image_paths: Images of the document's pages, in page order
            source_name: Original filename, passed to the model as context

        Returns:
            ExtractionResult with the detected type and fields

        Raises:
            LLMError: If extraction fails after the provider's retries
        """
        pass

    # =========================================================================
    # Helper methods (shared by all implementations)
    # =========================================================================

    def _check_file_size(self, path: str) -> None:
        """Validate image size is under the limit.

        Raises:
            LLMError: If the file exceeds the size limit
        """
        file_size = os.path.getsize(path)
        if file_size > MAX_IMAGE_SIZE_MB * 1024 * 1024:
            raise LLMError(
                f"Image exceeds {MAX_IMAGE_SIZE_MB}MB limit "
                f"({file_size / 1024 / 1024:.1f}MB): {os.path.basename(path)}"
            )

    def _image_data_url(self, path: str) -> str:
        """Read an image and return it as a base64 data URL."""
        self._check_file_size(path)
        ext = os.path.splitext(path)[1].lower()
        mime = _MIME_TYPES.get(ext, "image/png")
        try:
            with open(path, "rb") as f:
                encoded = base64.b64encode(f.read()).decode("utf-8")
        except OSError as e:
            raise LLMError(f"Failed to read image {path}: {e}")
        return f"data:{mime};base64,{encoded}"

    def _build_extraction_prompt(self, source_name: str = "") -> str:
        """Build the full prompt for document extraction."""
        prompt = EXTRACTION_PROMPT
        if source_name:
            prompt += f"\nThe original filename was {source_name}; keep it in mind for the description."
        return prompt

    def _build_messages(self, image_paths: Sequence[str], source_name: str = "") -> List[dict]:
        """Build a single user message holding the prompt and all page images."""
        if not image_paths:
            raise LLMError("No images to analyze")
        content: List[dict] = [{"type": "text", "text": self._build_extraction_prompt(source_name)}]
        for path in image_paths:
            content.append({"type": "image_url", "image_url": {"url": self._image_data_url(path)}})
        return [{"role": "user", "content": content}]

    def _parse_extraction_response(self, response: str) -> ExtractionResult:
        """Parse the model's JSON answer into an ExtractionResult.

        Accepts a bare JSON object, one wrapped in a markdown code fence, or
        a one-element array.

        Raises:
            LLMError: If the response is not valid JSON or names an unknown
                      document type
        """
        if not response:
            raise LLMError("Empty response from model")

        match = re.search(r"```(?:json)?\s*([\[{][\s\S]*?[\]}])\s*```", response)
        text = match.group(1) if match else response.strip()

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise LLMError(f"Model returned invalid JSON: {e}")

        if isinstance(data, list):
            if not data:
                raise LLMError("Model returned an empty list")
            data = data[0]
        if not isinstance(data, dict):
            raise LLMError(f"Unexpected response shape: {type(data).__name__}")

        raw_type = str(data.get("document_type") or "").strip().lower()
        document_type = DOCUMENT_TYPE_ALIASES.get(raw_type, raw_type)
        if document_type not in DOCUMENT_TYPES:
            raise LLMError(f"Unknown document type: {raw_type or '(missing)'}")

        raw_fields = data.get("fields")
        if raw_fields is None:
            raw_fields = {}
        if not isinstance(raw_fields, dict):
            raise LLMError("Response 'fields' is not an object")
        fields = {
            str(key): "" if value is None else str(value).strip()
            for key, value in raw_fields.items()
        }

        return ExtractionResult(
            document_type=document_type,
            fields=fields,
            confidence=str(data.get("confidence") or "low"),
            extraction_status=str(data.get("extraction_status") or "partial"),
        )
