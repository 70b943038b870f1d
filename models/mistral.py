"""Mistral AI vision provider.

Uses Mistral's Pixtral models through the chat API to extract document data
from page images.
"""

import os
from typing import Sequence

from mistralai import Mistral

from .base import LLM, LLMError, ExtractionResult
from utils.retry import (
    retry_on_transient_error,
    is_transient_network_error,
    is_transient_status,
)


DEFAULT_MODEL = "pixtral-12b-latest"


def _is_retryable_mistral_error(exc: Exception) -> bool:
    """Determine if a Mistral API error should be retried."""
    return is_transient_status(exc) or is_transient_network_error(exc)


class MistralVisionLLM(LLM):
    """Mistral AI implementation for document extraction.

    Uses MISTRAL_MODEL_NAME (default pixtral-12b-latest) with base64 image
    chunks.
    """

    def __init__(self, log=print) -> None:
        """Initialize Mistral client.

        Raises:
            KeyError: If MISTRAL_API_KEY environment variable is not set
        """
        api_key = os.environ["MISTRAL_API_KEY"]
        self.client = Mistral(api_key=api_key)
        self.model = os.environ.get("MISTRAL_MODEL_NAME", DEFAULT_MODEL)
        self._log = log

    @property
    def name(self) -> str:
        return "mistral"

    def _log_retry(self, exc: Exception, attempt: int, delay: float) -> None:
        status = getattr(exc, "status_code", None)
        error_desc = f"HTTP {status}" if status else type(exc).__name__
        self._log(f"  [Retry] {error_desc} on attempt {attempt}, retrying in {delay:.1f}s...")

    def extract(self, image_paths: Sequence[str], source_name: str = "") -> ExtractionResult:
        """Extract document data using a Pixtral model."""
        messages = self._build_messages(image_paths, source_name)

        @retry_on_transient_error(
            is_retryable=_is_retryable_mistral_error,
            max_retries=3,
            base_delay=1.0,
            max_delay=30.0,
            on_retry=self._log_retry,
        )
        def complete():
            return self.client.chat.complete(
                model=self.model,
                messages=messages,
                max_tokens=1000,
            )

        try:
            response = complete()
        except Exception as e:
            raise LLMError(f"Mistral API error: {e}")

        if not response or not response.choices:
            raise LLMError("Mistral returned no choices")
        content = response.choices[0].message.content
        if not content:
            raise LLMError("No content in Mistral response")
        if not isinstance(content, str):
            # Chunked content: keep the text parts
            content = "".join(getattr(chunk, "text", "") for chunk in content)
        return self._parse_extraction_response(content)
