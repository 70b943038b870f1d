"""OpenAI vision provider.

Uses the OpenAI chat completions API (or any OpenAI-compatible endpoint,
e.g. a local Ollama gateway) to extract document data from page images.
"""

import os
from typing import Sequence

from openai import OpenAI, APIConnectionError, APITimeoutError

from .base import LLM, LLMError, ExtractionResult
from utils.retry import (
    retry_on_transient_error,
    is_transient_network_error,
    is_transient_status,
)


DEFAULT_MODEL = "gpt-4o"


def _is_retryable_openai_error(exc: Exception) -> bool:
    """Determine if an OpenAI API error should be retried."""
    if isinstance(exc, (APIConnectionError, APITimeoutError)):
        return True
    return is_transient_status(exc) or is_transient_network_error(exc)


class OpenAIVisionLLM(LLM):
    """OpenAI implementation for document extraction.

    Uses:
    - OPENAI_MODEL_NAME (default gpt-4o) with image inputs
    - OPENAI_BASE_URL to target an OpenAI-compatible external endpoint
    """

    def __init__(self, log=print) -> None:
        """Initialize OpenAI client.

        Uses OPENAI_API_KEY (and optionally OPENAI_BASE_URL) from the
        environment.
        """
        base_url = os.environ.get("OPENAI_BASE_URL") or None
        self.client = OpenAI(base_url=base_url)
        self.model = os.environ.get("OPENAI_MODEL_NAME", DEFAULT_MODEL)
        self._log = log

    @property
    def name(self) -> str:
        return "openai"

    def _log_retry(self, exc: Exception, attempt: int, delay: float) -> None:
        status = getattr(exc, "status_code", None)
        error_desc = f"HTTP {status}" if status else type(exc).__name__
        self._log(f"  [Retry] {error_desc} on attempt {attempt}, retrying in {delay:.1f}s...")

    def extract(self, image_paths: Sequence[str], source_name: str = "") -> ExtractionResult:
        """Extract document data using a vision-capable chat model."""
        messages = self._build_messages(image_paths, source_name)

        @retry_on_transient_error(
            is_retryable=_is_retryable_openai_error,
            max_retries=3,
            base_delay=1.0,
            max_delay=30.0,
            on_retry=self._log_retry,
        )
        def complete():
            return self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=1000,
            )

        try:
            response = complete()
        except Exception as e:
            raise LLMError(f"OpenAI API error: {e}")

        if not response.choices:
            raise LLMError("OpenAI returned no choices")
        content = response.choices[0].message.content
        if not content:
            raise LLMError("No content in OpenAI response")
        return self._parse_extraction_response(content)
