"""Vision LLM provider abstraction for scanledger.

Provides a uniform interface for document extraction across providers:
- OpenAIVisionLLM: OpenAI or an OpenAI-compatible endpoint (default)
- MistralVisionLLM: Mistral AI Pixtral models

Usage:
    from models import create_llm

    llm = create_llm("openai")
    result = llm.extract(["/tmp/page-1.jpg", "/tmp/page-2.jpg"], "scan_0042.pdf")
    print(result.document_type, result.fields)
"""

from .base import LLM, LLMError, ExtractionResult, DOCUMENT_TYPES


def create_llm(provider: str = "openai", log=print) -> LLM:
    """Create an LLM instance for the specified provider.

    Args:
        provider: LLM provider name ("openai" or "mistral")
        log: Callable receiving retry notices

    Returns:
        LLM instance for the specified provider

    Raises:
        ValueError: If provider is not recognized
    """
    provider = provider.lower()

    if provider == "openai":
        from .openai import OpenAIVisionLLM
        return OpenAIVisionLLM(log=log)
    elif provider == "mistral":
        from .mistral import MistralVisionLLM
        return MistralVisionLLM(log=log)
    else:
        raise ValueError(
            f"Unknown LLM provider: {provider}. "
            "Must be 'openai' or 'mistral'"
        )


__all__ = [
    'LLM',
    'LLMError',
    'ExtractionResult',
    'DOCUMENT_TYPES',
    'create_llm',
]
