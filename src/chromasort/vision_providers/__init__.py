from __future__ import annotations
from typing import Dict, Any
from .base import VisionProvider
from .gemini import GeminiProvider
from .ollama import OllamaProvider
from .openai_compat import OpenAICompatProvider
from ..config import GEMINI_URL, OPENAI_COMPAT_URL, OLLAMA_URL, require_api_key

__all__ = ["VisionProvider", "GeminiProvider", "OllamaProvider", "OpenAICompatProvider", "get_provider"]


def get_provider(config_dict: Dict[str, Any]) -> VisionProvider:
    """
    Factory function to get the appropriate vision provider based on configuration.

    Raises:
        ConfigurationMissing: the selected provider needs an API key and none is set
        ValueError: unknown provider name
    """
    provider_type = (config_dict.get("api_provider") or "gemini").lower()
    endpoint = config_dict.get("api_endpoint")
    api_key = require_api_key(provider_type, config_dict.get("api_key"))

    if provider_type == "gemini":
        return GeminiProvider(api_key, endpoint or GEMINI_URL)
    if provider_type == "openai":
        return OpenAICompatProvider(endpoint or OPENAI_COMPAT_URL, api_key=api_key)
    if provider_type == "ollama":
        return OllamaProvider(endpoint or OLLAMA_URL)
    raise ValueError(f"Unknown vision provider: {provider_type!r}")
