"""
Model clients
"""
from typing import Optional

from taskgraph.config import settings
from taskgraph.llm.base import ChatMessage, ModelClient


def create_model_client(provider: Optional[str] = None, model: Optional[str] = None) -> ModelClient:
    """Build the configured provider ("gemini" or "groq")"""
    provider = (provider or settings.LLM_PROVIDER).lower()
    if provider == "gemini":
        from taskgraph.llm.gemini_provider import GeminiProvider
        return GeminiProvider(model=model or settings.PLANNER_MODEL)
    if provider == "groq":
        from taskgraph.llm.groq_provider import GroqProvider
        return GroqProvider(model=model or GroqProvider.GPT_OSS_120B)
    raise ValueError(f"Unknown LLM provider '{provider}'")


__all__ = ["ChatMessage", "ModelClient", "create_model_client"]
