"""
Groq model client (OpenAI-compatible API)

Uses gpt-oss-120b by default.
"""
from openai import AsyncOpenAI
from typing import Any, List, Optional
import logging
import time

from taskgraph.config import settings
from taskgraph.llm.base import ChatMessage

logger = logging.getLogger(__name__)


class GroqProvider:
    """Groq API wrapper implementing ModelClient"""

    GPT_OSS_120B = "openai/gpt-oss-120b"

    def __init__(self, api_key: Optional[str] = None, model: str = GPT_OSS_120B):
        self.api_key = api_key or settings.GROQ_API_KEY
        if not self.api_key:
            raise ValueError("Groq API key not configured")

        self.model = model
        self.client = AsyncOpenAI(
            api_key=self.api_key,
            base_url="https://api.groq.com/openai/v1",
        )

    async def complete(self, prompt: str, **options: Any) -> str:
        return await self.chat([{"role": "user", "content": prompt}], **options)

    async def chat(self, messages: List[ChatMessage], **options: Any) -> str:
        model = options.get("model") or self.model
        kwargs = {"temperature": options.get("temperature", 0.7)}
        if options.get("max_tokens"):
            kwargs["max_tokens"] = options["max_tokens"]

        start_time = time.time()
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                **kwargs,
            )
        except Exception as e:
            raise RuntimeError(f"Groq API error: {e}") from e

        logger.debug(f"Groq {model} answered in {int((time.time() - start_time) * 1000)}ms")
        return response.choices[0].message.content or ""
