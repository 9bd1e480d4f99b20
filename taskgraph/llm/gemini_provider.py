"""
Google Gemini model client

Models:
- gemini-2.5-flash: planning / complex reasoning (default)
- gemini-3-flash-preview: fast tasks
"""
from google import genai
from typing import Any, Dict, List, Optional
import logging
import time

from taskgraph.config import settings
from taskgraph.llm.base import ChatMessage

logger = logging.getLogger(__name__)


class GeminiProvider:
    """Google Gemini API wrapper implementing ModelClient"""

    FLASH_3_0 = "gemini-3-flash-preview"
    FLASH_2_5 = "gemini-2.5-flash"

    def __init__(self, api_key: Optional[str] = None, model: str = FLASH_2_5):
        self.api_key = api_key or settings.GOOGLE_API_KEY
        if not self.api_key:
            raise ValueError("Google API key not configured")

        self.model = model
        self.client = genai.Client(api_key=self.api_key)

    async def complete(self, prompt: str, **options: Any) -> str:
        return await self.chat([{"role": "user", "content": prompt}], **options)

    async def chat(self, messages: List[ChatMessage], **options: Any) -> str:
        """
        Send a conversation to Gemini.

        Args:
            messages: Chat messages; "system" entries become the system instruction
            **options: model, temperature, max_tokens

        Returns:
            The response text
        """
        model = options.get("model") or self.model
        config: Dict[str, Any] = {"temperature": options.get("temperature", 0.7)}
        if options.get("max_tokens"):
            config["max_output_tokens"] = options["max_tokens"]

        system = [m["content"] for m in messages if m["role"] == "system"]
        if system:
            config["system_instruction"] = "\n\n".join(system)

        contents = [
            {
                "role": "model" if m["role"] == "assistant" else "user",
                "parts": [{"text": m["content"]}],
            }
            for m in messages
            if m["role"] != "system"
        ]

        start_time = time.time()
        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=contents,
                config=config,
            )
        except Exception as e:
            raise RuntimeError(f"Gemini API error: {e}") from e

        logger.debug(f"Gemini {model} answered in {int((time.time() - start_time) * 1000)}ms")
        return response.text or ""
