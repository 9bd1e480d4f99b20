"""
Model client interface shared by the planner and the llm_generate tool
"""
from typing import Any, Dict, List, Protocol, runtime_checkable

ChatMessage = Dict[str, str]  # {"role": "system" | "user" | "assistant", "content": "..."}


@runtime_checkable
class ModelClient(Protocol):
    """Anything that can turn a prompt or a conversation into text"""

    async def complete(self, prompt: str, **options: Any) -> str:
        ...

    async def chat(self, messages: List[ChatMessage], **options: Any) -> str:
        ...
