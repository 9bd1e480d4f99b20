"""
Pydantic models for request validation
"""
from pydantic import BaseModel, Field
from typing import Any, Dict


class ConfirmationPolicy(BaseModel):
    """Answers for confirmation points, given up front since HTTP callers can't answer mid-request"""
    confirmations: Dict[str, bool] = Field(default_factory=dict)
    auto_confirm: bool = False

    def decide(self, step_id: str) -> bool:
        return self.confirmations.get(step_id, self.auto_confirm)


class RunTaskRequest(ConfirmationPolicy):
    prompt: str = Field(..., min_length=1, max_length=5000)
    context: Dict[str, Any] = Field(default_factory=dict)


class ResumeTaskRequest(ConfirmationPolicy):
    pass
