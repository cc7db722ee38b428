"""
Request bodies accepted by the HTTP API.
"""

from typing import Optional

from pydantic import BaseModel, Field


class CreateSessionRequest(BaseModel):
    session_id: str = Field(..., description="Identifier for the new session")


class SendMessageRequest(BaseModel):
    to: str = Field(..., description="Phone number or chat id")
    message: str


class ValidateKeyRequest(BaseModel):
    key: str


class LimitsUpdateRequest(BaseModel):
    max_messages_per_session: Optional[int] = None
    max_total_sessions: Optional[int] = None
    memory_warning_mb: Optional[float] = None
    memory_critical_mb: Optional[float] = None
    session_timeout_hours: Optional[float] = None
    cleanup_interval_minutes: Optional[float] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_none=True)
