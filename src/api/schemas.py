"""API-facing Pydantic models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class StartCallRequest(BaseModel):
    meeting_id: str = Field(description="Conference meeting id (digits; spaces are ignored).")
    passcode: str | None = Field(default=None, description="Optional numeric passcode.")
    dial_in_number: str | None = Field(default=None, description="E.164 dial-in number; defaults to settings.")


class StartCallResponse(BaseModel):
    session_id: str
    state: str
    message: str = "Dialing conference..."


class TranscriptItem(BaseModel):
    role: str
    text: str
    source: str
    at: datetime


class SessionStatusResponse(BaseModel):
    session_id: str
    state: str
    call_control_id: str | None = None
    retry_count: int = 0
    last_failure: str | None = None
    last_failure_detail: str | None = None
    ended_reason: str | None = None
    speaking: bool = False
    bridge_active: bool = False
    created_at: datetime
    transcripts: list[TranscriptItem] = Field(default_factory=list)


class SpeakRequest(BaseModel):
    text: str = Field(min_length=1)


class SpeakResponse(BaseModel):
    queued: bool
    text: str
