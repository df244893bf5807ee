"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Telnyx call control
    telnyx_api_key: str | None = Field(default=None)
    telnyx_api_base: str = Field(default="https://api.telnyx.com/v2")
    telnyx_connection_id: str | None = Field(
        default=None, description="Call Control application / connection id used for outbound calls."
    )
    telnyx_from_number: str | None = Field(default=None, description="E.164 caller id, e.g. +1415...")
    default_dial_in_number: str = Field(
        default="+16699009128",
        description="Conference PSTN dial-in number used when a request does not name one.",
    )
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for webhooks and the media stream (e.g. https://<ngrok>.ngrok-free.app).",
    )
    telnyx_request_timeout_s: float = Field(default=10.0, gt=0)
    transport_max_retries: int = Field(default=3, ge=0)
    transport_retry_base_s: float = Field(default=2.0, ge=0)
    dtmf_duration_ms: int = Field(default=300, ge=100, le=500)

    # Menu navigation
    answer_timeout_s: float = Field(default=30.0, gt=0)
    settle_delay_s: float = Field(
        default=5.0, description="Pause after answer so the menu greeting can finish."
    )
    group_delay_s: float = Field(default=8.0, description="Pause after the meeting id batch.")
    attendee_delay_s: float = Field(default=5.0, description="Pause after the attendee id skip.")
    join_confirm_s: float = Field(
        default=10.0, description="Quiet period after the passcode batch treated as a successful join."
    )
    skip_attendee_id: bool = Field(default=True)
    verify_call_alive: bool = Field(default=True)
    max_retries: int = Field(default=3, ge=0)
    retry_base_s: float = Field(default=2.0, ge=0)
    retry_cap_s: float = Field(default=30.0, ge=0)
    keepalive_interval_s: float = Field(default=15.0, gt=0)
    max_call_duration_s: float | None = Field(default=None)

    # Speech endpoint (Gemini Live)
    gemini_api_key: str | None = Field(default=None)
    gemini_model: str = Field(default="gemini-2.5-flash-native-audio-latest")
    gemini_voice: str = Field(default="Kore")
    gemini_ws_url: str = Field(
        default=(
            "wss://generativelanguage.googleapis.com/ws/"
            "google.ai.generativelanguage.v1alpha.GenerativeService.BidiGenerateContent"
        )
    )
    agent_name: str = Field(default="AI Assistant")
    agent_role: str = Field(default="a meeting assistant")
    speech_setup_timeout_s: float = Field(default=15.0, gt=0)
    speech_connect_attempts: int = Field(default=3, ge=1)

    # Speech delivery
    speech_delivery: Literal["speak", "audio"] = Field(
        default="speak",
        description="'speak' issues one text-to-speech action per reply; 'audio' streams synthesized PCM.",
    )
    speak_voice: str = Field(default="male")
    speak_language: str = Field(default="en-US")
    speak_per_word_ms: int = Field(default=400, ge=0)
    speak_overhead_ms: int = Field(default=5000, ge=0)
    speak_queue_size: int = Field(default=8, ge=1)

    # Live transcription side-channel
    enable_call_transcription: bool = Field(default=False)
    transcription_language: str = Field(default="en")
    transcript_history: int = Field(default=200, ge=1)

    # Diagnostics
    capture_dir: Path | None = Field(
        default=None, description="If set, the first seconds of forwarded audio are dumped here as WAV."
    )
    capture_seconds: float = Field(default=10.0, gt=0)

    @field_validator("capture_dir")
    @classmethod
    def ensure_capture_dir(cls, value: Path | None) -> Path | None:
        if value is not None:
            value.mkdir(parents=True, exist_ok=True)
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
