"""Value types shared by the navigator, the bridge and the registry."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from telephony.errors import InvalidTargetError

_DIGITS = re.compile(r"^[0-9]+$")


class NavigationState(str, Enum):
    IDLE = "IDLE"
    DIALING = "DIALING"
    ANSWERED = "ANSWERED"
    ENTERING_IDENTIFIER = "ENTERING_IDENTIFIER"
    ENTERING_PASSCODE = "ENTERING_PASSCODE"
    CONFIRMED_JOINED = "CONFIRMED_JOINED"
    FAILED = "FAILED"
    ENDED = "ENDED"

    @property
    def terminal(self) -> bool:
        return self in (NavigationState.FAILED, NavigationState.ENDED)


class Direction(str, Enum):
    # Audio captured from the call (the remote meeting) heading to the speech endpoint.
    INBOUND = "inbound"
    # Audio we play into the call.
    OUTBOUND = "outbound"


@dataclass(frozen=True, slots=True)
class AudioFrame:
    direction: Direction
    payload: bytes
    encoding: str = "pcmu"
    sample_rate: int = 8000


def _strip(value: str | None) -> str:
    return re.sub(r"\s+", "", value or "")


@dataclass(frozen=True, slots=True)
class CallTarget:
    """What to dial and which digits to enter once the menu answers."""

    meeting_id: str
    dial_in_number: str
    from_number: str
    passcode: str = ""

    def __post_init__(self) -> None:
        meeting_id = _strip(self.meeting_id)
        passcode = _strip(self.passcode)
        if not _DIGITS.match(meeting_id):
            raise InvalidTargetError("Meeting identifier must be a non-empty digit sequence.")
        if passcode and not _DIGITS.match(passcode):
            raise InvalidTargetError("Passcode must contain digits only.")
        if not self.dial_in_number:
            raise InvalidTargetError("Dial-in number is required.")
        object.__setattr__(self, "meeting_id", meeting_id)
        object.__setattr__(self, "passcode", passcode)

    @property
    def masked_meeting_id(self) -> str:
        return "*" * len(self.meeting_id)


@dataclass(slots=True)
class NavigationPolicy:
    """Timing and retry knobs for the menu walk (seconds)."""

    answer_timeout_s: float = 30.0
    settle_delay_s: float = 5.0
    group_delay_s: float = 8.0
    attendee_delay_s: float = 5.0
    join_confirm_s: float = 10.0
    skip_attendee_id: bool = True
    verify_call_alive: bool = True
    max_retries: int = 3
    retry_base_s: float = 2.0
    retry_cap_s: float = 30.0
    keepalive_interval_s: float = 15.0
    max_call_duration_s: float | None = None
    dtmf_duration_ms: int = 300
    terminator: str = "#"

    def backoff(self, attempt: int) -> float:
        """Delay before re-dial number ``attempt`` (1-based)."""

        return min(self.retry_base_s * (2**attempt), self.retry_cap_s)

    @classmethod
    def from_settings(cls, settings) -> NavigationPolicy:
        return cls(
            answer_timeout_s=settings.answer_timeout_s,
            settle_delay_s=settings.settle_delay_s,
            group_delay_s=settings.group_delay_s,
            attendee_delay_s=settings.attendee_delay_s,
            join_confirm_s=settings.join_confirm_s,
            skip_attendee_id=settings.skip_attendee_id,
            verify_call_alive=settings.verify_call_alive,
            max_retries=settings.max_retries,
            retry_base_s=settings.retry_base_s,
            retry_cap_s=settings.retry_cap_s,
            keepalive_interval_s=settings.keepalive_interval_s,
            max_call_duration_s=settings.max_call_duration_s,
            dtmf_duration_ms=settings.dtmf_duration_ms,
        )


@dataclass(slots=True)
class TranscriptEntry:
    role: str
    text: str
    source: str = "speech"
    confidence: float | None = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
