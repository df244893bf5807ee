"""Domain-specific exceptions for call navigation and the audio bridge.

These exceptions are safe to import from API layers without pulling in
network clients.
"""

from __future__ import annotations

from enum import Enum


class FailureReason(str, Enum):
    NO_ANSWER = "NO_ANSWER"
    DIAL_ERROR = "DIAL_ERROR"
    ACTION_ERROR = "ACTION_ERROR"
    CALL_DEAD = "CALL_DEAD"
    INVALID_IDENTIFIER = "INVALID_IDENTIFIER"


class BridgeError(Exception):
    status_code: int = 500
    default_detail: str = "Bridge error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class TransportError(BridgeError):
    """Collaborator API unreachable or the connection was reset."""

    status_code = 503
    default_detail = "Telephony API unreachable."


class DialError(BridgeError):
    status_code = 502
    default_detail = "Outbound call could not be placed."


class ActionError(BridgeError):
    status_code = 502
    default_detail = "Call action failed."


class NavigationFailure(BridgeError):
    status_code = 502
    default_detail = "Menu navigation failed."

    def __init__(self, reason: FailureReason, detail: str | None = None) -> None:
        super().__init__(detail or reason.value)
        self.reason = reason


class MalformedEventError(BridgeError):
    status_code = 400
    default_detail = "Malformed event payload."


class InvalidTargetError(BridgeError):
    status_code = 422
    default_detail = "Meeting identifier and passcode must be digits."


class SessionNotFoundError(BridgeError):
    status_code = 404
    default_detail = "Session not found."


class SpeechEndpointError(BridgeError):
    status_code = 503
    default_detail = "Speech endpoint unavailable."


class DeliveryUnavailableError(BridgeError):
    status_code = 409
    default_detail = "Text speech is not available for this session."
