from __future__ import annotations

import asyncio
import logging

from telephony.timers import SessionTimers

LOGGER = logging.getLogger(__name__)

SAFETY_TIMER = "turn_safety"


def estimate_speech_ms(text: str, *, per_word_ms: int = 400, overhead_ms: int = 5000) -> int:
    """Rough playback duration for ``text``: words x per-word time + fixed overhead."""

    words = len(text.split())
    return words * per_word_ms + overhead_ms


class TurnLock:
    """Per-session "we are speaking" flag with a safety expiry.

    While set, inbound audio is not forwarded (echo suppression) and no
    second playback may start. It is cleared by an explicit playback-ended
    signal or, if that signal is lost, by the safety timer.
    """

    def __init__(self, timers: SessionTimers, *, label: str = "") -> None:
        self._timers = timers
        self._label = label
        self._speaking = False
        self._clear = asyncio.Event()
        self._clear.set()

    @property
    def active(self) -> bool:
        return self._speaking

    def begin_turn(self, estimated_ms: int) -> bool:
        """Take the turn. Returns False if a turn is already in flight."""

        if self._speaking:
            return False
        self._speaking = True
        self._clear.clear()
        self._timers.schedule(SAFETY_TIMER, estimated_ms / 1000, self._expire)
        LOGGER.debug("[%s] turn started (safety %sms)", self._label, estimated_ms)
        return True

    def extend(self, estimated_ms: int) -> None:
        """Re-arm the safety timer of the current turn."""

        if self._speaking:
            self._timers.schedule(SAFETY_TIMER, estimated_ms / 1000, self._expire)

    def end_turn(self) -> None:
        if not self._speaking:
            return
        self._speaking = False
        self._timers.cancel(SAFETY_TIMER)
        self._clear.set()
        LOGGER.debug("[%s] turn ended", self._label)

    async def wait_clear(self) -> None:
        await self._clear.wait()

    def _expire(self) -> None:
        if self._speaking:
            LOGGER.warning("[%s] playback-ended signal missed; turn released by safety timer", self._label)
            self.end_turn()
