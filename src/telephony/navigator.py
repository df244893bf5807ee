"""Outbound call state machine for joining a conference through its PSTN menu.

The walk is: dial, wait for answer, let the greeting finish, key in the
meeting id, skip the attendee id, key in the passcode (or skip it), then
treat a quiet period without failure as "joined". Each field is sent as a
single tone batch; per-digit tones get truncated by real menus.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from telephony.errors import BridgeError, DialError, FailureReason, NavigationFailure
from telephony.events import (
    CallAnswered,
    CallEvent,
    CallHangup,
    CallInitiated,
    DtmfReceived,
    StreamingStarted,
    StreamingStopped,
)
from telephony.models import CallTarget, NavigationPolicy, NavigationState
from telephony.timers import SessionTimers

if TYPE_CHECKING:  # pragma: no cover
    from integrations.telnyx_client import TelnyxClient

LOGGER = logging.getLogger(__name__)

NAV_TIMERS = (
    "answer_timeout",
    "settle",
    "group_delay",
    "attendee_delay",
    "join_confirm",
    "retry_backoff",
    "keepalive",
    "max_duration",
)

JoinPredicate = Callable[["CallNavigator"], Awaitable[bool]]


async def quiet_period_joined(navigator: CallNavigator) -> bool:
    """Decide whether the passcode phase ended inside the meeting.

    The conference menu never announces a definitive "joined" event, so a
    passcode phase that elapses with the leg still up and no failure
    observed is taken as success. Swap this predicate out once the
    collaborator offers a positive signal.
    """

    if not navigator.policy.verify_call_alive or not navigator.call_control_id:
        return True
    return await navigator.client.is_alive(navigator.call_control_id)


class CallNavigator:
    def __init__(
        self,
        session_id: str,
        target: CallTarget,
        client: TelnyxClient,
        timers: SessionTimers,
        policy: NavigationPolicy | None = None,
        *,
        join_predicate: JoinPredicate = quiet_period_joined,
    ) -> None:
        self.session_id = session_id
        self.target = target
        self.client = client
        self.policy = policy or NavigationPolicy()
        self._timers = timers
        self._join_predicate = join_predicate

        self.state = NavigationState.IDLE
        self.call_control_id: str | None = None
        self.call_leg_id: str | None = None
        self.retry_count = 0
        self.last_failure: FailureReason | None = None
        self.last_failure_detail: str | None = None
        self.ended_reason: str | None = None

        self.on_joined: Callable[[], Awaitable[None]] | None = None
        self.on_terminal: Callable[[NavigationState], Awaitable[None]] | None = None
        self._terminal = asyncio.Event()

    @property
    def label(self) -> str:
        return self.session_id[:8]

    @property
    def joined(self) -> bool:
        return self.state is NavigationState.CONFIRMED_JOINED

    def _set_state(self, new_state: NavigationState) -> None:
        old_state = self.state
        self.state = new_state
        LOGGER.info("[%s] State: %s -> %s", self.label, old_state.value, new_state.value)

    async def wait_terminal(self) -> NavigationState:
        await self._terminal.wait()
        return self.state

    # -- dialing -------------------------------------------------------

    async def start_call(self) -> None:
        if self.state is not NavigationState.IDLE:
            LOGGER.warning("[%s] Cannot dial in state %s", self.label, self.state.value)
            return

        self._set_state(NavigationState.DIALING)
        try:
            handle = await self.client.create_call(
                self.target.dial_in_number,
                self.target.from_number,
                timeout_secs=int(self.policy.answer_timeout_s),
            )
        except DialError as exc:
            LOGGER.error("[%s] Dial failed: %s", self.label, exc.detail)
            await self.handle_failure(FailureReason.DIAL_ERROR, exc.detail)
            return

        if self.state is not NavigationState.DIALING:
            # Hung up or torn down while the dial request was in flight.
            await self._hangup_leg(handle.call_control_id)
            return

        self.call_control_id = handle.call_control_id
        self.call_leg_id = handle.call_leg_id
        LOGGER.info(
            "[%s] Call initiated to %s (meeting %s)",
            self.label,
            self.target.dial_in_number,
            self.target.masked_meeting_id,
        )
        self._timers.schedule("answer_timeout", self.policy.answer_timeout_s, self._on_answer_timeout)

    async def _on_answer_timeout(self) -> None:
        if self.state is NavigationState.DIALING:
            LOGGER.warning("[%s] Answer timeout", self.label)
            await self.handle_failure(FailureReason.NO_ANSWER)

    # -- call progress -------------------------------------------------

    async def on_call_progress(self, event: CallEvent) -> None:
        match event:
            case CallAnswered():
                if self.state is not NavigationState.DIALING:
                    LOGGER.debug("[%s] Ignoring answer in state %s", self.label, self.state.value)
                    return
                self._timers.cancel("answer_timeout")
                self._set_state(NavigationState.ANSWERED)
                self._timers.schedule("settle", self.policy.settle_delay_s, self._enter_identifier)
            case CallHangup(cause=cause):
                LOGGER.info("[%s] Call ended by remote (cause=%s)", self.label, cause)
                self.call_control_id = None
                await self._end(f"remote hangup: {cause or 'unknown'}")
            case DtmfReceived():
                # The menu may echo our own tones.
                pass
            case StreamingStarted():
                LOGGER.info("[%s] Media streaming started", self.label)
            case StreamingStopped():
                LOGGER.info("[%s] Media streaming stopped", self.label)
            case CallInitiated():
                LOGGER.debug("[%s] Call initiated event", self.label)
            case _:
                LOGGER.debug("[%s] Unhandled call event %s", self.label, type(event).__name__)

    # -- menu walk -----------------------------------------------------

    async def _send_batch(self, digits: str) -> None:
        if not self.call_control_id:
            raise NavigationFailure(FailureReason.CALL_DEAD, "No call leg to send tones on")
        await self.client.send_dtmf(self.call_control_id, digits, duration_ms=self.policy.dtmf_duration_ms)
        LOGGER.debug("[%s] DTMF sent: %s", self.label, "".join("*" if c.isdigit() else c for c in digits))

    async def send_identifier_digits(self) -> None:
        LOGGER.info("[%s] Sending meeting id (%s digits)", self.label, len(self.target.meeting_id))
        await self._send_batch(self.target.meeting_id + self.policy.terminator)

    async def send_attendee_skip(self) -> None:
        LOGGER.info("[%s] Skipping attendee id", self.label)
        await self._send_batch(self.policy.terminator)

    async def send_passcode_digits(self) -> None:
        if self.target.passcode:
            LOGGER.info("[%s] Sending passcode", self.label)
        else:
            LOGGER.info("[%s] No passcode, sending terminator to skip", self.label)
        await self._send_batch(self.target.passcode + self.policy.terminator)

    async def _step(self, action: Callable[[], Awaitable[None]]) -> bool:
        """Run one menu action; False means the walk must not continue."""

        expected = self.state
        call_id = self.call_control_id
        try:
            if self.policy.verify_call_alive:
                if not call_id or not await self.client.is_alive(call_id):
                    raise NavigationFailure(FailureReason.CALL_DEAD, f"Call dead during {expected.value}")
            await action()
        except NavigationFailure as exc:
            await self.handle_failure(exc.reason, exc.detail)
            return False
        except BridgeError as exc:
            await self.handle_failure(FailureReason.ACTION_ERROR, exc.detail)
            return False

        return self.state is expected and self.call_control_id == call_id

    async def _enter_identifier(self) -> None:
        if self.state is not NavigationState.ANSWERED:
            return
        self._set_state(NavigationState.ENTERING_IDENTIFIER)
        if not await self._step(self.send_identifier_digits):
            return

        following = self._skip_attendee if self.policy.skip_attendee_id else self._enter_passcode
        self._timers.schedule("group_delay", self.policy.group_delay_s, following)

    async def _skip_attendee(self) -> None:
        if self.state is not NavigationState.ENTERING_IDENTIFIER:
            return
        if not await self._step(self.send_attendee_skip):
            return
        self._timers.schedule("attendee_delay", self.policy.attendee_delay_s, self._enter_passcode)

    async def _enter_passcode(self) -> None:
        if self.state is not NavigationState.ENTERING_IDENTIFIER:
            return
        self._set_state(NavigationState.ENTERING_PASSCODE)
        if not await self._step(self.send_passcode_digits):
            return
        self._timers.schedule("join_confirm", self.policy.join_confirm_s, self._on_join_window_elapsed)

    async def _on_join_window_elapsed(self) -> None:
        if self.state is not NavigationState.ENTERING_PASSCODE:
            return
        try:
            joined = await self._join_predicate(self)
        except BridgeError as exc:
            await self.handle_failure(FailureReason.ACTION_ERROR, exc.detail)
            return

        if self.state is not NavigationState.ENTERING_PASSCODE:
            return
        if joined:
            await self.confirm_joined()
        else:
            await self.handle_failure(FailureReason.CALL_DEAD, "Call dropped during passcode phase")

    async def confirm_joined(self) -> None:
        if self.state is not NavigationState.ENTERING_PASSCODE:
            LOGGER.warning("[%s] confirm_joined in state %s ignored", self.label, self.state.value)
            return

        self._set_state(NavigationState.CONFIRMED_JOINED)
        LOGGER.info("[%s] Joined meeting %s", self.label, self.target.masked_meeting_id)

        if self.policy.verify_call_alive:
            self._timers.schedule("keepalive", self.policy.keepalive_interval_s, self._keepalive)
        if self.policy.max_call_duration_s:
            self._timers.schedule("max_duration", self.policy.max_call_duration_s, self._on_max_duration)

        if self.on_joined is not None:
            await self.on_joined()

    async def _keepalive(self) -> None:
        if self.state is not NavigationState.CONFIRMED_JOINED or not self.call_control_id:
            return
        try:
            alive = await self.client.is_alive(self.call_control_id)
        except BridgeError as exc:
            LOGGER.warning("[%s] Keepalive status check failed: %s", self.label, exc.detail)
            alive = True

        if not alive:
            LOGGER.info("[%s] Call no longer alive", self.label)
            self.call_control_id = None
            await self._end("call no longer alive")
            return
        self._timers.schedule("keepalive", self.policy.keepalive_interval_s, self._keepalive)

    async def _on_max_duration(self) -> None:
        LOGGER.info("[%s] Maximum call duration reached", self.label)
        await self.hangup()

    # -- failure and teardown ------------------------------------------

    async def handle_failure(self, reason: FailureReason, detail: str | None = None) -> None:
        if self.state.terminal:
            return

        self._timers.cancel_many(NAV_TIMERS)
        self.last_failure = reason
        self.last_failure_detail = detail
        LOGGER.warning("[%s] Failure: %s (retry %s/%s)", self.label, reason.value, self.retry_count, self.policy.max_retries)

        # Detach first so the old leg's hangup webhook no longer routes here.
        stale = self.call_control_id
        self.call_control_id = None
        self.call_leg_id = None
        if stale:
            await self._hangup_leg(stale)
        if self.state.terminal:
            return

        if self.retry_count < self.policy.max_retries:
            self.retry_count += 1
            self._set_state(NavigationState.IDLE)
            delay = self.policy.backoff(self.retry_count)
            LOGGER.info(
                "[%s] Retrying in %.1fs (attempt %s/%s)", self.label, delay, self.retry_count, self.policy.max_retries
            )
            self._timers.schedule("retry_backoff", delay, self.start_call)
            return

        self._set_state(NavigationState.FAILED)
        LOGGER.error("[%s] Giving up after %s retries: %s", self.label, self.retry_count, reason.value)
        await self._finish()

    async def _hangup_leg(self, call_control_id: str) -> None:
        try:
            await self.client.hangup(call_control_id)
        except BridgeError as exc:
            LOGGER.debug("[%s] Hangup of leg %s failed: %s", self.label, call_control_id, exc.detail)

    async def hangup(self) -> None:
        """Best-effort hangup; always ends in ENDED unless already terminal."""

        self._timers.cancel_many(NAV_TIMERS)
        call_id = self.call_control_id
        if call_id and not self.state.terminal:
            try:
                await self.client.hangup(call_id)
                LOGGER.info("[%s] Call hung up", self.label)
            except BridgeError as exc:
                LOGGER.warning("[%s] Hangup failed: %s", self.label, exc.detail)
        await self._end("hangup requested")

    async def _end(self, reason: str) -> None:
        if self.state.terminal:
            return
        self._timers.cancel_many(NAV_TIMERS)
        self.ended_reason = reason
        self._set_state(NavigationState.ENDED)
        await self._finish()

    async def _finish(self) -> None:
        self._terminal.set()
        if self.on_terminal is not None:
            await self.on_terminal(self.state)
