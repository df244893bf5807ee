from __future__ import annotations

import asyncio

import pytest

from fakes import FakeSpeechEndpoint, FakeTelephony, ManualClock, SlowSpeechEndpoint, settle
from telephony.errors import InvalidTargetError, SessionNotFoundError
from telephony.events import CallAnswered, CallHangup, SpeakEnded, TranscriptionReceived
from telephony.models import AudioFrame, Direction, NavigationPolicy, NavigationState
from telephony.registry import SessionConfig, SessionRegistry
from telephony.session import PostJoinActions


def _registry(client: FakeTelephony, clock: ManualClock, endpoints: list, **config) -> SessionRegistry:
    def factory():
        endpoint = FakeSpeechEndpoint()
        endpoints.append(endpoint)
        return endpoint

    return SessionRegistry(client, factory, SessionConfig(**config), sleep=clock.sleep)


def test_events_route_to_owning_session_only():
    async def scenario():
        clock = ManualClock()
        client = FakeTelephony()
        registry = _registry(client, clock, [])

        first = await registry.start_call("111")
        second = await registry.start_call("222")
        assert len(registry) == 2

        assert await registry.dispatch_event(CallAnswered(first.call_control_id)) is True
        assert first.state is NavigationState.ANSWERED
        assert second.state is NavigationState.DIALING

        assert await registry.dispatch_event(CallAnswered("v3:unknown")) is False
        await registry.shutdown()

    asyncio.run(scenario())


def test_full_session_joins_and_bridges_audio():
    async def scenario():
        clock = ManualClock()
        client = FakeTelephony(stream_url="wss://bridge.example.test/api/media")
        endpoints: list[FakeSpeechEndpoint] = []
        registry = _registry(
            client,
            clock,
            endpoints,
            post_join=PostJoinActions(restart_streaming=True, start_transcription=True),
        )

        session = await registry.start_call("83914076399")
        call_id = session.call_control_id

        async def sink(frame: bytes) -> None:
            pass

        assert await registry.attach_media(call_id, sink) is session
        await registry.dispatch_event(CallAnswered(call_id))

        # Menu phase: audio must not reach the speech endpoint.
        await clock.advance(20)
        assert session.state is NavigationState.ENTERING_PASSCODE
        assert await session.bridge.forward_inbound(AudioFrame(Direction.INBOUND, b"\xff" * 160)) is False
        assert endpoints[0].connected is False

        await clock.advance(10)
        assert session.state is NavigationState.CONFIRMED_JOINED
        assert ("streaming_start", call_id) in client.actions
        assert ("transcription_start", call_id) in client.actions
        assert endpoints[0].connected is True
        assert await session.bridge.forward_inbound(AudioFrame(Direction.INBOUND, b"\xff" * 160)) is True

        assert await registry.queue_speak(session.session_id, "hello") is True
        await settle()
        assert client.spoken == ["hello"]
        await registry.dispatch_event(SpeakEnded(call_id))
        assert session.turn.active is False

        await registry.dispatch_event(
            TranscriptionReceived(call_id, text="welcome aboard", is_final=True, confidence=0.9)
        )
        status = await registry.status(session.session_id)
        assert status["transcripts"][-1]["text"] == "welcome aboard"

        await registry.dispatch_event(CallHangup(call_id, cause="normal_clearing"))
        assert len(registry) == 0
        assert endpoints[0].closed is True
        assert session.timers.names == []

        status = await registry.status(session.session_id)
        assert status["state"] == "ENDED"

    asyncio.run(scenario())


def test_speech_unavailable_hangs_up():
    async def scenario():
        clock = ManualClock()
        client = FakeTelephony()

        def factory():
            return FakeSpeechEndpoint(fail_connect=True)

        registry = SessionRegistry(client, factory, SessionConfig(), sleep=clock.sleep)
        session = await registry.start_call("83914076399")
        await registry.dispatch_event(CallAnswered(session.call_control_id))
        await clock.advance(30)

        assert session.state is NavigationState.ENDED
        assert client.hangups == ["call-1"]

    asyncio.run(scenario())


def test_failed_session_keeps_status_snapshot():
    async def scenario():
        clock = ManualClock()
        client = FakeTelephony(dial_failures=10)
        registry = _registry(client, clock, [], policy=NavigationPolicy(max_retries=1))

        session = await registry.start_call("83914076399")
        await clock.advance(10)

        assert len(registry) == 0
        status = await registry.status(session.session_id)
        assert status["state"] == "FAILED"
        assert status["last_failure"] == "DIAL_ERROR"
        assert status["retry_count"] == 1

        with pytest.raises(SessionNotFoundError):
            await registry.get(session.session_id)

    asyncio.run(scenario())


def test_invalid_target_rejected_before_dialing():
    async def scenario():
        client = FakeTelephony()
        registry = _registry(client, ManualClock(), [])
        with pytest.raises(InvalidTargetError):
            await registry.start_call("12ab")
        assert client.dial_attempts == 0

    asyncio.run(scenario())


def test_unknown_session_lookups():
    async def scenario():
        registry = _registry(FakeTelephony(), ManualClock(), [])
        with pytest.raises(SessionNotFoundError):
            await registry.status("missing")
        with pytest.raises(SessionNotFoundError):
            await registry.end_session("missing")
        assert await registry.attach_media("v3:nobody", lambda frame: None) is None

    asyncio.run(scenario())


def test_hangup_while_speech_connects_leaves_session_dead():
    async def scenario():
        clock = ManualClock()
        client = FakeTelephony()
        endpoints: list[SlowSpeechEndpoint] = []

        def factory():
            endpoint = SlowSpeechEndpoint()
            endpoints.append(endpoint)
            return endpoint

        registry = SessionRegistry(client, factory, SessionConfig(), sleep=clock.sleep)
        session = await registry.start_call("83914076399")
        call_id = session.call_control_id
        await registry.dispatch_event(CallAnswered(call_id))
        await clock.advance(30)
        assert session.state is NavigationState.CONFIRMED_JOINED
        assert session.bridge.active is False

        await registry.dispatch_event(CallHangup(call_id, cause="normal_clearing"))
        assert len(registry) == 0

        endpoints[0].release.set()
        await settle()

        assert session.bridge.active is False
        assert session.bridge._speaker is None
        assert endpoints[0].closed is True

    asyncio.run(scenario())


def test_speech_drop_mid_call_hangs_up():
    async def scenario():
        clock = ManualClock()
        client = FakeTelephony()
        endpoints: list[FakeSpeechEndpoint] = []
        registry = _registry(client, clock, endpoints)

        session = await registry.start_call("83914076399")
        await registry.dispatch_event(CallAnswered(session.call_control_id))
        await clock.advance(30)
        assert session.bridge.active is True

        await endpoints[0].on_disconnect()

        assert session.state is NavigationState.ENDED
        assert client.hangups == ["call-1"]
        assert len(registry) == 0

    asyncio.run(scenario())
