# Tests for live/session.py and live/protocol.py

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from claimwatch.credentials import AuthContext, CredentialPolicy
from claimwatch.errors import NotAuthenticated, SessionTransportError
from claimwatch.events import (
    CLAIM_DETECTED,
    CLOSED,
    CONNECTION_ERROR,
    SERVER_CONTENT,
    SETUP_COMPLETE,
    EventBus,
)
from claimwatch.live.protocol import ACK_RESULT, DETECT_CLAIM, tool_response_frame
from claimwatch.live.session import LiveSession, LiveSessionManager, SessionState
from fakes import FakeConnector, settle

API_KEY_AUTH = AuthContext(params={"key": "k1"})
BEARER_AUTH = AuthContext(headers={"Authorization": "Bearer at-1"})


def tool_call(*calls: tuple[str, dict]) -> dict:
    return {
        "toolCall": {
            "functionCalls": [
                {"name": DETECT_CLAIM, "id": call_id, "args": args} for call_id, args in calls
            ]
        }
    }


class Recorder:
    def __init__(self, bus: EventBus):
        self.events = []
        bus.subscribe("*", lambda e: self.events.append((e.event_type, e.data)))

    def of(self, event_type: str) -> list[dict]:
        return [data for kind, data in self.events if kind == event_type]


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return Recorder(bus)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
async def session(settings, bus, connector):
    s = LiveSession(settings, API_KEY_AUTH, bus, connect=connector)
    await s.open()
    yield s
    await s.disconnect()


class TestOpen:
    async def test_setup_frame_first(self, session, connector, settings):
        ws = connector.sockets[0]
        setup = ws.sent[0]["setup"]
        assert setup["model"] == settings.live_model
        assert setup["generation_config"] == {"response_modalities": ["AUDIO"]}
        declaration = setup["tools"][0]["function_declarations"][0]
        assert declaration["name"] == DETECT_CLAIM
        assert declaration["parameters"]["required"] == ["claim_title", "claim_text"]
        assert "Fact-Checking Listener" in setup["system_instruction"]["parts"][0]["text"]
        assert session.state is SessionState.AWAITING_SETUP_ACK

    async def test_api_key_goes_in_query(self, session, connector):
        url, kwargs = connector.calls[0]
        assert url == "wss://live.test/ws?key=k1"
        assert "Authorization" not in kwargs["additional_headers"]

    async def test_bearer_goes_in_header(self, settings, bus, connector):
        s = LiveSession(settings, BEARER_AUTH, bus, connect=connector)
        await s.open()
        url, kwargs = connector.calls[0]
        assert url == "wss://live.test/ws"
        assert kwargs["additional_headers"]["Authorization"] == "Bearer at-1"
        await s.disconnect()

    async def test_setup_complete(self, session, connector, recorder):
        connector.sockets[0].feed({"setupComplete": {}})
        await settle()
        assert session.state is SessionState.LISTENING
        assert len(recorder.of(SETUP_COMPLETE)) == 1

    async def test_connect_failure(self, settings, bus, recorder):
        s = LiveSession(settings, API_KEY_AUTH, bus, connect=FakeConnector(OSError("refused")))
        with pytest.raises(SessionTransportError):
            await s.open()
        assert s.state is SessionState.ERRORED
        assert recorder.of(CONNECTION_ERROR) == [{"message": "refused"}]
        assert recorder.of(CLOSED) == [{"code": None, "reason": "refused", "abnormal": True}]

    async def test_session_is_single_use(self, session):
        await session.disconnect()
        with pytest.raises(RuntimeError):
            await session.open()


class TestToolCalls:
    async def test_claim_published_and_acknowledged_once(self, session, connector, bus, recorder):
        # several listeners must not multiply the acknowledgement
        bus.subscribe(CLAIM_DETECTED, lambda e: None)
        bus.subscribe(CLAIM_DETECTED, lambda e: None)
        ws = connector.sockets[0]
        ws.feed({"setupComplete": {}})
        ws.feed(tool_call(("call-1", {"claim_title": "Boiling", "claim_text": "Water boils at 50C"})))
        await settle()

        assert recorder.of(CLAIM_DETECTED) == [
            {"title": "Boiling", "text": "Water boils at 50C", "call_id": "call-1"}
        ]
        assert ws.frames("tool_response") == [tool_response_frame(DETECT_CLAIM, "call-1")]
        response = ws.frames("tool_response")[0]["tool_response"]["functionResponses"][0]
        assert response["response"] == ACK_RESULT

    async def test_one_ack_per_call(self, session, connector, recorder):
        ws = connector.sockets[0]
        ws.feed(
            tool_call(
                ("a", {"claim_title": "A", "claim_text": "a"}),
                ("b", {"claim_title": "B", "claim_text": "b"}),
            )
        )
        await settle()
        ids = [f["tool_response"]["functionResponses"][0]["id"] for f in ws.frames("tool_response")]
        assert ids == ["a", "b"]
        assert len(recorder.of(CLAIM_DETECTED)) == 2

    async def test_missing_args_get_defaults(self, session, connector, recorder):
        connector.sockets[0].feed(tool_call(("c", {})))
        await settle()
        assert recorder.of(CLAIM_DETECTED) == [{"title": "Claim", "text": "Claim", "call_id": "c"}]

    async def test_unknown_tool_ignored(self, session, connector, recorder):
        ws = connector.sockets[0]
        ws.feed({"toolCall": {"functionCalls": [{"name": "other", "id": "x", "args": {}}]}})
        await settle()
        assert recorder.of(CLAIM_DETECTED) == []
        assert ws.frames("tool_response") == []

    @pytest.mark.parametrize(
        "frame",
        [
            {"toolCall": {"functionCalls": ["oops"]}},
            {"toolCall": "oops"},
            {"toolCall": {"functionCalls": {"name": DETECT_CLAIM}}},
            {"toolCall": {"functionCalls": [{"name": DETECT_CLAIM, "id": "c", "args": "oops"}]}},
        ],
    )
    async def test_malformed_tool_call_keeps_session(self, session, connector, recorder, frame):
        ws = connector.sockets[0]
        ws.feed(frame)
        ws.feed({"setupComplete": {}})
        await settle()
        assert session.state is SessionState.LISTENING
        assert ws.close_calls == 0
        assert recorder.of(CLOSED) == []
        for data in recorder.of(CLAIM_DETECTED):
            assert data == {"title": "Claim", "text": "Claim", "call_id": "c"}

    async def test_server_content_and_garbage(self, session, connector, recorder):
        ws = connector.sockets[0]
        ws.feed("not json")
        ws.feed({"serverContent": {"turnComplete": True}})
        await settle()
        assert recorder.of(SERVER_CONTENT) == [{"content": {"turnComplete": True}}]
        assert session.state is SessionState.AWAITING_SETUP_ACK


class TestAudio:
    async def test_send_audio(self, session, connector, settings):
        assert await session.send_audio("AAAA") is True
        frame = connector.sockets[0].frames("realtime_input")[0]
        assert frame == {
            "realtime_input": {
                "media_chunks": [{"mime_type": settings.audio_mime_type, "data": "AAAA"}]
            }
        }

    async def test_custom_mime_type(self, session, connector):
        await session.send_audio("AAAA", mime_type="audio/pcm;rate=24000")
        chunk = connector.sockets[0].frames("realtime_input")[0]["realtime_input"]["media_chunks"][0]
        assert chunk["mime_type"] == "audio/pcm;rate=24000"

    async def test_dropped_when_not_open(self, session, connector):
        await session.disconnect()
        assert await session.send_audio("AAAA") is False
        assert connector.sockets[0].frames("realtime_input") == []

    async def test_dropped_before_open(self, settings, bus, connector):
        s = LiveSession(settings, API_KEY_AUTH, bus, connect=connector)
        assert await s.send_audio("AAAA") is False


class TestClose:
    async def test_disconnect_is_idempotent(self, session, connector, recorder):
        await session.disconnect()
        await session.disconnect()
        assert session.state is SessionState.CLOSED
        assert connector.sockets[0].close_calls == 1
        closed = recorder.of(CLOSED)
        assert len(closed) == 1
        assert closed[0]["abnormal"] is False
        assert recorder.of(CONNECTION_ERROR) == []

    async def test_network_drop_is_abnormal(self, session, connector, recorder):
        connector.sockets[0].drop(code=1006)
        await session.wait_closed()
        assert session.state is SessionState.ERRORED
        assert len(recorder.of(CONNECTION_ERROR)) == 1
        assert recorder.of(CLOSED)[0]["abnormal"] is True
        assert recorder.of(CLOSED)[0]["code"] == 1006
        assert await session.send_audio("AAAA") is False

    async def test_server_close_is_abnormal(self, session, connector, recorder):
        connector.sockets[0].server_close(code=1000, reason="bye")
        await session.wait_closed()
        assert session.state is SessionState.ERRORED
        assert recorder.of(CLOSED) == [{"code": 1000, "reason": "bye", "abnormal": True}]
        await session.disconnect()
        assert len(recorder.of(CLOSED)) == 1


# ---------------------------------------------------------------------------
# LiveSessionManager
# ---------------------------------------------------------------------------


@pytest.fixture
def policy():
    p = MagicMock(spec=CredentialPolicy)
    p.get_auth_context = AsyncMock(return_value=API_KEY_AUTH)
    return p


@pytest.fixture
def manager(settings, policy, bus, connector):
    return LiveSessionManager(settings, policy, bus, connect=connector)


class TestManager:
    async def test_start_and_stop(self, manager, connector):
        session = await manager.start_session()
        assert manager.is_open
        assert manager.current is session
        await manager.stop_session()
        assert not manager.is_open
        assert manager.state is SessionState.CLOSED

    async def test_restart_closes_previous_first(self, settings, policy, bus):
        connector = FakeConnector()
        states_at_connect = []
        original = connector.__call__

        async def connect(url, **kwargs):
            states_at_connect.append([ws.state.name for ws in connector.sockets])
            return await original(url, **kwargs)

        manager = LiveSessionManager(settings, policy, bus, connect=connect)
        first = await manager.start_session()
        second = await manager.start_session()

        assert first.state is SessionState.CLOSED
        assert states_at_connect == [[], ["CLOSED"]]
        assert manager.current is second
        assert manager.is_open
        await manager.stop_session()

    async def test_concurrent_starts_leave_one_session(self, manager, connector):
        await asyncio.gather(manager.start_session(), manager.start_session())
        open_sockets = [ws for ws in connector.sockets if ws.state.name == "OPEN"]
        assert len(connector.sockets) == 2
        assert len(open_sockets) == 1
        await manager.stop_session()

    async def test_reader_crash_closes_socket_before_restart(self, manager, connector, recorder):
        first = await manager.start_session()
        first.handle_message = AsyncMock(side_effect=RuntimeError("handler bug"))
        connector.sockets[0].feed({"serverContent": {}})
        await first.wait_closed()

        assert first.state is SessionState.ERRORED
        assert connector.sockets[0].close_calls == 1
        assert recorder.of(CLOSED)[0]["abnormal"] is True

        await manager.start_session()
        open_sockets = [ws for ws in connector.sockets if ws.state.name == "OPEN"]
        assert open_sockets == [connector.sockets[1]]
        await manager.stop_session()

    async def test_credentials_looked_up_per_session(self, manager, policy, connector):
        await manager.start_session()
        policy.get_auth_context.return_value = BEARER_AUTH
        await manager.start_session()
        assert connector.calls[0][0].endswith("?key=k1")
        assert connector.calls[1][1]["additional_headers"]["Authorization"] == "Bearer at-1"
        await manager.stop_session()

    async def test_not_authenticated(self, manager, policy, connector):
        policy.get_auth_context.side_effect = NotAuthenticated("no credential")
        with pytest.raises(NotAuthenticated):
            await manager.start_session()
        assert connector.calls == []
        assert not manager.is_open

    async def test_send_audio_without_session(self, manager):
        assert await manager.send_audio("AAAA") is False

    async def test_stop_without_session(self, manager):
        await manager.stop_session()
        assert manager.state is SessionState.IDLE
