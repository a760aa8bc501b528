"""
tests.test_event_router
~~~~~~~~~~~~~~~~~~~~~~~

EventRouter 事件分发测试：权限闸门、播放同步、播放列表、聊天、异常帧。
"""
from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from tests.helpers import drain, events, last
from watchparty.core.rate_limit import WebSocketRateLimiter


def frame(event: str, **data) -> dict:
    return {"event": event, "data": data}


async def create(router, session, **overrides) -> None:
    data = {
        "roomName": "movie-night",
        "username": "A",
        "adminPassword": "x",
        "joiningId": "j",
        "duration": 1,
    }
    data.update(overrides)
    await router.dispatch(session, {"event": "create-room", "data": data})


async def join(router, session, username: str, **overrides) -> None:
    data = {"username": username, "roomName": "movie-night", "joiningId": "j"}
    data.update(overrides)
    await router.dispatch(session, {"event": "join-room", "data": data})


@pytest_asyncio.fixture()
async def party(router, make_session):
    """一个管理员 A 和一个观众 B 的房间，出站队列已清空。"""
    a, b = make_session(), make_session()
    await create(router, a)
    await join(router, b, "B")
    drain(a)
    drain(b)
    return a, b


class TestMovieNight:
    """完整观影流程。"""

    @pytest.mark.asyncio
    async def test_full_session(self, router, system, clock, make_session) -> None:
        a, b = make_session(), make_session()

        await create(router, a)
        assert last(drain(a), "room-created")["role"] == "admin"

        await join(router, b, "B")
        joined = last(drain(b), "room-joined")
        assert joined["totalUsers"] == 2
        assert joined["role"] == "viewer"
        assert last(drain(a), "user-joined")["username"] == "B"

        await router.dispatch(a, frame("play", time=10))
        assert last(drain(b), "play") == {"time": 10, "from": "A"}
        assert "play" not in events(drain(a))

        clock.advance(3)
        await router.dispatch(b, frame("request-sync"))
        state = last(drain(b), "sync-state")
        assert state["isPlaying"] is True
        assert state["currentTime"] == pytest.approx(13)
        assert state["remainingTime"] == 57

        await router.disconnect(a)
        assert last(drain(b), "user-left")["noAdminWarning"] is True

        await asyncio.sleep(0.2)

        destroyed = last(drain(b), "room-destroyed")
        assert destroyed["reason"] == "no_admin"
        assert system.list_rooms() == []


class TestPermissionGate:
    """非管理员的控制请求只通知请求方，且不改变房间状态。"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("event", "data", "message"),
        [
            ("play", {"time": 5}, "Only admins can control playback"),
            ("pause", {"time": 5}, "Only admins can control playback"),
            ("seek", {"time": 5}, "Only admins can seek video"),
            ("video-change", {"videoId": "zzz"}, "Only admins can change videos"),
            ("load-playlist", {"videoIds": ["a"]}, "Only admins can load playlists"),
            ("next-video", {}, "Only admins can change videos"),
            ("previous-video", {}, "Only admins can change videos"),
            ("update-credential", {"apiKey": "k"}, "Only admins can update API key"),
        ],
    )
    async def test_viewer_is_denied(self, router, system, party, event, data, message) -> None:
        a, b = party
        room = system.room_for(a)
        before = room.snapshot().to_wire()

        await router.dispatch(b, {"event": event, "data": data})

        assert drain(b) == [{"event": "permission-denied", "data": {"message": message}}]
        assert drain(a) == []
        assert room.snapshot().to_wire() == before

    @pytest.mark.asyncio
    async def test_gate_runs_before_payload_validation(self, router, party) -> None:
        _, b = party

        await router.dispatch(b, frame("seek"))

        assert events(drain(b)) == ["permission-denied"]


class TestPlayback:
    """管理员播放控制。"""

    @pytest.mark.asyncio
    async def test_seek_keeps_playing_state(self, router, system, clock, party) -> None:
        a, b = party
        await router.dispatch(a, frame("play", time=0))
        await router.dispatch(a, frame("seek", time=42))
        clock.advance(2)

        room = system.room_for(a)
        assert room.playback.playing is True
        assert room.playback.observe() == pytest.approx(44)
        assert events(drain(b)) == ["play", "seek"]

    @pytest.mark.asyncio
    async def test_pause_freezes_position(self, router, system, clock, party) -> None:
        a, _ = party
        await router.dispatch(a, frame("pause", time=30))
        clock.advance(10)

        assert system.room_for(a).playback.observe() == 30

    @pytest.mark.asyncio
    async def test_video_change_resets_position(self, router, system, party) -> None:
        a, b = party
        await router.dispatch(a, frame("play", time=12))

        await router.dispatch(a, frame("video-change", videoId="abc"))

        assert last(drain(b), "video-change") == {"videoId": "abc", "from": "A"}
        state = system.room_for(a).snapshot().to_wire()
        assert state["videoId"] == "abc"
        assert state["currentTime"] == 0
        assert state["isPlaying"] is False

    @pytest.mark.asyncio
    async def test_negative_time_is_malformed(self, router, party) -> None:
        a, _ = party

        await router.dispatch(a, frame("play", time=-1))

        assert last(drain(a), "error-message")["code"] == "malformed_event"

    @pytest.mark.asyncio
    async def test_update_credential_toggles_pro_mode(self, router, party) -> None:
        a, b = party

        await router.dispatch(a, frame("update-credential", apiKey="secret"))
        assert last(drain(b), "pro-mode-updated")["hasProMode"] is True

        await router.dispatch(a, frame("update-credential", apiKey=""))
        assert last(drain(a), "pro-mode-updated")["hasProMode"] is False

    @pytest.mark.asyncio
    async def test_request_time(self, router, clock, party) -> None:
        _, b = party
        clock.advance(10.5)

        await router.dispatch(b, frame("request-time"))

        assert last(drain(b), "time-update") == {"remainingTime": 49}


class TestPlaylist:
    """播放列表载入与循环切换。"""

    @pytest.mark.asyncio
    async def test_load_and_wrap_forward(self, router, party) -> None:
        a, b = party

        await router.dispatch(a, frame("load-playlist", videoIds=["v1", "v2", "v3"]))
        loaded = last(drain(b), "playlist-loaded")
        assert loaded["videoIds"] == ["v1", "v2", "v3"]
        assert loaded["currentIndex"] == 0
        assert loaded["videoId"] == "v1"

        for _ in range(3):
            await router.dispatch(a, frame("next-video"))

        changes = [f["data"] for f in drain(b) if f["event"] == "video-change"]
        assert [c["playlistIndex"] for c in changes] == [1, 2, 0]
        assert changes[-1]["videoId"] == "v1"
        # 切换结果同样发给发起者
        assert events(drain(a)).count("video-change") == 3

    @pytest.mark.asyncio
    async def test_previous_wraps_to_end(self, router, party) -> None:
        a, b = party
        await router.dispatch(a, frame("load-playlist", videoIds=["v1", "v2", "v3"]))

        await router.dispatch(a, frame("previous-video"))

        change = last(drain(b), "video-change")
        assert change["videoId"] == "v3"
        assert change["playlistIndex"] == 2

    @pytest.mark.asyncio
    async def test_empty_playlist_load_is_rejected(self, router, party) -> None:
        a, _ = party

        await router.dispatch(a, frame("load-playlist", videoIds=[]))

        assert last(drain(a), "error-message")["code"] == "malformed_event"

    @pytest.mark.asyncio
    async def test_step_without_playlist(self, router, party) -> None:
        a, b = party

        await router.dispatch(a, frame("next-video"))

        assert last(drain(a), "error-message")["code"] == "empty_playlist"
        assert drain(b) == []


class TestChat:
    """聊天消息与限流。"""

    @pytest.mark.asyncio
    async def test_message_reaches_everyone(self, router, system, party) -> None:
        a, b = party

        await router.dispatch(b, frame("chat-message", message="  hello  "))

        for session in (a, b):
            entry = last(drain(session), "chat-message")
            assert entry["kind"] == "user"
            assert entry["author"] == "B"
            assert entry["body"] == "hello"
        assert system.room_for(a).chat.history()[-1].body == "hello"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ["", "   ", "x" * 501])
    async def test_invalid_message_rejected(self, router, party, message) -> None:
        a, b = party

        await router.dispatch(b, frame("chat-message", message=message))

        assert last(drain(b), "error-message")["code"] == "malformed_event"
        assert drain(a) == []

    @pytest.mark.asyncio
    async def test_rate_limited(self, router, party) -> None:
        a, b = party
        router.chat_limiter = WebSocketRateLimiter(interval_seconds=60)

        await router.dispatch(b, frame("chat-message", message="one"))
        await router.dispatch(b, frame("chat-message", message="two"))

        b_frames = drain(b)
        assert last(b_frames, "error-message")["code"] == "rate_limited"
        bodies = [f["data"]["body"] for f in drain(a) if f["event"] == "chat-message"]
        assert bodies == ["one"]

    @pytest.mark.asyncio
    async def test_joiner_receives_history(self, router, party, make_session) -> None:
        a, _ = party
        await router.dispatch(a, frame("chat-message", message="before"))
        c = make_session()

        await join(router, c, "C")

        history = last(drain(c), "chat-history")["messages"]
        assert "before" in [m["body"] for m in history]


class TestMalformedInput:
    """异常帧只回送错误，不影响连接。"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "bad_frame",
        [
            "not-an-object",
            {"data": {}},
            {"event": "play", "data": [1, 2]},
            {"event": "teleport", "data": {}},
        ],
    )
    async def test_bad_frames(self, router, make_session, bad_frame) -> None:
        session = make_session()

        await router.dispatch(session, bad_frame)

        assert last(drain(session), "error-message")["code"] == "malformed_event"

    @pytest.mark.asyncio
    async def test_event_outside_room(self, router, make_session) -> None:
        session = make_session()

        await router.dispatch(session, frame("request-sync"))

        assert last(drain(session), "error-message")["code"] == "not_in_room"

    @pytest.mark.asyncio
    async def test_join_requires_room_reference(self, router, make_session) -> None:
        session = make_session()

        await router.dispatch(session, frame("join-room", username="B"))

        assert last(drain(session), "error-message")["code"] == "malformed_event"

    @pytest.mark.asyncio
    async def test_join_unknown_room(self, router, make_session) -> None:
        session = make_session()

        await join(router, session, "B")

        assert last(drain(session), "error-message")["code"] == "not_found_or_expired"

    @pytest.mark.asyncio
    async def test_join_by_room_id(self, router, make_session) -> None:
        a, b = make_session(), make_session()

        await router.dispatch(a, frame("join-room", username="alice", roomId="lobby"))
        await router.dispatch(b, frame("join-room", username="bob", roomId="lobby"))

        assert last(drain(a), "room-created")["role"] == "admin"
        assert last(drain(b), "room-joined")["role"] == "viewer"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported(self, router, make_session) -> None:
        session = make_session()

        async def explode(session, data):
            raise RuntimeError("boom")

        router._handlers["request-time"] = explode
        await router.dispatch(session, frame("request-time"))

        assert last(drain(session), "error-message") == {
            "code": "internal_error",
            "message": "Internal server error",
        }

    @pytest.mark.asyncio
    async def test_disconnect_clears_rate_limit_record(self, router, party) -> None:
        _, b = party
        router.chat_limiter = WebSocketRateLimiter(interval_seconds=60)
        await router.dispatch(b, frame("chat-message", message="hi"))

        await router.disconnect(b)

        assert b.connection_id not in router.chat_limiter._last_message_time
