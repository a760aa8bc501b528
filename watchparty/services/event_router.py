"""
watchparty.services.event_router
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

事件路由 —— 把客户端入站事件分发到房间操作。

每个事件的处理流程:
  1. 解析帧 ``{"event": ..., "data": {...}}`` 并用 Pydantic 校验负载
  2. 定位会话所在房间（``create-room`` / ``join-room`` 除外）
  3. 管理员操作先经过权限闸门，拒绝时只通知请求方
  4. 在房间锁内修改状态，并向自己 / 其他人 / 全体成员发送结果

业务异常（``PartyError``）只回送给请求方，不影响房间和其他连接。
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from watchparty.core.errors import (
    EmptyPlaylist,
    MalformedEvent,
    PartyError,
    PermissionDenied,
    RateLimited,
)
from watchparty.core.logging import get_logger
from watchparty.core.rate_limit import WebSocketRateLimiter
from watchparty.schemas.party import (
    ChatMessageRequest,
    CreateRoomRequest,
    JoinRoomRequest,
    LoadPlaylistRequest,
    PlaybackRequest,
    UpdateCredentialRequest,
    VideoChangeRequest,
)
from watchparty.services.party_system import PartySystem
from watchparty.services.session import ConnectionSession
from watchparty.services.watch_room import WatchRoom, authorize

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
Handler = Callable[[ConnectionSession, dict], Awaitable[None]]


def _parse(model: type[ModelT], data: dict) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "data" for err in e.errors())
        raise MalformedEvent(f"Invalid or missing fields: {fields}") from e


class EventRouter:
    """WebSocket 事件路由器。

    Attributes:
        system: 观影系统。
        chat_limiter: 聊天消息限流器。
    """

    def __init__(self, system: PartySystem) -> None:
        self.system = system
        self.chat_limiter = WebSocketRateLimiter(
            interval_seconds=system.settings.WS_CHAT_RATE_LIMIT_INTERVAL,
        )
        self._handlers: dict[str, Handler] = {
            "create-room": self.on_create_room,
            "join-room": self.on_join_room,
            "chat-message": self.on_chat_message,
            "play": self.on_play,
            "pause": self.on_pause,
            "seek": self.on_seek,
            "video-change": self.on_video_change,
            "load-playlist": self.on_load_playlist,
            "next-video": self.on_next_video,
            "previous-video": self.on_previous_video,
            "update-credential": self.on_update_credential,
            "request-sync": self.on_request_sync,
            "request-time": self.on_request_time,
        }

    @property
    def events(self) -> list[str]:
        return list(self._handlers)

    async def dispatch(self, session: ConnectionSession, frame: Any) -> None:
        """处理一帧入站消息，所有业务异常都转换为发给请求方的事件。"""
        try:
            event, data = self._unpack(frame)
            handler = self._handlers.get(event)
            if handler is None:
                raise MalformedEvent(f"Unknown event: {event}")
            await handler(session, data)
        except PermissionDenied as e:
            session.send("permission-denied", {"message": e.message})
        except PartyError as e:
            logger.debug("事件处理失败 | code=%s | %s", e.code, e.message)
            session.send("error-message", {"code": e.code, "message": e.message})
        except Exception as e:
            logger.error("事件处理异常: %s", e, exc_info=True)
            session.send("error-message", {"code": "internal_error", "message": "Internal server error"})

    async def disconnect(self, session: ConnectionSession) -> None:
        """连接断开：等同于离开房间。"""
        try:
            await self.system.leave(session)
        finally:
            self.chat_limiter.remove_client(session.connection_id)

    @staticmethod
    def _unpack(frame: Any) -> tuple[str, dict]:
        if not isinstance(frame, dict):
            raise MalformedEvent("Frame must be a JSON object")
        event = frame.get("event")
        data = frame.get("data")
        if not isinstance(event, str) or not event:
            raise MalformedEvent("Missing event name")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise MalformedEvent("Event data must be a JSON object")
        return event, data

    def _require_admin(self, room: WatchRoom, session: ConnectionSession, message: str) -> None:
        if not authorize(room, session.connection_id):
            logger.info("权限拒绝 | room=%s | user=%s", room.room_id, session.display_name)
            raise PermissionDenied(message)

    # ── 房间 ──────────────────────────────────────────────────────────

    async def on_create_room(self, session: ConnectionSession, data: dict) -> None:
        request = _parse(CreateRoomRequest, data)
        await self.system.create_room(session, request)

    async def on_join_room(self, session: ConnectionSession, data: dict) -> None:
        request = _parse(JoinRoomRequest, data)
        if request.room_name is not None:
            await self.system.join_room(session, request)
        else:
            await self.system.join_or_create(session, request.room_id, request.username)

    # ── 聊天 ──────────────────────────────────────────────────────────

    async def on_chat_message(self, session: ConnectionSession, data: dict) -> None:
        request = _parse(ChatMessageRequest, data)
        body = request.message.strip()
        if not body:
            raise MalformedEvent("Message must not be empty")
        if len(body) > self.system.settings.MAX_CHAT_MESSAGE_LENGTH:
            raise MalformedEvent("Message is too long")

        room = self.system.room_for(session)
        if not self.chat_limiter.is_allowed(session.connection_id):
            raise RateLimited()
        async with room.lock:
            entry = room.chat.add_user_message(session.display_name or "", body)
            room.broadcaster.broadcast("chat-message", entry.to_wire())

    # ── 播放控制（仅管理员） ──────────────────────────────────────────

    async def on_play(self, session: ConnectionSession, data: dict) -> None:
        await self._playback(session, data, "play", playing=True)

    async def on_pause(self, session: ConnectionSession, data: dict) -> None:
        await self._playback(session, data, "pause", playing=False)

    async def on_seek(self, session: ConnectionSession, data: dict) -> None:
        await self._playback(session, data, "seek", playing=None)

    async def _playback(
        self, session: ConnectionSession, data: dict, event: str, playing: bool | None,
    ) -> None:
        room = self.system.room_for(session)
        message = "Only admins can seek video" if event == "seek" else "Only admins can control playback"
        async with room.lock:
            self._require_admin(room, session, message)
            request = _parse(PlaybackRequest, data)
            # seek 保持当前播放 / 暂停状态
            is_playing = room.playback.playing if playing is None else playing
            room.playback.set_state(is_playing, request.time)
            room.broadcaster.broadcast(
                event,
                {"time": request.time, "from": session.display_name},
                exclude=session.connection_id,
            )

    async def on_video_change(self, session: ConnectionSession, data: dict) -> None:
        room = self.system.room_for(session)
        async with room.lock:
            self._require_admin(room, session, "Only admins can change videos")
            request = _parse(VideoChangeRequest, data)
            room.playback.change_video(request.video_id)
            room.broadcaster.broadcast(
                "video-change",
                {"videoId": request.video_id, "from": session.display_name},
                exclude=session.connection_id,
            )

    async def on_load_playlist(self, session: ConnectionSession, data: dict) -> None:
        room = self.system.room_for(session)
        async with room.lock:
            self._require_admin(room, session, "Only admins can load playlists")
            request = _parse(LoadPlaylistRequest, data)
            video_id = room.playlist.load(request.video_ids, request.start_index)
            room.playback.change_video(video_id)
            room.broadcaster.broadcast(
                "playlist-loaded",
                {
                    "videoIds": list(room.playlist.video_ids),
                    "currentIndex": room.playlist.index,
                    "videoId": video_id,
                    "from": session.display_name,
                },
            )
        logger.info("播放列表已载入 | room=%s | 条数: %d", room.room_id, len(room.playlist))

    async def on_next_video(self, session: ConnectionSession, data: dict) -> None:
        await self._step_playlist(session, forward=True)

    async def on_previous_video(self, session: ConnectionSession, data: dict) -> None:
        await self._step_playlist(session, forward=False)

    async def _step_playlist(self, session: ConnectionSession, forward: bool) -> None:
        room = self.system.room_for(session)
        async with room.lock:
            self._require_admin(room, session, "Only admins can change videos")
            video_id = room.playlist.next() if forward else room.playlist.previous()
            if video_id is None:
                raise EmptyPlaylist()
            room.playback.change_video(video_id)
            room.broadcaster.broadcast(
                "video-change",
                {
                    "videoId": video_id,
                    "playlistIndex": room.playlist.index,
                    "from": session.display_name,
                },
            )

    async def on_update_credential(self, session: ConnectionSession, data: dict) -> None:
        room = self.system.room_for(session)
        async with room.lock:
            self._require_admin(room, session, "Only admins can update API key")
            request = _parse(UpdateCredentialRequest, data)
            room.pro_credential = request.api_key or None
            room.broadcaster.broadcast(
                "pro-mode-updated",
                {
                    "hasProMode": room.has_pro_mode,
                    "message": "PRO mode enabled for all admins" if room.has_pro_mode else "PRO mode disabled",
                },
            )
        logger.info("PRO 凭证已更新 | room=%s | pro=%s", room.room_id, room.has_pro_mode)

    # ── 只读查询 ──────────────────────────────────────────────────────

    async def on_request_sync(self, session: ConnectionSession, data: dict) -> None:
        room = self.system.room_for(session)
        session.send("sync-state", room.snapshot(session.connection_id).to_wire())

    async def on_request_time(self, session: ConnectionSession, data: dict) -> None:
        room = self.system.room_for(session)
        session.send("time-update", {"remainingTime": room.remaining_time()})
