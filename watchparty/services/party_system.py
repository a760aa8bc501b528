"""
watchparty.services.party_system
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

观影房间业务服务 —— 持有房间注册表与生命周期调度器，
负责创建 / 加入 / 离开 / 销毁房间以及管理员失联处理。

在 FastAPI lifespan 中创建，挂载于 ``app.state.party_system``。
"""
from __future__ import annotations

import asyncio
import secrets
import uuid

from watchparty.core.clock import Clock, MonotonicClock
from watchparty.core.config import Settings, get_settings
from watchparty.core.errors import NotFoundOrExpired, NotInRoom
from watchparty.core.logging import get_logger
from watchparty.schemas.party import CreateRoomRequest, JoinRoomRequest, Role, RoomSummaryData
from watchparty.services.registry import RoomRegistry
from watchparty.services.scheduler import (
    DURATION_TIMER,
    EMPTY_ROOM_TIMER,
    NO_ADMIN_TIMER,
    LifecycleScheduler,
)
from watchparty.services.session import ConnectionSession
from watchparty.services.watch_room import (
    DESTROY_MESSAGES,
    DestroyReason,
    FailoverPolicy,
    Member,
    WatchRoom,
)

logger = get_logger(__name__)


def _passwords_match(supplied: str | None, stored: str | None) -> bool:
    if not supplied or not stored:
        return False
    return secrets.compare_digest(supplied.encode("utf-8"), stored.encode("utf-8"))


class PartySystem:
    """观影系统（每个应用实例一个）。

    - ``create_room(session, request)``          → 创建房间，创建者为管理员
    - ``join_room(session, request)``            → 按房间名 + 发现口令加入
    - ``join_or_create(session, room_id, name)`` → 按 ID 加入，不存在则创建
    - ``leave(session)``                         → 离开房间（断线同样走这里）
    - ``destroy_room(room, reason)``             → 幂等销毁并通知全部成员
    - ``sweep_expired()`` / ``shutdown()``       → 过期巡检 / 停机清理

    Attributes:
        settings: 全局配置。
        clock: 时间源。
        registry: 房间注册表。
        scheduler: 生命周期调度器。
    """

    def __init__(self, settings: Settings | None = None, clock: Clock | None = None) -> None:
        self.settings: Settings = settings or get_settings()
        self.clock: Clock = clock or MonotonicClock()
        self.registry = RoomRegistry()
        self.scheduler = LifecycleScheduler()

    async def start(self) -> None:
        """启动周期性过期巡检。"""
        self.scheduler.start_sweep(self.settings.EXPIRY_SWEEP_INTERVAL_SECONDS, self.sweep_expired)
        logger.info(
            "观影系统已启动 | 巡检周期=%.0fs | 无管理员宽限=%.0fs | 空房宽限=%.0fs",
            self.settings.EXPIRY_SWEEP_INTERVAL_SECONDS,
            self.settings.NO_ADMIN_GRACE_SECONDS,
            self.settings.EMPTY_ROOM_GRACE_SECONDS,
        )

    # ── 查询 ──────────────────────────────────────────────────────────

    def get_room(self, room_id: str) -> WatchRoom | None:
        return self.registry.get(room_id)

    def room_for(self, session: ConnectionSession) -> WatchRoom:
        """返回会话所在的房间，不在任何房间时抛出 ``NotInRoom``。"""
        room = self.registry.get(session.room_id) if session.room_id else None
        if room is None or room.destroyed:
            session.unbind()
            raise NotInRoom()
        return room

    def list_rooms(self) -> list[RoomSummaryData]:
        """列出所有活跃房间的摘要信息。"""
        return [room.info() for room in self.registry.list()]

    # ── 创建 / 加入 ───────────────────────────────────────────────────

    async def create_room(self, session: ConnectionSession, request: CreateRoomRequest) -> WatchRoom:
        """创建房间并让创建者以管理员身份加入。"""
        await self.leave(session)

        room_id = f"{request.room_name}-{int(self.clock.wall() * 1000)}"
        if room_id in self.registry:
            room_id = f"{room_id}-{uuid.uuid4().hex[:6]}"
        policy = FailoverPolicy(request.failover_policy or self.settings.DEFAULT_FAILOVER_POLICY)

        room = self._new_room(
            room_id,
            room_name=request.room_name,
            admin_password=request.admin_password,
            joining_secret=request.joining_id,
            duration_minutes=request.duration,
            pro_credential=request.api_key,
            failover_policy=policy,
        )
        self.registry.add(room)
        if room.expires_at is not None:
            self.scheduler.schedule(room, DURATION_TIMER, room.duration_seconds, self._on_duration_timer)

        logger.info(
            "房间已创建 | room=%s | 创建者=%s | 时长=%s 分钟 | 策略=%s",
            room_id, request.username, request.duration or "不限", policy.value,
        )
        await self._admit(session, room, request.username, "admin", event="room-created")
        return room

    async def join_room(self, session: ConnectionSession, request: JoinRoomRequest) -> WatchRoom:
        """按 ``(roomName, joiningId)`` 加入已创建的房间。

        提供的管理员密码匹配时以管理员身份加入，否则为观众。

        Raises:
            NotFoundOrExpired: 没有匹配的未过期房间。
        """
        room = self.registry.find_joinable(request.room_name or "", request.joining_id)
        if room is None:
            logger.info("加入失败，房间不存在或已过期 | room_name=%s", request.room_name)
            raise NotFoundOrExpired()

        role: Role = "admin" if _passwords_match(request.admin_password, room.admin_password) else "viewer"
        await self.leave(session)
        await self._admit(session, room, request.username, role, event="room-joined")
        return room

    async def join_or_create(
        self, session: ConnectionSession, room_id: str, display_name: str,
    ) -> tuple[WatchRoom, bool]:
        """按 room_id 加入房间，房间不存在时自动创建，首个加入者成为管理员。

        Returns:
            ``(room, is_first_member)``。

        Raises:
            NotFoundOrExpired: 该 ID 属于需要发现口令的房间。
        """
        existing = self.registry.get(room_id)
        if existing is not None and not existing.is_ad_hoc:
            raise NotFoundOrExpired()
        await self.leave(session)

        # 房间可能在等待锁期间被空房计时器销毁，此时重建一次
        for _ in range(2):
            room = self.registry.get(room_id)
            created = room is None
            if room is None:
                room = self._new_room(
                    room_id,
                    room_name=room_id,
                    failover_policy=FailoverPolicy(self.settings.ADHOC_FAILOVER_POLICY),
                )
                self.registry.add(room)
                logger.info("房间已按 ID 自动创建 | room=%s", room_id)
            elif not room.is_ad_hoc:
                raise NotFoundOrExpired()
            try:
                await self._admit(
                    session, room, display_name,
                    "admin" if created else "viewer",
                    event="room-created" if created else "room-joined",
                )
            except NotFoundOrExpired:
                continue
            return room, room.total_users == 1
        raise NotFoundOrExpired()

    def _new_room(self, room_id: str, **kwargs) -> WatchRoom:
        return WatchRoom(
            room_id,
            clock=self.clock,
            default_video_id=self.settings.DEFAULT_VIDEO_ID,
            chat_limit=self.settings.CHAT_HISTORY_LIMIT,
            **kwargs,
        )

    async def _admit(
        self, session: ConnectionSession, room: WatchRoom, display_name: str, role: Role, event: str,
    ) -> Member:
        """把会话加入房间：先给加入者下发快照和聊天记录，再通知其他成员。"""
        async with room.lock:
            if room.destroyed or room.has_expired():
                raise NotFoundOrExpired()
            if room.failover_policy is FailoverPolicy.PROMOTE and not room.admin_ids:
                role = "admin"

            member = room.add_member(session, display_name, role)
            if role == "admin":
                self.scheduler.cancel(room, NO_ADMIN_TIMER)
            self.scheduler.cancel(room, EMPTY_ROOM_TIMER)

            session.send(event, room.snapshot(session.connection_id).to_wire())
            session.send("chat-history", {"messages": [e.to_wire() for e in room.chat.history()]})

            room.broadcaster.broadcast(
                "user-joined",
                {
                    "username": display_name,
                    "role": role,
                    **room.counts(),
                    "users": [u.to_wire() for u in room.user_list()],
                },
                exclude=session.connection_id,
            )
            entry = room.chat.add_system_message(f"{display_name} joined the room")
            room.broadcaster.broadcast("chat-message", entry.to_wire())

        logger.info(
            "用户加入房间 | room=%s | user=%s | role=%s | 在线: %d",
            room.room_id, display_name, role, room.total_users,
        )
        return member

    # ── 离开 ──────────────────────────────────────────────────────────

    async def leave(self, session: ConnectionSession) -> None:
        """让会话离开当前房间，并按房间策略处理管理员失联与空房。"""
        if session.room_id is None:
            return
        room = self.registry.get(session.room_id)
        if room is None:
            session.unbind()
            return

        async with room.lock:
            if room.destroyed or session.connection_id not in room.members:
                session.unbind()
                return

            departure = room.remove_member(session.connection_id)
            member = departure.member
            room.broadcaster.broadcast(
                "user-left",
                {
                    "username": member.display_name,
                    "role": member.role,
                    **room.counts(),
                    "noAdminWarning": departure.no_admin_warning
                    and room.failover_policy is FailoverPolicy.GRACE,
                },
            )
            entry = room.chat.add_system_message(f"{member.display_name} left the room")
            room.broadcaster.broadcast("chat-message", entry.to_wire())

            if departure.no_admin_warning:
                self._handle_admin_loss(room)
            if room.total_users == 0:
                self.scheduler.schedule(
                    room, EMPTY_ROOM_TIMER, self.settings.EMPTY_ROOM_GRACE_SECONDS, self._on_empty_timer,
                )

        logger.info(
            "用户离开房间 | room=%s | user=%s | role=%s | 在线: %d",
            room.room_id, member.display_name, member.role, room.total_users,
        )

    def _handle_admin_loss(self, room: WatchRoom) -> None:
        """最后一位管理员离开后的处理，调用方需持有房间锁。"""
        if room.failover_policy is FailoverPolicy.GRACE:
            self.scheduler.schedule(
                room, NO_ADMIN_TIMER, self.settings.NO_ADMIN_GRACE_SECONDS, self._on_no_admin_timer,
            )
            return

        successor = room.promote_successor()
        if successor is None:
            return
        entry = room.chat.add_system_message(f"{successor.display_name} is now the admin")
        room.broadcaster.broadcast("chat-message", entry.to_wire())
        room.broadcaster.broadcast(
            "user-list-update",
            {
                "admin": successor.display_name,
                **room.counts(),
                "users": [u.to_wire() for u in room.user_list()],
            },
        )
        logger.info("管理员已转移 | room=%s | new_admin=%s", room.room_id, successor.display_name)

    # ── 销毁 ──────────────────────────────────────────────────────────

    async def destroy_room(self, room: WatchRoom, reason: DestroyReason) -> bool:
        """幂等销毁房间，返回本次调用是否真正执行了销毁。"""
        async with room.lock:
            return self._destroy_locked(room, reason)

    def _destroy_locked(self, room: WatchRoom, reason: DestroyReason) -> bool:
        if room.destroyed:
            return False
        room.destroyed = True
        self.scheduler.cancel_all(room)

        room.broadcaster.broadcast(
            "room-destroyed",
            {"reason": reason.value, "message": DESTROY_MESSAGES[reason]},
        )
        notified = room.clear_members()
        if self.registry.get(room.room_id) is room:
            self.registry.remove(room.room_id)

        logger.info(
            "房间已销毁 | room=%s | reason=%s | 通知成员: %d",
            room.room_id, reason.value, len(notified),
        )
        return True

    async def _on_no_admin_timer(self, room: WatchRoom) -> None:
        async with room.lock:
            if room.destroyed or room.admin_ids:
                logger.debug("无管理员计时器失效，跳过 | room=%s", room.room_id)
                return
            self._destroy_locked(room, DestroyReason.NO_ADMIN)

    async def _on_empty_timer(self, room: WatchRoom) -> None:
        async with room.lock:
            if room.destroyed or room.members:
                logger.debug("空房计时器失效，跳过 | room=%s", room.room_id)
                return
            self._destroy_locked(room, DestroyReason.ROOM_EMPTY)

    async def _on_duration_timer(self, room: WatchRoom) -> None:
        async with room.lock:
            if room.destroyed:
                return
            if not room.has_expired():
                remaining = room.seconds_until_expiry() or 0.0
                self.scheduler.schedule(room, DURATION_TIMER, remaining, self._on_duration_timer)
                return
            self._destroy_locked(room, DestroyReason.DURATION_EXPIRED)

    async def sweep_expired(self) -> int:
        """销毁所有已过期的房间，返回本次销毁的数量。"""
        destroyed = 0
        for room in self.registry.list():
            if room.has_expired() and await self.destroy_room(room, DestroyReason.DURATION_EXPIRED):
                destroyed += 1
        return destroyed

    async def shutdown(self) -> None:
        """停机：停止巡检，以 ``server_shutdown`` 销毁全部房间，并等待通知写出。

        必须在传输层关闭连接之前调用，否则成员已被断线流程移出房间，收不到通知。
        """
        await self.scheduler.stop_sweep()
        rooms = self.registry.list()
        sessions = [s for room in rooms for s in room.broadcaster.active_connections.values()]
        for room in rooms:
            await self.destroy_room(room, DestroyReason.SERVER_SHUTDOWN)
        await self._flush(sessions)
        logger.info("观影系统已停止 | 销毁房间数: %d", len(rooms))

    async def _flush(self, sessions: list[ConnectionSession]) -> None:
        pending = [s.flush() for s in sessions if s.writing]
        if not pending:
            return
        try:
            await asyncio.wait_for(
                asyncio.gather(*pending), timeout=self.settings.SHUTDOWN_DRAIN_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning("停机通知未能全部写出 | 等待连接数: %d", len(pending))
