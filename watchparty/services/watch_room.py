"""
watchparty.services.watch_room
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

观影房间领域模型 —— 封装一个完整的房间实体。

每个 ``WatchRoom`` 拥有独立的成员与角色、播放状态、播放列表、聊天记录、
生命周期计时器和连接广播器，房间之间互不干扰。

房间状态只在持有 ``room.lock`` 时修改；计时器句柄也挂在房间上，
销毁时由 ``PartySystem`` 统一取消。
"""
from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from enum import Enum

from watchparty.core.clock import Clock
from watchparty.schemas.party import MemberData, Role, RoomStateData, RoomSummaryData
from watchparty.services.chat_log import ChatLog
from watchparty.services.playback import PlaybackState, Playlist
from watchparty.services.room_broadcaster import RoomBroadcaster
from watchparty.services.session import ConnectionSession


class FailoverPolicy(str, Enum):
    """管理员离开后的处理策略。"""

    # 立即把最早加入的剩余成员提升为管理员
    PROMOTE = "promote"
    # 不提升观众；管理员全部离开后进入宽限期，超时销毁房间
    GRACE = "grace"


class DestroyReason(str, Enum):
    """房间销毁原因（随 ``room-destroyed`` 事件下发）。"""

    DURATION_EXPIRED = "duration_expired"
    NO_ADMIN = "no_admin"
    ROOM_EMPTY = "room_empty"
    SERVER_SHUTDOWN = "server_shutdown"


DESTROY_MESSAGES: dict[DestroyReason, str] = {
    DestroyReason.DURATION_EXPIRED: "Room duration has expired",
    DestroyReason.NO_ADMIN: "Room destroyed - No admin present",
    DestroyReason.ROOM_EMPTY: "Room closed - Nobody rejoined",
    DestroyReason.SERVER_SHUTDOWN: "Server is shutting down",
}


@dataclass
class Member:
    """房间成员。"""

    connection_id: str
    display_name: str
    role: Role
    joined_at: float


@dataclass
class Departure:
    """``remove_member`` 的结果。"""

    member: Member | None
    remaining_admins: int
    total_users: int

    @property
    def was_admin(self) -> bool:
        return self.member is not None and self.member.role == "admin"

    @property
    def no_admin_warning(self) -> bool:
        return self.was_admin and self.remaining_admins == 0


class WatchRoom:
    """一个完整的观影房间实体。

    Attributes:
        room_id: 房间唯一标识。
        room_name: 房间名（按 ID 直接加入创建的房间可能为空）。
        admin_password: 管理员密码，为空时无法以管理员身份加入。
        joining_secret: 发现口令；为 None 表示该房间通过 room_id 直接加入。
        failover_policy: 管理员离开后的处理策略。
        members: 连接 ID → 成员，按加入顺序排列。
        playback: 共享播放状态。
        playlist: 播放列表。
        chat: 聊天记录。
        broadcaster: 本房间的连接广播器。
        lock: 本房间的单写者锁。
        timers: 计时器类型 → 计时任务。
        destroyed: 是否已销毁。
    """

    def __init__(
        self,
        room_id: str,
        *,
        clock: Clock,
        default_video_id: str,
        room_name: str | None = None,
        admin_password: str | None = None,
        joining_secret: str | None = None,
        duration_minutes: float = 0,
        pro_credential: str | None = None,
        failover_policy: FailoverPolicy = FailoverPolicy.GRACE,
        chat_limit: int = 100,
    ) -> None:
        self._clock = clock
        self.room_id = room_id
        self.room_name = room_name
        self.admin_password = admin_password
        self.joining_secret = joining_secret
        self.pro_credential = pro_credential
        self.failover_policy = failover_policy

        self.created_at: float = clock.now()
        self.duration_seconds: float = duration_minutes * 60
        self.expires_at: float | None = (
            self.created_at + self.duration_seconds if self.duration_seconds > 0 else None
        )

        self.members: dict[str, Member] = {}
        self.playback = PlaybackState(clock, default_video_id)
        self.playlist = Playlist()
        self.chat = ChatLog(clock, limit=chat_limit)
        self.broadcaster = RoomBroadcaster()

        self.lock = asyncio.Lock()
        self.timers: dict[str, asyncio.Task] = {}
        self.destroyed = False

    # ── 成员 ──────────────────────────────────────────────────────────

    @property
    def admin_ids(self) -> list[str]:
        return [cid for cid, m in self.members.items() if m.role == "admin"]

    @property
    def viewer_ids(self) -> list[str]:
        return [cid for cid, m in self.members.items() if m.role == "viewer"]

    @property
    def admin_count(self) -> int:
        return len(self.admin_ids)

    @property
    def viewer_count(self) -> int:
        return len(self.viewer_ids)

    @property
    def total_users(self) -> int:
        return len(self.members)

    @property
    def is_ad_hoc(self) -> bool:
        """是否为按 room_id 直接加入时自动创建的房间。"""
        return self.joining_secret is None

    def is_admin(self, connection_id: str) -> bool:
        member = self.members.get(connection_id)
        return member is not None and member.role == "admin"

    def add_member(self, session: ConnectionSession, display_name: str, role: Role) -> Member:
        """加入成员，并把会话绑定到本房间。"""
        member = Member(
            connection_id=session.connection_id,
            display_name=display_name,
            role=role,
            joined_at=self._clock.now(),
        )
        self.members[session.connection_id] = member
        session.bind(self.room_id, display_name, role)
        self.broadcaster.connect(session)
        return member

    def remove_member(self, connection_id: str) -> Departure:
        """移除成员（不做任何管理员补位）。"""
        member = self.members.pop(connection_id, None)
        session = self.broadcaster.disconnect(connection_id)
        if session is not None:
            session.unbind()
        return Departure(
            member=member,
            remaining_admins=self.admin_count,
            total_users=self.total_users,
        )

    def promote_successor(self) -> Member | None:
        """房间内没有管理员时，把最早加入的成员提升为管理员。"""
        if self.admin_ids or not self.members:
            return None
        successor = next(iter(self.members.values()))
        successor.role = "admin"
        session = self.broadcaster.active_connections.get(successor.connection_id)
        if session is not None:
            session.role = "admin"
        return successor

    def clear_members(self) -> list[ConnectionSession]:
        """移除全部成员并解绑其会话，返回被移除的会话。"""
        sessions = list(self.broadcaster.active_connections.values())
        for session in sessions:
            session.unbind()
        self.broadcaster.active_connections.clear()
        self.members.clear()
        return sessions

    # ── 生命周期 ──────────────────────────────────────────────────────

    def has_expired(self) -> bool:
        return self.expires_at is not None and self._clock.now() >= self.expires_at

    def seconds_until_expiry(self) -> float | None:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self._clock.now())

    def remaining_time(self) -> int | None:
        """剩余秒数（向下取整），不限时长时返回 None。"""
        remaining = self.seconds_until_expiry()
        if remaining is None:
            return None
        return math.floor(remaining)

    @property
    def has_pro_mode(self) -> bool:
        return bool(self.pro_credential)

    # ── 对外视图 ──────────────────────────────────────────────────────

    def user_list(self) -> list[MemberData]:
        return [MemberData(username=m.display_name, role=m.role) for m in self.members.values()]

    def counts(self) -> dict:
        """成员计数（``user-joined`` / ``user-left`` 等事件共用）。"""
        return {
            "adminCount": self.admin_count,
            "userCount": self.viewer_count,
            "totalUsers": self.total_users,
        }

    def snapshot(self, connection_id: str | None = None) -> RoomStateData:
        """房间完整快照，播放位置已按当前时间推算。"""
        member = self.members.get(connection_id) if connection_id else None
        return RoomStateData(
            room_id=self.room_id,
            room_name=self.room_name,
            role=member.role if member else None,
            username=member.display_name if member else None,
            video_id=self.playback.video_id,
            is_playing=self.playback.playing,
            current_time=self.playback.observe(),
            admin_count=self.admin_count,
            user_count=self.viewer_count,
            total_users=self.total_users,
            remaining_time=self.remaining_time(),
            expires_in=self.seconds_until_expiry(),
            has_pro_mode=self.has_pro_mode,
            playlist=list(self.playlist.video_ids),
            playlist_index=self.playlist.index if len(self.playlist) else None,
            users=self.user_list(),
        )

    def info(self) -> RoomSummaryData:
        """返回房间摘要信息。"""
        return RoomSummaryData(
            room_id=self.room_id,
            room_name=self.room_name,
            admin_count=self.admin_count,
            user_count=self.viewer_count,
            total_users=self.total_users,
            current_video=self.playback.video_id,
            remaining_time=self.remaining_time(),
            has_pro_mode=self.has_pro_mode,
        )


def authorize(room: WatchRoom, connection_id: str) -> bool:
    """权限闸门：只有房间管理员可以修改播放状态与房间配置。"""
    return room.is_admin(connection_id)
