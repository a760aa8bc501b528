"""
watchparty.schemas.party
~~~~~~~~~~~~~~~~~~~~~~~~

观影房间 WebSocket 事件与 HTTP 接口使用的 Pydantic 模型。

线上协议字段统一使用 camelCase（``roomName`` / ``joiningId`` ...），
Python 侧使用 snake_case，通过 ``alias_generator`` 自动转换。
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

Role = Literal["admin", "viewer"]
ChatKind = Literal["system", "user"]
FailoverPolicyName = Literal["promote", "grace"]


class CamelModel(BaseModel):
    """camelCase 协议模型基类。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """序列化为线上 JSON 结构。"""
        return self.model_dump(by_alias=True)


# ── 入站事件 ──────────────────────────────────────────────────────────

class CreateRoomRequest(CamelModel):
    """``create-room`` 请求体。"""

    room_name: str = Field(..., min_length=1, max_length=100, description="房间名")
    username: str = Field(..., min_length=1, max_length=50, description="创建者昵称")
    admin_password: str | None = Field(default=None, description="管理员密码")
    joining_id: str = Field(default="", max_length=100, description="加入房间所需的发现口令")
    duration: float = Field(default=0, ge=0, description="房间时长（分钟），0 表示不限")
    api_key: str | None = Field(default=None, description="PRO 模式凭证")
    failover_policy: FailoverPolicyName | None = Field(
        default=None, description="管理员失联策略，缺省取配置值",
    )


class JoinRoomRequest(CamelModel):
    """``join-room`` 请求体。

    带 ``roomName`` 时按 ``(roomName, joiningId)`` 查找已创建的房间；
    只带 ``roomId`` 时按 ID 加入，房间不存在则自动创建。
    """

    username: str = Field(..., min_length=1, max_length=50, description="昵称")
    room_id: str | None = Field(default=None, min_length=1, max_length=100, description="房间 ID")
    room_name: str | None = Field(default=None, min_length=1, max_length=100, description="房间名")
    joining_id: str = Field(default="", description="发现口令")
    admin_password: str | None = Field(default=None, description="管理员密码")

    @model_validator(mode="after")
    def _require_target(self) -> JoinRoomRequest:
        if self.room_id is None and self.room_name is None:
            raise ValueError("either roomId or roomName is required")
        return self


class ChatMessageRequest(CamelModel):
    """``chat-message`` 请求体。"""

    message: str = Field(..., description="聊天内容")


class PlaybackRequest(CamelModel):
    """``play`` / ``pause`` / ``seek`` 请求体。"""

    time: float = Field(..., ge=0, description="播放位置（秒）")


class VideoChangeRequest(CamelModel):
    """``video-change`` 请求体。"""

    video_id: str = Field(..., min_length=1, description="媒体 ID")


class LoadPlaylistRequest(CamelModel):
    """``load-playlist`` 请求体。"""

    video_ids: list[str] = Field(..., min_length=1, description="媒体 ID 列表")
    start_index: int = Field(default=0, ge=0, description="起始下标")


class UpdateCredentialRequest(CamelModel):
    """``update-credential`` 请求体。"""

    api_key: str | None = Field(default=None, description="PRO 模式凭证，空值关闭 PRO 模式")


# ── 出站数据 ──────────────────────────────────────────────────────────

class ChatEntry(CamelModel):
    """单条聊天记录。"""

    kind: ChatKind = Field(..., description="system / user")
    author: str | None = Field(default=None, description="发送者昵称，系统消息为空")
    body: str = Field(..., description="消息正文")
    timestamp: float = Field(..., description="Unix 时间戳（秒）")


class MemberData(CamelModel):
    """房间成员。"""

    username: str
    role: Role


class RoomStateData(CamelModel):
    """房间完整快照（加入 / 同步时下发）。"""

    room_id: str
    room_name: str | None
    role: Role | None = None
    username: str | None = None
    video_id: str
    is_playing: bool
    current_time: float
    admin_count: int
    user_count: int
    total_users: int
    remaining_time: int | None = Field(..., description="剩余秒数，不限时长时为 None")
    expires_in: float | None = Field(..., description="距离过期的精确秒数，不限时长时为 None")
    has_pro_mode: bool
    playlist: list[str]
    playlist_index: int | None
    users: list[MemberData]


class RoomSummaryData(CamelModel):
    """房间列表中的摘要信息。"""

    room_id: str
    room_name: str | None
    admin_count: int
    user_count: int
    total_users: int
    current_video: str
    remaining_time: int | None
    has_pro_mode: bool
