"""
watchparty.core.errors
~~~~~~~~~~~~~~~~~~~~~~

房间协调相关的业务异常。

所有异常都只影响单个连接或单个房间，由 ``EventRouter`` 捕获后
以 ``permission-denied`` / ``error-message`` 事件回送给请求方，
不会导致进程或房间崩溃。
"""
from __future__ import annotations


class PartyError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读的错误码，随 ``error-message`` 一起下发。
        message: 人类可读的错误描述。
    """

    code: str = "party_error"
    default_message: str = "Request could not be processed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundOrExpired(PartyError):
    """加入不存在或已过期的房间。"""

    code = "not_found_or_expired"
    default_message = "Room not found or expired. Please check room name and joining ID."


class PermissionDenied(PartyError):
    """非管理员尝试执行需要管理员权限的操作。"""

    code = "permission_denied"
    default_message = "Only admins can perform this action"


class MalformedEvent(PartyError):
    """事件格式错误或缺少必填字段。"""

    code = "malformed_event"
    default_message = "Malformed event"


class NotInRoom(PartyError):
    """连接尚未加入任何房间，或所在房间已被销毁。"""

    code = "not_in_room"
    default_message = "You are not in a room"


class RateLimited(PartyError):
    """聊天消息发送过快。"""

    code = "rate_limited"
    default_message = "You are sending messages too fast"


class EmptyPlaylist(PartyError):
    """播放列表为空时请求切换上一个/下一个视频。"""

    code = "empty_playlist"
    default_message = "No playlist is loaded"
