"""
watchparty.services.room_broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间广播器 —— 维护某个房间的在线连接并提供定向 / 广播发送。
"""
from __future__ import annotations

from watchparty.core.logging import get_logger
from watchparty.services.session import ConnectionSession

logger = get_logger(__name__)


class RoomBroadcaster:
    """房间连接广播器。

    每个 ``WatchRoom`` 持有一个独立的 ``RoomBroadcaster`` 实例。
    所有发送都是投递到会话队列，不等待对端确认。

    Attributes:
        active_connections: 连接 ID → 会话。
    """

    def __init__(self) -> None:
        self.active_connections: dict[str, ConnectionSession] = {}

    def connect(self, session: ConnectionSession) -> None:
        self.active_connections[session.connection_id] = session

    def disconnect(self, connection_id: str) -> ConnectionSession | None:
        return self.active_connections.pop(connection_id, None)

    def broadcast(self, event: str, data: dict, exclude: str | None = None) -> None:
        """向房间内所有连接广播（可排除一个连接，通常是发起者）。"""
        for connection_id, session in list(self.active_connections.items()):
            if connection_id == exclude:
                continue
            if session.closed:
                # 写协程已退出，等待接收端的 disconnect 把它移出房间
                logger.debug("广播跳过已关闭的连接 | conn=%s | event=%s", connection_id, event)
                continue
            session.send(event, data)

    @property
    def online_count(self) -> int:
        """当前在线连接数。"""
        return len(self.active_connections)
