"""
watchparty.services.session
~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接会话 —— 一个 WebSocket 连接与其所在房间、昵称、角色的绑定。

出站消息先放入无界队列，由独立的写协程逐条发送：
广播方只做 ``put_nowait``，慢连接不会阻塞事件处理或其他连接，
同一连接上的消息顺序保持不变。
"""
from __future__ import annotations

import asyncio
from typing import Any, Protocol

from watchparty.core.logging import get_logger
from watchparty.schemas.party import Role

logger = get_logger(__name__)


class Transport(Protocol):
    """底层双向消息通道（生产环境为 FastAPI ``WebSocket``）。"""

    async def send_json(self, data: Any) -> None: ...


class ConnectionSession:
    """单个连接的会话状态。

    Attributes:
        connection_id: 连接唯一标识。
        room_id: 当前所在房间 ID，未加入时为 None。
        display_name: 昵称。
        role: 在当前房间中的角色。
        outbox: 待发送的出站帧队列，``None`` 为结束信号。
    """

    def __init__(self, connection_id: str, transport: Transport | None = None) -> None:
        self.connection_id = connection_id
        self.transport = transport
        self.room_id: str | None = None
        self.display_name: str | None = None
        self.role: Role | None = None
        self.closed = False
        self.writing = False
        self.outbox: asyncio.Queue[dict | None] = asyncio.Queue()

    def bind(self, room_id: str, display_name: str, role: Role) -> None:
        """绑定到房间。必须在向该连接回送任何房间状态之前调用。"""
        self.room_id = room_id
        self.display_name = display_name
        self.role = role

    def unbind(self) -> None:
        self.room_id = None
        self.role = None

    def send(self, event: str, data: dict) -> None:
        """投递一条出站事件（不等待发送完成）。"""
        if self.closed:
            logger.debug("连接已关闭，丢弃消息 | conn=%s | event=%s", self.connection_id, event)
            return
        self.outbox.put_nowait({"event": event, "data": data})

    async def run_writer(self) -> None:
        """持续把出站队列写入底层连接，直到收到结束信号或发送失败。"""
        if self.transport is None:
            raise RuntimeError("session has no transport")
        self.writing = True
        try:
            while True:
                frame = await self.outbox.get()
                try:
                    if frame is None:
                        break
                    await self.transport.send_json(frame)
                except Exception as e:
                    # 发送失败按断开处理，接收端随后会收到 disconnect
                    logger.warning("消息发送失败，连接视为断开 | conn=%s | %s", self.connection_id, e)
                    self.closed = True
                    break
                finally:
                    self.outbox.task_done()
        finally:
            self.writing = False
            self._discard_pending()

    def _discard_pending(self) -> None:
        while not self.outbox.empty():
            self.outbox.get_nowait()
            self.outbox.task_done()

    async def flush(self) -> None:
        """等待已排队的消息全部写出，写协程未运行时立即返回。"""
        if self.writing:
            await self.outbox.join()

    def close(self) -> None:
        """投递结束信号，写协程发完已排队的消息后退出。"""
        if not self.closed:
            self.outbox.put_nowait(None)
        self.closed = True
