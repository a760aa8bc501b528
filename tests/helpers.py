"""
tests.helpers
~~~~~~~~~~~~~

测试共用的假时钟、假连接与出站消息读取工具。
"""
from __future__ import annotations

import asyncio

from watchparty.core.config import Settings
from watchparty.services.session import ConnectionSession


class FakeClock:
    """手动推进的时钟。"""

    def __init__(self, start: float = 1000.0) -> None:
        self._now = start
        self._wall = 1_700_000_000.0

    def now(self) -> float:
        return self._now

    def wall(self) -> float:
        return self._wall

    def advance(self, seconds: float) -> None:
        self._now += seconds
        self._wall += seconds


class FakeTransport:
    """记录所有发送帧的假连接。"""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.fail = fail

    async def send_json(self, data: dict) -> None:
        if self.fail:
            raise ConnectionResetError("peer gone")
        self.sent.append(data)


def drain(session: ConnectionSession) -> list[dict]:
    """取出会话出站队列中的全部帧（不含结束信号）。"""
    frames: list[dict] = []
    while not session.outbox.empty():
        frame = session.outbox.get_nowait()
        if frame is not None:
            frames.append(frame)
    return frames


def events(frames: list[dict]) -> list[str]:
    return [f["event"] for f in frames]


def last(frames: list[dict], event: str) -> dict:
    """返回指定事件最后一次出现时的 data。"""
    matched = [f["data"] for f in frames if f["event"] == event]
    assert matched, f"no {event!r} in {events(frames)}"
    return matched[-1]


def make_settings(**overrides) -> Settings:
    """宽限期极短、不限流的测试配置。"""
    values = {
        "NO_ADMIN_GRACE_SECONDS": 0.05,
        "EMPTY_ROOM_GRACE_SECONDS": 0.05,
        "EXPIRY_SWEEP_INTERVAL_SECONDS": 60,
        "SHUTDOWN_DRAIN_TIMEOUT_SECONDS": 0.2,
        "WS_CHAT_RATE_LIMIT_INTERVAL": 0,
    }
    values.update(overrides)
    return Settings(**values)


class StalledTransport:
    """发送永远不返回的假连接（对端不再读取）。"""

    def __init__(self) -> None:
        self.release = asyncio.Event()

    async def send_json(self, data: dict) -> None:
        await self.release.wait()
