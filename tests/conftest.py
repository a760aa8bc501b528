"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 可手动推进的假时钟、极短宽限期的配置、
以及只把出站消息收进队列、不经过真实 WebSocket 的会话。
"""
from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Callable

import pytest
import pytest_asyncio

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")  # 激活 .env.test 配置

from tests.helpers import FakeClock, FakeTransport, make_settings  # noqa: E402
from watchparty.core.config import Settings  # noqa: E402
from watchparty.services.event_router import EventRouter  # noqa: E402
from watchparty.services.party_system import PartySystem  # noqa: E402
from watchparty.services.session import ConnectionSession  # noqa: E402


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fast_settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture()
async def system(fast_settings: Settings, clock: FakeClock) -> AsyncGenerator[PartySystem, None]:
    """使用假时钟的观影系统，测试结束时销毁全部房间并取消计时器。"""
    party = PartySystem(settings=fast_settings, clock=clock)
    yield party
    await party.shutdown()


@pytest_asyncio.fixture()
async def live_system(fast_settings: Settings) -> AsyncGenerator[PartySystem, None]:
    """使用真实单调时钟的观影系统，用于计时器真实触发的测试。"""
    party = PartySystem(settings=fast_settings)
    yield party
    await party.shutdown()


@pytest.fixture()
def router(system: PartySystem) -> EventRouter:
    return EventRouter(system)


@pytest.fixture()
def make_session() -> Callable[..., ConnectionSession]:
    """按顺序生成 conn-1、conn-2 ... 的会话。"""
    counter = {"n": 0}

    def _make(connection_id: str | None = None) -> ConnectionSession:
        counter["n"] += 1
        return ConnectionSession(
            connection_id=connection_id or f"conn-{counter['n']}",
            transport=FakeTransport(),
        )

    return _make
