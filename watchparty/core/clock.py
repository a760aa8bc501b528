"""
watchparty.core.clock
~~~~~~~~~~~~~~~~~~~~~

时间源 —— 播放进度推算与房间过期判断共用的时钟。

``now()`` 返回单调时钟秒数（只用于计算时间差），
``wall()`` 返回 Unix 时间戳（用于聊天消息等对外展示的时间）。
测试中可替换为手动推进的假时钟。
"""
from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """时间源接口。"""

    def now(self) -> float: ...

    def wall(self) -> float: ...


class MonotonicClock:
    """基于 ``time.monotonic`` 的默认时钟。"""

    def now(self) -> float:
        return time.monotonic()

    def wall(self) -> float:
        return time.time()
