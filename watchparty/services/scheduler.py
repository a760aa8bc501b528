"""
watchparty.services.scheduler
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间生命周期调度器 —— 每个房间的一次性计时器 + 全局过期巡检。

计时器是挂在 ``room.timers`` 上的 ``asyncio.Task``，同一类型同时只存在一个。
计时器触发时先摘掉自己的句柄再执行回调，回调必须在房间锁内重新校验触发条件。
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from watchparty.core.logging import get_logger
from watchparty.services.watch_room import WatchRoom

logger = get_logger(__name__)

# 计时器类型
NO_ADMIN_TIMER = "no_admin"
EMPTY_ROOM_TIMER = "empty"
DURATION_TIMER = "duration"

TimerCallback = Callable[[WatchRoom], Awaitable[None]]


class LifecycleScheduler:
    """房间计时器与过期巡检任务的调度器。"""

    def __init__(self) -> None:
        self._sweep_task: asyncio.Task | None = None

    # ── 单房间计时器 ──────────────────────────────────────────────────

    def schedule(
        self, room: WatchRoom, kind: str, delay: float, callback: TimerCallback,
    ) -> asyncio.Task:
        """为房间安排一个计时器，已存在的同类计时器会先被取消。"""
        self.cancel(room, kind)
        task = asyncio.create_task(
            self._fire(room, kind, delay, callback),
            name=f"room-timer:{room.room_id}:{kind}",
        )
        room.timers[kind] = task
        logger.info("计时器已启动 | room=%s | kind=%s | delay=%.1fs", room.room_id, kind, delay)
        return task

    def cancel(self, room: WatchRoom, kind: str) -> bool:
        """取消房间的某类计时器，返回是否确有计时器被取消。"""
        task = room.timers.pop(kind, None)
        if task is None:
            return False
        if task is not asyncio.current_task() and not task.done():
            task.cancel()
        logger.info("计时器已取消 | room=%s | kind=%s", room.room_id, kind)
        return True

    def cancel_all(self, room: WatchRoom) -> None:
        for kind in list(room.timers):
            self.cancel(room, kind)

    def is_pending(self, room: WatchRoom, kind: str) -> bool:
        return kind in room.timers

    async def _fire(
        self, room: WatchRoom, kind: str, delay: float, callback: TimerCallback,
    ) -> None:
        await asyncio.sleep(delay)
        if room.timers.get(kind) is asyncio.current_task():
            del room.timers[kind]
        logger.info("计时器触发 | room=%s | kind=%s", room.room_id, kind)
        try:
            await callback(room)
        except Exception as e:
            logger.error("计时器回调异常 | room=%s | kind=%s | %s", room.room_id, kind, e, exc_info=True)

    # ── 过期巡检 ──────────────────────────────────────────────────────

    def start_sweep(self, interval: float, callback: Callable[[], Awaitable[int]]) -> None:
        """启动周期性巡检，兜底处理漏触发或漂移的过期计时器。"""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(
            self._sweep_loop(interval, callback), name="room-expiry-sweep",
        )

    async def stop_sweep(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None

    async def _sweep_loop(self, interval: float, callback: Callable[[], Awaitable[int]]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                destroyed = await callback()
                if destroyed:
                    logger.info("过期巡检完成 | 清理房间数: %d", destroyed)
            except Exception as e:
                logger.error("过期巡检异常: %s", e, exc_info=True)
