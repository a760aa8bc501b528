"""
watchparty.services.registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表 —— room_id → ``WatchRoom`` 的映射。

所有方法都是同步的，在事件循环内不会与其他协程交错执行。
"""
from __future__ import annotations

from watchparty.services.watch_room import WatchRoom


class RoomRegistry:
    """进程内房间注册表，由 ``PartySystem`` 持有。"""

    def __init__(self) -> None:
        self._rooms: dict[str, WatchRoom] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def add(self, room: WatchRoom) -> None:
        if room.room_id in self._rooms:
            raise ValueError(f"room {room.room_id!r} already exists")
        self._rooms[room.room_id] = room

    def get(self, room_id: str) -> WatchRoom | None:
        return self._rooms.get(room_id)

    def remove(self, room_id: str) -> WatchRoom | None:
        return self._rooms.pop(room_id, None)

    def find_joinable(self, room_name: str, joining_secret: str) -> WatchRoom | None:
        """按 ``(room_name, joining_secret)`` 查找未过期、未销毁的房间。"""
        for room in self._rooms.values():
            if room.is_ad_hoc or room.destroyed:
                continue
            if room.room_name == room_name and room.joining_secret == joining_secret:
                if not room.has_expired():
                    return room
        return None

    def list(self) -> list[WatchRoom]:
        return list(self._rooms.values())
