"""
tests.test_registry
~~~~~~~~~~~~~~~~~~~

RoomRegistry 查找规则测试。
"""
from __future__ import annotations

import pytest

from tests.helpers import FakeClock
from watchparty.services.registry import RoomRegistry
from watchparty.services.watch_room import WatchRoom


def make_room(clock: FakeClock, room_id: str, **kwargs) -> WatchRoom:
    return WatchRoom(room_id, clock=clock, default_video_id="v0", **kwargs)


class TestRoomRegistry:
    """测试注册、移除与按口令查找。"""

    def test_add_get_remove(self) -> None:
        registry = RoomRegistry()
        room = make_room(FakeClock(), "r1")

        registry.add(room)
        assert "r1" in registry
        assert registry.get("r1") is room
        assert len(registry) == 1

        assert registry.remove("r1") is room
        assert registry.get("r1") is None
        assert registry.remove("r1") is None

    def test_duplicate_id_rejected(self) -> None:
        registry = RoomRegistry()
        clock = FakeClock()
        registry.add(make_room(clock, "r1"))

        with pytest.raises(ValueError):
            registry.add(make_room(clock, "r1"))

    def test_find_joinable_matches_name_and_secret(self) -> None:
        registry = RoomRegistry()
        room = make_room(FakeClock(), "movie-1", room_name="movie", joining_secret="s")
        registry.add(room)

        assert registry.find_joinable("movie", "s") is room
        assert registry.find_joinable("movie", "other") is None
        assert registry.find_joinable("other", "s") is None

    def test_find_joinable_skips_expired_and_ad_hoc(self) -> None:
        registry = RoomRegistry()
        clock = FakeClock()
        expiring = make_room(clock, "movie-1", room_name="movie", joining_secret="s", duration_minutes=1)
        ad_hoc = make_room(clock, "lobby", room_name="lobby")
        registry.add(expiring)
        registry.add(ad_hoc)

        clock.advance(60)

        assert registry.find_joinable("movie", "s") is None
        assert registry.find_joinable("lobby", "") is None
