"""
watchparty.services.playback
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

播放状态与播放列表。

服务端不做逐秒计时：每次管理员操作只记录 ``(playing, position, last_update)``，
读取时若处于播放状态，则按 ``now - last_update`` 线性外推当前进度。
"""
from __future__ import annotations

from watchparty.core.clock import Clock


class PlaybackState:
    """房间的共享播放状态。

    Attributes:
        video_id: 当前媒体 ID。
        playing: 是否正在播放。
        position_seconds: 最近一次权威写入时的播放位置（秒）。
        last_update: 最近一次权威写入的时钟读数。
    """

    def __init__(self, clock: Clock, video_id: str) -> None:
        self._clock = clock
        self.video_id = video_id
        self.playing = False
        self.position_seconds = 0.0
        self.last_update = clock.now()

    def set_state(self, playing: bool, position_seconds: float) -> None:
        """写入新的权威状态，同时重置 ``last_update``。"""
        self.playing = playing
        self.position_seconds = float(position_seconds)
        self.last_update = self._clock.now()

    def observe(self) -> float:
        """返回推算后的当前播放位置（秒）。

        暂停时原样返回；播放时加上自上次写入以来经过的时间。
        """
        if not self.playing:
            return self.position_seconds
        return self.position_seconds + (self._clock.now() - self.last_update)

    def change_video(self, video_id: str) -> None:
        """切换媒体，并暂停在 0 秒。"""
        self.video_id = video_id
        self.set_state(False, 0.0)


class Playlist:
    """有序播放列表，切换时首尾循环。"""

    def __init__(self) -> None:
        self.video_ids: list[str] = []
        self.index: int = 0

    def __len__(self) -> int:
        return len(self.video_ids)

    @property
    def current(self) -> str | None:
        if not self.video_ids:
            return None
        return self.video_ids[self.index]

    def load(self, video_ids: list[str], start_index: int = 0) -> str:
        """载入新列表并返回起始媒体 ID。"""
        if not video_ids:
            raise ValueError("playlist must not be empty")
        self.video_ids = list(video_ids)
        self.index = start_index % len(self.video_ids)
        return self.video_ids[self.index]

    def next(self) -> str | None:
        if not self.video_ids:
            return None
        self.index = (self.index + 1) % len(self.video_ids)
        return self.video_ids[self.index]

    def previous(self) -> str | None:
        if not self.video_ids:
            return None
        self.index = (self.index - 1) % len(self.video_ids)
        return self.video_ids[self.index]
