"""
watchparty.services.chat_log
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间聊天记录 —— 只保留最近 N 条，超出时最早的先被丢弃。
"""
from __future__ import annotations

from collections import deque

from watchparty.core.clock import Clock
from watchparty.schemas.party import ChatEntry


class ChatLog:
    """有界聊天记录。

    Attributes:
        limit: 最多保留的条数。
    """

    def __init__(self, clock: Clock, limit: int = 100) -> None:
        self._clock = clock
        self.limit = limit
        self._entries: deque[ChatEntry] = deque(maxlen=limit)

    def __len__(self) -> int:
        return len(self._entries)

    def add_user_message(self, author: str, body: str) -> ChatEntry:
        return self._append(ChatEntry(kind="user", author=author, body=body, timestamp=self._clock.wall()))

    def add_system_message(self, body: str) -> ChatEntry:
        return self._append(ChatEntry(kind="system", body=body, timestamp=self._clock.wall()))

    def history(self) -> list[ChatEntry]:
        """按时间正序返回全部记录。"""
        return list(self._entries)

    def _append(self, entry: ChatEntry) -> ChatEntry:
        self._entries.append(entry)
        return entry
