"""
Chat history - bounded list of (user, bot) turns.

Entries are always added and evicted in pairs so the history never starts
with a bot message.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)


class Role(Enum):
    USER = "user"
    BOT = "bot"


@dataclass(frozen=True)
class Chat:
    role: Role
    content: str


class ChatHistory:
    """
    Bounded chat history.

    Attributes:
        limit: Maximum number of entries kept (user and bot messages count
            separately)

    Example:
        ```python
        history = ChatHistory(limit=4)
        history.append_turn("hi", "hello!")
        history.append_turn("how are you?", "fine")
        history.append_turn("bye", "see you")   # evicts ("hi", "hello!")
        len(history)  # 4
        ```
    """

    def __init__(self, limit: int = 8, entries: Optional[Iterable[Chat]] = None):
        if limit < 0:
            raise ValueError(f"History limit must be >= 0, got {limit}")
        self.limit = limit
        self._entries: List[Chat] = list(entries or [])
        while self._entries and self._entries[0].role is Role.BOT:
            logger.warning("Dropping bot message at the start of the history")
            del self._entries[0]
        self._evict()

    @property
    def entries(self) -> Tuple[Chat, ...]:
        return tuple(self._entries)

    def append_turn(self, user: str, bot: str) -> None:
        self._entries.append(Chat(Role.USER, user))
        self._entries.append(Chat(Role.BOT, bot))
        self._evict()

    def drop_oldest_turn(self) -> bool:
        """Remove the oldest (user, bot) pair; False if the history is empty."""
        if not self._entries:
            return False
        del self._entries[:2]
        return True

    def clear(self) -> None:
        self._entries.clear()

    def _evict(self) -> None:
        while len(self._entries) > self.limit:
            self.drop_oldest_turn()
            logger.debug(f"History over limit {self.limit}; evicted oldest turn")

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Chat]:
        return iter(list(self._entries))

    def __repr__(self) -> str:
        return f"ChatHistory(entries={len(self._entries)}, limit={self.limit})"
