"""First-come first-served pairing of players waiting in the lobby."""

from collections import OrderedDict
from typing import Optional

from sessions import Session


class MatchmakingQueue:
    """FIFO queue of waiting sessions, keyed by connection id."""

    def __init__(self) -> None:
        self._waiting: 'OrderedDict[str, Session]' = OrderedDict()

    def __len__(self) -> int:
        return len(self._waiting)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._waiting

    def enqueue(self, session: Session) -> None:
        self._waiting[session.connection_id] = session

    def dequeue_oldest(self) -> Optional[Session]:
        if not self._waiting:
            return None
        _, session = self._waiting.popitem(last=False)
        return session

    def remove(self, connection_id: str) -> Optional[Session]:
        return self._waiting.pop(connection_id, None)

    def clear(self) -> None:
        self._waiting.clear()
