"""
Session registry: durable client sessions that outlive a single connection.

A session is keyed by an id the client keeps across reconnects. It binds the
stable participant id used inside games to whatever connection currently
reaches that participant, and it holds the reservation on the display name.
"""

import copy
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from config import DISCONNECT_GRACE_SECONDS, NAME_MAX_LENGTH
from game_logic import generate_id
from models import Participant

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """Base class for lobby and session errors."""


class NameConflictError(SessionError):
    def __init__(self, name: str) -> None:
        super().__init__('This name is already in use. Please choose a different name.')
        self.name = name


class InvalidNameError(SessionError):
    pass


class SessionNotFoundError(SessionError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f'Session {session_id} not found')
        self.session_id = session_id


def normalize_name(name: str) -> str:
    return name.strip().lower()


@dataclass
class Session:
    session_id: str
    participant_id: str
    display_name: str
    connection_id: Optional[str] = None
    game_id: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.connection_id is not None


@dataclass
class DisconnectionRecord:
    session_id: str
    disconnected_at: float
    game_id: str
    snapshot: Participant


class SessionRegistry:
    """
    In-memory store of sessions, name reservations and pending disconnections.

    Sessions are indexed three ways: by session id, by current connection id
    and by normalized display name. Only the coordinator mutates the registry.
    """

    def __init__(self, grace_period: float = DISCONNECT_GRACE_SECONDS) -> None:
        self.grace_period = grace_period
        self._sessions: Dict[str, Session] = {}
        self._by_connection: Dict[str, str] = {}
        self._by_participant: Dict[str, str] = {}
        self._names: Dict[str, str] = {}
        self._disconnected: Dict[str, DisconnectionRecord] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def by_connection(self, connection_id: str) -> Optional[Session]:
        session_id = self._by_connection.get(connection_id)
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def by_participant(self, participant_id: str) -> Optional[Session]:
        session_id = self._by_participant.get(participant_id)
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def is_name_reserved(self, name: str) -> bool:
        return normalize_name(name) in self._names

    def pending_disconnection(self, session_id: str) -> Optional[DisconnectionRecord]:
        return self._disconnected.get(session_id)

    # -------------------------------------------------------------------------
    # Lobby registration
    # -------------------------------------------------------------------------

    def check_name(self, display_name: str, session_id: Optional[str] = None) -> str:
        """
        Return the trimmed display name if ``session_id`` may use it.

        Raises:
            InvalidNameError: the trimmed name is empty or too long.
            NameConflictError: another session already holds the name.
        """
        name = display_name.strip()
        if not name:
            raise InvalidNameError('Please enter a name.')
        if len(name) > NAME_MAX_LENGTH:
            raise InvalidNameError(f'Name must be at most {NAME_MAX_LENGTH} characters.')
        holder = self._names.get(normalize_name(name))
        if holder is not None and holder != session_id:
            raise NameConflictError(name)
        return name

    def register(self, connection_id: str, display_name: str,
                 session_id: Optional[str] = None) -> Session:
        """Create a session for a client joining the lobby. Raises like check_name."""
        session_id = session_id or generate_id('session')
        name = self.check_name(display_name, session_id)

        if session_id in self._sessions:
            # Same client re-entering the lobby; start it over.
            self.discard(session_id)

        session = Session(
            session_id=session_id,
            participant_id=generate_id('player'),
            display_name=name,
            connection_id=connection_id,
        )
        self._sessions[session_id] = session
        self._by_connection[connection_id] = session_id
        self._by_participant[session.participant_id] = session_id
        self._names[normalize_name(name)] = session_id
        logger.info(f"Registered session {session_id} for \"{name}\" on {connection_id}")
        return session

    # -------------------------------------------------------------------------
    # Reconnection
    # -------------------------------------------------------------------------

    def resume(self, session_id: str, connection_id: str) -> Session:
        """
        Rebind a session to a new connection and cancel its pending disconnection.

        Raises:
            SessionNotFoundError: the session is unknown or already expired.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        if session.connection_id is not None:
            self._by_connection.pop(session.connection_id, None)
        session.connection_id = connection_id
        self._by_connection[connection_id] = session_id
        self._disconnected.pop(session_id, None)
        logger.info(f"Session {session_id} resumed on {connection_id}")
        return session

    def detach_connection(self, connection_id: str) -> Optional[Session]:
        """Forget a closed connection, returning the session it belonged to."""
        session_id = self._by_connection.pop(connection_id, None)
        if session_id is None:
            return None
        session = self._sessions.get(session_id)
        if session is not None and session.connection_id == connection_id:
            session.connection_id = None
        return session

    def mark_disconnected(self, session: Session, participant: Participant,
                          now: Optional[float] = None) -> DisconnectionRecord:
        record = DisconnectionRecord(
            session_id=session.session_id,
            disconnected_at=time.time() if now is None else now,
            game_id=session.game_id,
            snapshot=copy.deepcopy(participant),
        )
        self._disconnected[session.session_id] = record
        return record

    def expired(self, now: Optional[float] = None) -> List[DisconnectionRecord]:
        """Disconnection records whose grace period has run out."""
        now = time.time() if now is None else now
        return [
            record for record in self._disconnected.values()
            if now - record.disconnected_at >= self.grace_period
        ]

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def discard(self, session_id: str) -> Optional[Session]:
        """Delete a session and release its name and connection."""
        session = self._sessions.pop(session_id, None)
        self._disconnected.pop(session_id, None)
        if session is None:
            return None
        if session.connection_id is not None:
            self._by_connection.pop(session.connection_id, None)
        self._by_participant.pop(session.participant_id, None)
        key = normalize_name(session.display_name)
        if self._names.get(key) == session_id:
            del self._names[key]
        logger.debug(f"Discarded session {session_id}")
        return session

    def clear(self) -> None:
        self._sessions.clear()
        self._by_connection.clear()
        self._by_participant.clear()
        self._names.clear()
        self._disconnected.clear()
