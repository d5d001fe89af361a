"""
Inbound Socket.IO payloads, validated at the boundary.

Each client event maps to one frozen record. ``from_payload`` only checks
structure (a mapping carrying the identifiers the event needs); whether a
number or guess is acceptable is decided by the game itself, so those two
fields are passed through untrimmed.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional


class PayloadError(ValueError):
    """The payload is not a mapping or lacks a required field."""


def _require_mapping(data: Any) -> Mapping[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise PayloadError('Payload must be an object.')
    return data


def _raw_text(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ''
    return str(value)


def _text(data: Mapping[str, Any], key: str) -> str:
    return _raw_text(data, key).strip()


def _required_text(data: Mapping[str, Any], key: str) -> str:
    value = _text(data, key)
    if not value:
        raise PayloadError(f'Missing {key}')
    return value


@dataclass(frozen=True)
class JoinLobby:
    display_name: str
    session_id: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Any) -> 'JoinLobby':
        # Older clients send the bare name as a string.
        if isinstance(data, str):
            return cls(display_name=data.strip())
        data = _require_mapping(data)
        return cls(
            display_name=_text(data, 'displayName'),
            session_id=_text(data, 'sessionId') or None,
        )


@dataclass(frozen=True)
class ResumeSession:
    session_id: str
    display_name: str = ''

    @classmethod
    def from_payload(cls, data: Any) -> 'ResumeSession':
        if isinstance(data, str):
            data = {'sessionId': data}
        data = _require_mapping(data)
        return cls(
            session_id=_required_text(data, 'sessionId'),
            display_name=_text(data, 'displayName'),
        )


@dataclass(frozen=True)
class CommitNumber:
    game_id: str
    number: str

    @classmethod
    def from_payload(cls, data: Any) -> 'CommitNumber':
        data = _require_mapping(data)
        return cls(game_id=_required_text(data, 'gameId'), number=_raw_text(data, 'number'))


@dataclass(frozen=True)
class SubmitGuess:
    game_id: str
    guess: str

    @classmethod
    def from_payload(cls, data: Any) -> 'SubmitGuess':
        data = _require_mapping(data)
        return cls(game_id=_required_text(data, 'gameId'), guess=_raw_text(data, 'guess'))


@dataclass(frozen=True)
class GameAction:
    """Payload of events that only name the game: new round, rematch, leave."""

    game_id: str

    @classmethod
    def from_payload(cls, data: Any) -> 'GameAction':
        data = _require_mapping(data)
        return cls(game_id=_required_text(data, 'gameId'))
