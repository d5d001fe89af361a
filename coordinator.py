"""
Game coordinator: owns the lobby queue, the live games and the session registry.

Every inbound client event is handed to one coordinator method, which mutates
state and returns the outbound messages it produced. The caller is expected
to emit those messages before handling the next event, so a mutation and its
broadcast are never interleaved with another event for the same game.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from config import DISCONNECT_GRACE_SECONDS
from events import CommitNumber, GameAction, JoinLobby, ResumeSession, SubmitGuess
from game_logic import generate_random_number
from matchmaking import MatchmakingQueue
from models import Game, GamePhase, GuessOutcome, InvalidNumberError, StaleActionError
from sessions import Session, SessionError, SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Outbound:
    """A single event addressed to one connection."""

    to: str
    event: str
    data: Dict[str, Any]


class Coordinator:
    def __init__(self, grace_period: float = DISCONNECT_GRACE_SECONDS,
                 rng: Optional[random.Random] = None) -> None:
        self._rng = rng
        self.games: Dict[str, Game] = {}
        self.queue = MatchmakingQueue()
        self.sessions = SessionRegistry(grace_period)

    def clear(self) -> None:
        self.games.clear()
        self.queue.clear()
        self.sessions.clear()

    # =========================================================================
    # State views
    # =========================================================================

    def game_state(self, game: Game, viewer_id: Optional[str] = None) -> Dict[str, Any]:
        """Full game state as seen by one participant. Numbers stay hidden until the round ends."""
        players = []
        for pid, participant in game.participants.items():
            entry = participant.to_dict(reveal_number=game.ended or pid == viewer_id)
            session = self.sessions.by_participant(pid)
            entry['connected'] = session is not None and session.connected
            players.append(entry)
        return {
            'gameId': game.game_id,
            'you': viewer_id,
            'players': players,
            'currentTurn': game.current_turn,
            'roundStarter': game.round_starter,
            'gameStarted': game.started,
            'gameEnded': game.ended,
            'winner': game.winner,
            'winnerId': game.winner_id,
            'isDraw': game.is_draw,
            'provisionalWinner': game.provisional_winner,
            'round': game.round_number,
            'allGuesses': [g.to_dict() for g in game.all_guesses()],
        }

    @staticmethod
    def _roster(game: Game) -> List[Dict[str, Any]]:
        return [
            {'id': p.participant_id, 'name': p.name, 'ready': p.ready, 'gamesWon': p.games_won}
            for p in game.participants.values()
        ]

    def _connection_of(self, participant_id: str) -> Optional[str]:
        session = self.sessions.by_participant(participant_id)
        return session.connection_id if session is not None else None

    def _to_game(self, game: Game, event: str, data: Dict[str, Any]) -> List[Outbound]:
        """Address the same payload to every connected participant of a game."""
        outbox = []
        for pid in game.participants:
            connection_id = self._connection_of(pid)
            if connection_id is not None:
                outbox.append(Outbound(connection_id, event, data))
        return outbox

    def _player_in_game(self, connection_id: str, game_id: str) -> Optional[Tuple[Session, Game]]:
        session = self.sessions.by_connection(connection_id)
        if session is None or session.game_id != game_id:
            return None
        game = self.games.get(game_id)
        if game is None:
            return None
        return session, game

    @staticmethod
    def _dropped(event: str, connection_id: str, reason: str = 'unknown game or player') -> List[Outbound]:
        logger.debug(f"Dropped {event} from {connection_id}: {reason}")
        return []

    # =========================================================================
    # Lobby
    # =========================================================================

    def join_lobby(self, connection_id: str, message: JoinLobby) -> List[Outbound]:
        """Register a player and either pair them with the oldest waiter or queue them."""
        existing = self.sessions.get(message.session_id) if message.session_id else None
        if existing is not None and existing.game_id is not None:
            game = self.games.get(existing.game_id)
            if game is not None and not game.ended:
                return self._resume(connection_id, existing, game)

        current = self.sessions.by_connection(connection_id)
        if current is not None and current is not existing and current.game_id is not None:
            return self._dropped('join-lobby', connection_id, 'connection already in a game')

        # A client re-entering from the same connection keeps its session id.
        session_id = message.session_id
        if session_id is None and current is not None:
            session_id = current.session_id

        try:
            self.sessions.check_name(message.display_name, session_id)
        except SessionError as e:
            logger.warning(f"Lobby join refused for {connection_id}: {e}")
            return [Outbound(connection_id, 'name-error', {'message': str(e)})]

        outbox: List[Outbound] = []
        if existing is not None and existing.game_id is not None and existing.game_id in self.games:
            # Back to the lobby from a finished game.
            outbox.extend(self._teardown_game(
                self.games[existing.game_id], existing.participant_id, existing.display_name, 'left'))
        for stale in (existing, current):
            if stale is not None and stale.session_id in self.sessions:
                if stale.connection_id is not None:
                    self.queue.remove(stale.connection_id)
                self.sessions.discard(stale.session_id)

        session = self.sessions.register(connection_id, message.display_name, session_id)
        opponent = self.queue.dequeue_oldest()
        if opponent is None:
            self.queue.enqueue(session)
            logger.info(f"Player \"{session.display_name}\" waiting for an opponent")
            outbox.append(Outbound(connection_id, 'waiting', {
                'sessionId': session.session_id,
                'playerId': session.participant_id,
            }))
            return outbox

        game = Game.create(
            (opponent.participant_id, opponent.display_name),
            (session.participant_id, session.display_name),
            rng=self._rng,
        )
        self.games[game.game_id] = game
        opponent.game_id = game.game_id
        session.game_id = game.game_id
        logger.info(
            f"Paired \"{opponent.display_name}\" with \"{session.display_name}\" in game {game.game_id}"
        )

        for player in (opponent, session):
            outbox.append(Outbound(player.connection_id, 'game-found', {
                'gameId': game.game_id,
                'sessionId': player.session_id,
                'playerId': player.participant_id,
                'players': self._roster(game),
                'currentTurn': game.current_turn,
                'round': game.round_number,
            }))
        return outbox

    # =========================================================================
    # Reconnection
    # =========================================================================

    def resume_session(self, connection_id: str, message: ResumeSession) -> List[Outbound]:
        session = self.sessions.get(message.session_id)
        game = self.games.get(session.game_id) if session is not None and session.game_id else None
        if game is None:
            logger.info(f"Resume failed for unknown session {message.session_id}")
            return [Outbound(connection_id, 'session-not-found', {'sessionId': message.session_id})]

        if message.display_name and message.display_name != session.display_name:
            logger.warning(
                f"Session {session.session_id} resumed as \"{message.display_name}\", "
                f"keeping \"{session.display_name}\""
            )
        return self._resume(connection_id, session, game)

    def _resume(self, connection_id: str, session: Session, game: Game) -> List[Outbound]:
        current = self.sessions.by_connection(connection_id)
        if current is not None and current is not session:
            if current.game_id is not None:
                return self._dropped('resume-session', connection_id, 'connection already in a game')
            self.queue.remove(connection_id)
            self.sessions.discard(current.session_id)

        self.sessions.resume(session.session_id, connection_id)
        participant_id = session.participant_id
        logger.info(f"Player \"{session.display_name}\" reconnected to game {game.game_id}")

        outbox = [Outbound(connection_id, 'session-resumed', {
            'sessionId': session.session_id,
            'playerId': participant_id,
            'playerName': session.display_name,
            'gameState': self.game_state(game, participant_id),
        })]
        opponent_connection = self._connection_of(game.opponent_of(participant_id).participant_id)
        if opponent_connection is not None:
            outbox.append(Outbound(opponent_connection, 'opponent-reconnected', {
                'playerName': session.display_name,
            }))
        return outbox

    # =========================================================================
    # Gameplay
    # =========================================================================

    def commit_number(self, connection_id: str, message: CommitNumber) -> List[Outbound]:
        found = self._player_in_game(connection_id, message.game_id)
        if found is None:
            return self._dropped('commit-number', connection_id)
        session, game = found

        try:
            started = game.commit_number(session.participant_id, message.number)
        except InvalidNumberError as e:
            logger.warning(f"Number rejected for \"{session.display_name}\" in game {game.game_id}")
            return [Outbound(connection_id, 'number-rejected', {'reason': e.reason})]
        except StaleActionError as e:
            return self._dropped('commit-number', connection_id, str(e))

        if started:
            return self._to_game(game, 'game-started', {
                'currentTurn': game.current_turn,
                'round': game.round_number,
                'players': self._roster(game),
            })
        return self._to_game(game, 'player-ready', {
            'playerId': session.participant_id,
            'players': self._roster(game),
        })

    def submit_guess(self, connection_id: str, message: SubmitGuess) -> List[Outbound]:
        found = self._player_in_game(connection_id, message.game_id)
        if found is None:
            return self._dropped('submit-guess', connection_id)
        session, game = found

        try:
            outcome, record = game.submit_guess(session.participant_id, message.guess)
        except InvalidNumberError as e:
            return [Outbound(connection_id, 'guess-rejected', {'reason': e.reason})]
        except StaleActionError as e:
            return self._dropped('submit-guess', connection_id, str(e))

        all_guesses = [g.to_dict() for g in game.all_guesses()]
        if outcome is GuessOutcome.CONTINUE:
            return self._to_game(game, 'guess-made', {
                'guess': record.to_dict(),
                'currentTurn': game.current_turn,
                'allGuesses': all_guesses,
            })
        if outcome is GuessOutcome.PENDING_RESPONSE:
            return self._to_game(game, 'round-continues-pending-response', {
                'guess': record.to_dict(),
                'winnerName': session.display_name,
                'winnerId': session.participant_id,
                'currentTurn': game.current_turn,
                'allGuesses': all_guesses,
            })
        return self._to_game(game, 'round-ended', {
            'guess': record.to_dict(),
            'winner': game.winner,
            'winnerId': game.winner_id,
            'isDraw': outcome is GuessOutcome.DRAW,
            'round': game.round_number,
            'players': [p.to_dict(reveal_number=True) for p in game.participants.values()],
            'allGuesses': all_guesses,
        })

    def _round_reset_data(self, game: Game) -> Dict[str, Any]:
        return {
            'currentTurn': game.current_turn,
            'round': game.round_number,
            'players': self._roster(game),
        }

    def request_new_round(self, connection_id: str, message: GameAction) -> List[Outbound]:
        found = self._player_in_game(connection_id, message.game_id)
        if found is None:
            return self._dropped('request-new-round', connection_id)
        _, game = found
        try:
            game.reset_for_new_round()
        except StaleActionError as e:
            return self._dropped('request-new-round', connection_id, str(e))
        return self._to_game(game, 'round-reset', self._round_reset_data(game))

    def request_rematch(self, connection_id: str, message: GameAction) -> List[Outbound]:
        found = self._player_in_game(connection_id, message.game_id)
        if found is None:
            return self._dropped('request-rematch', connection_id)
        session, game = found
        try:
            opponent = game.request_rematch(session.participant_id)
        except StaleActionError as e:
            return self._dropped('request-rematch', connection_id, str(e))

        opponent_connection = self._connection_of(opponent.participant_id)
        if opponent_connection is None:
            return []
        return [Outbound(opponent_connection, 'rematch-requested', {'playerName': session.display_name})]

    def accept_rematch(self, connection_id: str, message: GameAction) -> List[Outbound]:
        found = self._player_in_game(connection_id, message.game_id)
        if found is None:
            return self._dropped('accept-rematch', connection_id)
        session, game = found
        try:
            game.accept_rematch(session.participant_id)
        except StaleActionError as e:
            return self._dropped('accept-rematch', connection_id, str(e))
        return (self._to_game(game, 'rematch-accepted', {'gameId': game.game_id})
                + self._to_game(game, 'round-reset', self._round_reset_data(game)))

    def request_random_number(self, connection_id: str) -> List[Outbound]:
        return [Outbound(connection_id, 'number-suggestion', {
            'number': generate_random_number(self._rng),
        })]

    # =========================================================================
    # Leaving and disconnection
    # =========================================================================

    def leave_game(self, connection_id: str, message: GameAction) -> List[Outbound]:
        """Explicit return to the lobby: the game is over for both players."""
        found = self._player_in_game(connection_id, message.game_id)
        if found is None:
            return self._dropped('leave-game', connection_id)
        session, game = found
        logger.info(f"Player \"{session.display_name}\" left game {game.game_id}")
        return self._teardown_game(game, session.participant_id, session.display_name, 'left')

    def wait_for_opponent(self, connection_id: str, message: GameAction,
                          now: Optional[float] = None) -> List[Outbound]:
        """Acknowledge a player who chose to wait for a disconnected opponent."""
        found = self._player_in_game(connection_id, message.game_id)
        if found is None:
            return self._dropped('wait-for-opponent', connection_id)
        session, game = found
        opponent = self.sessions.by_participant(game.opponent_of(session.participant_id).participant_id)
        record = self.sessions.pending_disconnection(opponent.session_id) if opponent else None
        if record is None:
            return self._dropped('wait-for-opponent', connection_id, 'opponent is connected')
        now = time.time() if now is None else now
        remaining = max(0.0, self.sessions.grace_period - (now - record.disconnected_at))
        logger.info(f"Player \"{session.display_name}\" waiting for \"{opponent.display_name}\" to return")
        return [Outbound(connection_id, 'opponent-disconnected-waiting', {
            'sessionId': session.session_id,
            'playerName': opponent.display_name,
            'secondsRemaining': int(remaining),
        })]

    def disconnect(self, connection_id: str, now: Optional[float] = None) -> List[Outbound]:
        """
        Clean up after a closed connection.

        Waiting players simply leave the queue. A player in an unfinished game
        keeps their session for the grace period so they can resume; once a
        round has ended there is nothing to come back to and the game is
        torn down at once.
        """
        waiting = self.queue.remove(connection_id)
        if waiting is not None:
            self.sessions.discard(waiting.session_id)
            logger.info(f"Player \"{waiting.display_name}\" left the lobby")
            return []

        session = self.sessions.by_connection(connection_id)
        if session is None:
            return []
        game = self.games.get(session.game_id) if session.game_id else None
        if game is None:
            self.sessions.discard(session.session_id)
            return []
        if game.phase is GamePhase.ENDED:
            return self._teardown_game(game, session.participant_id, session.display_name, 'disconnected')

        participant = game.participants[session.participant_id]
        self.sessions.detach_connection(connection_id)
        self.sessions.mark_disconnected(session, participant, now)
        logger.info(
            f"Player \"{session.display_name}\" disconnected from game {game.game_id}, session preserved"
        )

        opponent_connection = self._connection_of(game.opponent_of(participant.participant_id).participant_id)
        if opponent_connection is None:
            return []
        return [Outbound(opponent_connection, 'opponent-disconnected', {
            'playerName': session.display_name,
            'canReconnect': True,
            'gracePeriodSeconds': self.sessions.grace_period,
        })]

    def expire_disconnected(self, now: Optional[float] = None) -> List[Outbound]:
        """Tear down games whose disconnected player did not come back in time."""
        outbox: List[Outbound] = []
        for record in self.sessions.expired(now):
            if self.sessions.pending_disconnection(record.session_id) is None:
                continue
            game = self.games.get(record.game_id)
            if game is None:
                self.sessions.discard(record.session_id)
                continue
            player = record.snapshot
            logger.info(
                f"Player \"{player.name}\" did not return to game {record.game_id}, "
                f"cleaning up session {record.session_id}"
            )
            outbox.extend(self._teardown_game(game, player.participant_id, player.name, 'timeout'))
        return outbox

    def _teardown_game(self, game: Game, leaver_id: str, leaver_name: str, reason: str) -> List[Outbound]:
        """Remove a game and both of its sessions, telling the remaining player why."""
        outbox: List[Outbound] = []
        for pid in game.participants:
            session = self.sessions.by_participant(pid)
            if session is None:
                continue
            if session.connected:
                if pid == leaver_id:
                    if reason == 'left':
                        outbox.append(Outbound(session.connection_id, 'left-game', {'gameId': game.game_id}))
                else:
                    outbox.append(Outbound(session.connection_id, 'opponent-left', {
                        'playerName': leaver_name,
                        'reason': reason,
                    }))
            self.sessions.discard(session.session_id)
        self.games.pop(game.game_id, None)
        logger.info(f"Game {game.game_id} torn down ({reason})")
        return outbox
