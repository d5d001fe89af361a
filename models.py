"""
In-memory game entities and the round state machine.

A Game always holds exactly two participants, keyed by their stable
participant id. Connection handles never appear here; the session registry
maps them onto participant ids.
"""

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from game_logic import calculate_feedback, generate_id, is_winning_feedback, validate_number

logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================


class GameError(Exception):
    """Base class for domain errors raised by the game entity."""


class InvalidNumberError(GameError):
    """A secret number or guess is not 5 unique digits."""

    def __init__(self, reason: str = 'Invalid number. Must be 5 digits with no repeats.') -> None:
        super().__init__(reason)
        self.reason = reason


class StaleActionError(GameError):
    """An action arrived out of turn, for the wrong phase, or from a stranger."""


# =============================================================================
# Entities
# =============================================================================


class GamePhase(Enum):
    SETUP = 'setup'
    IN_PROGRESS = 'in_progress'
    ENDED = 'ended'


class GuessOutcome(Enum):
    CONTINUE = 'continue'
    PENDING_RESPONSE = 'pending_response'
    WON = 'won'
    DRAW = 'draw'


@dataclass
class GuessRecord:
    guess: str
    correct_position: int
    correct_digit_wrong_position: int
    participant_id: str
    player_name: str
    turn: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'guess': self.guess,
            'feedback': {
                'correctPosition': self.correct_position,
                'correctDigitWrongPosition': self.correct_digit_wrong_position,
            },
            'playerId': self.participant_id,
            'player': self.player_name,
            'turn': self.turn,
        }


@dataclass
class Participant:
    """One of the two players of a game."""

    participant_id: str
    name: str
    number: Optional[str] = None
    ready: bool = False
    guesses: List[GuessRecord] = field(default_factory=list)
    games_won: int = 0
    has_won: bool = False

    def clear_round(self) -> None:
        self.number = None
        self.ready = False
        self.guesses = []
        self.has_won = False

    def to_dict(self, reveal_number: bool) -> Dict[str, Any]:
        return {
            'id': self.participant_id,
            'name': self.name,
            'ready': self.ready,
            'number': self.number if reveal_number else None,
            'guesses': [g.to_dict() for g in self.guesses],
            'gamesWon': self.games_won,
            'hasWon': self.has_won,
        }


@dataclass
class Game:
    """
    One match between two participants, possibly spanning several rounds.

    Lifecycle: creation puts the game straight into SETUP. Once both
    participants commit a number the round is IN_PROGRESS, and a winning or
    drawn guess moves it to ENDED. A reset (play again or accepted rematch)
    returns it to SETUP with the round counter incremented.
    """

    game_id: str
    participants: Dict[str, Participant]
    current_turn: str
    round_starter: str
    started: bool = False
    ended: bool = False
    winner: Optional[str] = None
    winner_id: Optional[str] = None
    is_draw: bool = False
    provisional_winner: Optional[str] = None
    round_number: int = 1
    rematch_requested_by: Optional[str] = None

    @classmethod
    def create(cls, first: Tuple[str, str], second: Tuple[str, str],
               rng: Optional[random.Random] = None) -> 'Game':
        """Create a game from two ``(participant_id, name)`` pairs with a coin flip for the first turn."""
        rng = rng or random
        participants = {
            pid: Participant(participant_id=pid, name=name)
            for pid, name in (first, second)
        }
        starter = rng.choice([first[0], second[0]])
        return cls(
            game_id=generate_id('game'),
            participants=participants,
            current_turn=starter,
            round_starter=starter,
        )

    @property
    def phase(self) -> GamePhase:
        if self.ended:
            return GamePhase.ENDED
        if self.started:
            return GamePhase.IN_PROGRESS
        return GamePhase.SETUP

    def opponent_of(self, participant_id: str) -> Participant:
        for pid, participant in self.participants.items():
            if pid != participant_id:
                return participant
        raise StaleActionError(f'No opponent for {participant_id} in game {self.game_id}')

    def _require_participant(self, participant_id: str) -> Participant:
        participant = self.participants.get(participant_id)
        if participant is None:
            raise StaleActionError(f'{participant_id} is not part of game {self.game_id}')
        return participant

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def commit_number(self, participant_id: str, number: str) -> bool:
        """
        Commit a participant's secret number.

        Returns True when this commit made every participant ready and
        started the round.
        """
        participant = self._require_participant(participant_id)
        if self.phase is not GamePhase.SETUP:
            raise StaleActionError(f'Game {self.game_id} is not accepting numbers')
        if not validate_number(number):
            raise InvalidNumberError()

        participant.number = number
        participant.ready = True

        if all(p.ready for p in self.participants.values()):
            self.started = True
            logger.info(f"Game {self.game_id} round {self.round_number} started")
            return True
        return False

    # -------------------------------------------------------------------------
    # Guessing
    # -------------------------------------------------------------------------

    def submit_guess(self, participant_id: str, guess: str) -> Tuple[GuessOutcome, GuessRecord]:
        """
        Process a guess from the participant whose turn it is.

        A correct guess ends the round only when the opponent has already had
        as many guesses as the guesser. Otherwise the guesser becomes the
        provisional winner and the opponent gets one last guess: matching
        the number draws the round, missing it hands the win over.
        """
        player = self._require_participant(participant_id)
        if self.phase is not GamePhase.IN_PROGRESS or participant_id != self.current_turn:
            raise StaleActionError(f'Guess from {participant_id} dropped in game {self.game_id}')
        if not validate_number(guess):
            raise InvalidNumberError('Invalid guess. Must be 5 digits with no repeats.')

        opponent = self.opponent_of(participant_id)
        feedback = calculate_feedback(guess, opponent.number)
        record = GuessRecord(
            guess=guess,
            correct_position=feedback.correct_position,
            correct_digit_wrong_position=feedback.correct_digit_wrong_position,
            participant_id=participant_id,
            player_name=player.name,
            turn=len(player.guesses) + 1,
        )
        player.guesses.append(record)

        if is_winning_feedback(feedback):
            player.has_won = True
            if len(opponent.guesses) >= len(player.guesses):
                if opponent.has_won:
                    self._end_round(None)
                    return GuessOutcome.DRAW, record
                self._end_round(player)
                return GuessOutcome.WON, record
            self.provisional_winner = participant_id
            self.current_turn = opponent.participant_id
            return GuessOutcome.PENDING_RESPONSE, record

        if self.provisional_winner is not None and self.provisional_winner != participant_id:
            self._end_round(self.participants[self.provisional_winner])
            return GuessOutcome.WON, record

        self.current_turn = opponent.participant_id
        return GuessOutcome.CONTINUE, record

    def _end_round(self, winner: Optional[Participant]) -> None:
        self.ended = True
        if winner is None:
            self.is_draw = True
            self.winner = None
            self.winner_id = None
            logger.info(f"Game {self.game_id} round {self.round_number} ended in a draw")
            return
        winner.games_won += 1
        self.winner = winner.name
        self.winner_id = winner.participant_id
        logger.info(f"Game {self.game_id} round {self.round_number} won by {winner.name}")

    def all_guesses(self) -> List[GuessRecord]:
        """Both participants' guesses in turn order, the round starter first within a turn."""
        merged = [g for p in self.participants.values() for g in p.guesses]
        return sorted(merged, key=lambda g: (g.turn, g.participant_id != self.round_starter))

    # -------------------------------------------------------------------------
    # Rounds
    # -------------------------------------------------------------------------

    def reset_for_new_round(self) -> None:
        """Clear round state and hand the first turn to the other participant."""
        if self.phase is not GamePhase.ENDED:
            raise StaleActionError(f'Game {self.game_id} round {self.round_number} has not ended')

        for participant in self.participants.values():
            participant.clear_round()

        self.round_starter = self.opponent_of(self.round_starter).participant_id
        self.current_turn = self.round_starter
        self.started = False
        self.ended = False
        self.winner = None
        self.winner_id = None
        self.is_draw = False
        self.provisional_winner = None
        self.rematch_requested_by = None
        self.round_number += 1
        logger.info(f"Game {self.game_id} reset for round {self.round_number}")

    def request_rematch(self, participant_id: str) -> Participant:
        """Record a rematch request and return the opponent who must accept it."""
        self._require_participant(participant_id)
        if self.phase is not GamePhase.ENDED:
            raise StaleActionError(f'Rematch requested before game {self.game_id} ended')
        self.rematch_requested_by = participant_id
        return self.opponent_of(participant_id)

    def accept_rematch(self, participant_id: str) -> None:
        self._require_participant(participant_id)
        requester = self.rematch_requested_by
        if requester is None or requester == participant_id:
            raise StaleActionError(f'No rematch to accept in game {self.game_id}')
        self.reset_for_new_round()
