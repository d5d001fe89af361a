"""
Pure game rules: number validation, guess feedback and id generation.

Nothing in this module touches server state.
"""

import random
import string
import time
from typing import NamedTuple, Optional

from config import DIGIT_COUNT, ID_SUFFIX_LENGTH


class Feedback(NamedTuple):
    """Result of comparing a guess against a target number."""

    correct_position: int
    correct_digit_wrong_position: int


def validate_number(value: Optional[str]) -> bool:
    """Validate that a string is a 5-digit number with no repeated digits."""
    if not isinstance(value, str) or len(value) != DIGIT_COUNT:
        return False
    if not all(ch in string.digits for ch in value):
        return False
    return len(set(value)) == DIGIT_COUNT


def calculate_feedback(guess: str, target: str) -> Feedback:
    """
    Compare a guess with the target number.

    Both arguments must already pass validate_number. Since digits are unique,
    the digits shared by both numbers are just the intersection of their digit
    sets; the wrong-position count excludes the exact matches.
    """
    correct_position = sum(1 for g, t in zip(guess, target) if g == t)
    shared = len(set(guess) & set(target))
    return Feedback(correct_position, shared - correct_position)


def is_winning_feedback(feedback: Feedback) -> bool:
    return feedback.correct_position == DIGIT_COUNT


def generate_random_number(rng: Optional[random.Random] = None) -> str:
    """Generate a random valid secret number. Any digit may lead, including 0."""
    rng = rng or random
    return ''.join(rng.sample(string.digits, DIGIT_COUNT))


def generate_id(prefix: str, length: int = ID_SUFFIX_LENGTH) -> str:
    """Generate an opaque id like ``game_1700000000000_k3j9x0a1b``."""
    chars = string.ascii_lowercase + string.digits
    suffix = ''.join(random.choice(chars) for _ in range(length))
    return f'{prefix}_{int(time.time() * 1000)}_{suffix}'
