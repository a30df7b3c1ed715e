from fractions import Fraction
from math import floor
from typing import Optional

BASE_COMPLETION_XP = 20
BASE_LEVEL_XP = 100
LEVEL_GROWTH = Fraction(6, 5)

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5
DEFAULT_DIFFICULTY = 3


def clamp_difficulty(rating: Optional[int]) -> int:
    if rating is None:
        return DEFAULT_DIFFICULTY
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, int(rating)))


def difficulty_multiplier(rating: Optional[int]) -> Fraction:
    """
    0.6 + 0.2 * rating, kept exact:
        rating 1 -> 0.8x
        rating 3 -> 1.2x
        rating 5 -> 1.6x
    """
    r = clamp_difficulty(rating)
    return Fraction(3, 5) + Fraction(r, 5)


def experience_for_completion(difficulty_rating: Optional[int]) -> int:
    return floor(BASE_COMPLETION_XP * difficulty_multiplier(difficulty_rating))


def experience_required_for_level(level: int, difficulty_rating: Optional[int]) -> int:
    """
    XP needed to leave ``level``: floor(100 * 1.2^(level-1) * multiplier).
    """
    level = max(1, int(level))
    required = BASE_LEVEL_XP * LEVEL_GROWTH ** (level - 1) * difficulty_multiplier(difficulty_rating)
    return max(1, floor(required))
