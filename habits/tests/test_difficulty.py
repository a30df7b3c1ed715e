from fractions import Fraction

import pytest

from habits.services import difficulty


@pytest.mark.parametrize("rating, expected", [(None, 3), (0, 1), (1, 1), (3, 3), (5, 5), (9, 5)])
def test_clamp_difficulty(rating, expected):
    assert difficulty.clamp_difficulty(rating) == expected


def test_difficulty_multiplier__is_exact():
    assert difficulty.difficulty_multiplier(1) == Fraction(4, 5)
    assert difficulty.difficulty_multiplier(3) == Fraction(6, 5)
    assert difficulty.difficulty_multiplier(5) == Fraction(8, 5)


@pytest.mark.parametrize("rating, xp", [(1, 16), (2, 20), (3, 24), (4, 28), (5, 32)])
def test_experience_for_completion(rating, xp):
    assert difficulty.experience_for_completion(rating) == xp


def test_experience_required_for_level__default_difficulty():
    assert difficulty.experience_required_for_level(1, 3) == 120
    assert difficulty.experience_required_for_level(2, 3) == 144
    assert difficulty.experience_required_for_level(3, 3) == 172


def test_experience_required_for_level__scales_with_difficulty():
    assert difficulty.experience_required_for_level(2, 5) == 192
    assert difficulty.experience_required_for_level(1, 1) == 80


def test_experience_required_for_level__is_positive_and_non_decreasing():
    for rating in range(1, 6):
        previous = 0
        for level in range(1, 30):
            required = difficulty.experience_required_for_level(level, rating)
            assert required > 0
            assert required >= previous
            previous = required
