import math
from fractions import Fraction

from memorix.settings import ScoringRules


def calculate_score(correct_steps: int, total_steps: int, elapsed_ms: int, time_limit_ms: int,
                    level: int, rules: ScoringRules) -> int:
    """Score a graded round.

    base points scaled by accuracy, plus a bonus per millisecond left on the
    clock; perfect rounds are multiplied, and infinite-mode rules also apply
    ``level_multiplier ** (level - 1)``. Every step is exact (Fraction) and
    floored, so the same inputs always produce the same integer.
    """
    base = total_steps * rules.points_per_step
    accuracy = Fraction(correct_steps, total_steps) if total_steps > 0 else Fraction(0)
    time_left = max(0, time_limit_ms - elapsed_ms)
    time_bonus = math.floor(time_left * rules.time_bonus_per_ms)

    score = math.floor(base * accuracy + time_bonus)
    if total_steps > 0 and correct_steps == total_steps:
        score = math.floor(score * rules.perfect_multiplier)
    if rules.level_multiplier is not None:
        score = math.floor(score * rules.level_multiplier ** max(0, level - 1))
    return score


def count_correct_steps(sequence, clicked) -> int:
    """Positions matched before the first mistake."""
    correct = 0
    for expected, got in zip(sequence, clicked):
        if expected != got:
            break
        correct += 1
    return correct
