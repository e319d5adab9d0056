import math
from dataclasses import asdict, dataclass

from memorix.settings import DifficultyCurve


@dataclass(frozen=True)
class Difficulty:
    grid_size: int
    steps: int
    show_duration: int
    interval_between: int
    time_limit: int

    def to_dict(self):
        return asdict(self)


def infinite_difficulty(level: int, curve: DifficultyCurve) -> Difficulty:
    """Difficulty for an infinite-mode level.

    Grid size and step count grow with the level (grid size capped), the
    timings shrink down to their floors. Level 1 and below return the base tier.
    """
    n = max(0, int(level) - 1)
    grid_size = min(curve.max_grid_size, curve.base_grid_size + n // curve.grid_size_increase_every)
    steps = min(curve.max_steps, math.floor(curve.base_steps + n * curve.steps_increase_rate))
    time_limit = max(curve.min_time_limit, curve.base_time_limit - n * curve.time_limit_decrease)
    show_duration = max(curve.min_show_duration, curve.base_show_duration - n * curve.show_duration_decrease)
    interval_between = max(curve.min_interval, curve.base_interval - n * curve.interval_decrease)
    return Difficulty(
        grid_size=grid_size,
        steps=steps,
        show_duration=show_duration,
        interval_between=interval_between,
        time_limit=time_limit,
    )


def daily_difficulty(challenge) -> Difficulty:
    """Fixed difficulty of a configured daily challenge row."""
    return Difficulty(
        grid_size=challenge.grid_size,
        steps=challenge.steps,
        show_duration=challenge.show_duration,
        interval_between=challenge.interval_between,
        time_limit=challenge.time_limit,
    )
