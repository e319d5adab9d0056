"""Immutable game settings snapshot built once from the Flask config.

Every domain service receives this snapshot at construction time instead of
reading ``current_app.config`` on each call, so a running process always
grades, scores and pays with the same parameters.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import Mapping, Optional, Tuple

UNITS_PER_COIN = 10 ** 9
LEADERBOARD_SIZE = 10


def to_units(amount) -> int:
    """Convert a whole-coin decimal string (or number) into integer base units."""
    try:
        value = Decimal(str(amount)) * UNITS_PER_COIN
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount!r}")
    if value != value.to_integral_value():
        raise ValueError(f"Amount {amount!r} is finer than one base unit")
    return int(value)


def format_units(units: int) -> str:
    """Render base units as a whole-coin decimal string, e.g. 8062500 -> '0.0080625'."""
    text = format(Decimal(int(units)) / UNITS_PER_COIN, 'f')
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return text


@dataclass(frozen=True)
class DifficultyCurve:
    base_grid_size: int
    base_steps: int
    base_show_duration: int
    base_interval: int
    base_time_limit: int
    max_grid_size: int
    grid_size_increase_every: int
    steps_increase_rate: Fraction
    time_limit_decrease: int
    min_time_limit: int
    show_duration_decrease: int
    min_show_duration: int
    interval_decrease: int
    min_interval: int
    max_steps: int = 50


@dataclass(frozen=True)
class ScoringRules:
    points_per_step: int
    time_bonus_per_ms: Fraction
    perfect_multiplier: Fraction
    # None disables the level multiplier (daily mode)
    level_multiplier: Optional[Fraction] = None


@dataclass(frozen=True)
class AntiCheatRules:
    enabled: bool
    min_reaction_time_ms: int


@dataclass(frozen=True)
class DailyDefaults:
    grid_size: int
    steps: int
    show_duration: int
    interval_between: int
    time_limit: int
    max_tries: int
    pool_funding: int


@dataclass(frozen=True)
class GameSettings:
    ledger_owner: str
    admin_token: Optional[str]
    initial_funding: int
    curve: DifficultyCurve
    infinite_scoring: ScoringRules
    daily_scoring: ScoringRules
    anti_cheat: AntiCheatRules
    daily: DailyDefaults
    base_reward_per_step: int
    time_bonus_multiplier: int
    daily_reward_per_completion: int
    leaderboard_pool: int
    rank_weights: Tuple[int, ...]
    reset_time: Tuple[int, int]
    reset_levels: bool
    round_max_idle_ms: int
    round_sweep_interval_sec: int

    @classmethod
    def from_config(cls, config: Mapping) -> 'GameSettings':
        weights = tuple(int(w) for w in str(config['LEADERBOARD_RANK_WEIGHTS']).split(','))
        if len(weights) != LEADERBOARD_SIZE:
            raise ValueError(f"LEADERBOARD_RANK_WEIGHTS needs {LEADERBOARD_SIZE} entries, got {len(weights)}")
        if any(w < 0 for w in weights) or sum(weights) > 100:
            raise ValueError("LEADERBOARD_RANK_WEIGHTS must be non-negative and sum to at most 100")

        hour, _, minute = str(config['LEADERBOARD_RESET_TIME']).partition(':')
        reset_time = (int(hour), int(minute or 0))
        if not (0 <= reset_time[0] < 24 and 0 <= reset_time[1] < 60):
            raise ValueError(f"Invalid LEADERBOARD_RESET_TIME: {config['LEADERBOARD_RESET_TIME']!r}")

        if not config.get('LEDGER_OWNER'):
            raise ValueError("LEDGER_OWNER must be set")

        curve = DifficultyCurve(
            base_grid_size=int(config['INFINITE_BASE_GRID_SIZE']),
            base_steps=int(config['INFINITE_BASE_STEPS']),
            base_show_duration=int(config['INFINITE_BASE_SHOW_DURATION_MS']),
            base_interval=int(config['INFINITE_BASE_INTERVAL_MS']),
            base_time_limit=int(config['INFINITE_BASE_TIME_LIMIT_MS']),
            max_grid_size=int(config['INFINITE_MAX_GRID_SIZE']),
            grid_size_increase_every=max(1, int(config['INFINITE_GRID_SIZE_INCREASE_EVERY'])),
            steps_increase_rate=Fraction(str(config['INFINITE_STEPS_INCREASE_RATE'])),
            time_limit_decrease=int(config['INFINITE_TIME_LIMIT_DECREASE_MS']),
            min_time_limit=int(config['INFINITE_MIN_TIME_LIMIT_MS']),
            show_duration_decrease=int(config['INFINITE_SHOW_DURATION_DECREASE_MS']),
            min_show_duration=int(config['INFINITE_MIN_SHOW_DURATION_MS']),
            interval_decrease=int(config['INFINITE_INTERVAL_DECREASE_MS']),
            min_interval=int(config['INFINITE_MIN_INTERVAL_MS']),
            max_steps=int(config.get('INFINITE_MAX_STEPS', 50)),
        )
        infinite_scoring = ScoringRules(
            points_per_step=int(config['INFINITE_POINTS_PER_STEP']),
            time_bonus_per_ms=Fraction(str(config['INFINITE_TIME_BONUS_PER_MS'])),
            perfect_multiplier=Fraction(str(config['INFINITE_PERFECT_MULTIPLIER'])),
            level_multiplier=Fraction(str(config['INFINITE_LEVEL_MULTIPLIER'])),
        )
        daily_scoring = ScoringRules(
            points_per_step=int(config['DAILY_POINTS_PER_STEP']),
            time_bonus_per_ms=Fraction(str(config['DAILY_TIME_BONUS_PER_MS'])),
            perfect_multiplier=Fraction(str(config['DAILY_PERFECT_MULTIPLIER'])),
        )
        daily = DailyDefaults(
            grid_size=int(config['DAILY_GRID_SIZE']),
            steps=int(config['DAILY_STEPS']),
            show_duration=int(config['DAILY_SHOW_DURATION_MS']),
            interval_between=int(config['DAILY_INTERVAL_MS']),
            time_limit=int(config['DAILY_TIME_LIMIT_MS']),
            max_tries=int(config['DAILY_MAX_TRIES']),
            pool_funding=to_units(config['DAILY_POOL_FUNDING']),
        )
        return cls(
            ledger_owner=str(config['LEDGER_OWNER']),
            admin_token=config.get('ADMIN_TOKEN'),
            initial_funding=to_units(config['INITIAL_FUNDING']),
            curve=curve,
            infinite_scoring=infinite_scoring,
            daily_scoring=daily_scoring,
            anti_cheat=AntiCheatRules(
                enabled=bool(config['ANTI_CHEAT_ENABLED']),
                min_reaction_time_ms=int(config['MIN_REACTION_TIME_MS']),
            ),
            daily=daily,
            base_reward_per_step=to_units(config['BASE_REWARD_PER_STEP']),
            time_bonus_multiplier=int(config['TIME_BONUS_MULTIPLIER']),
            daily_reward_per_completion=to_units(config['DAILY_REWARD_PER_COMPLETION']),
            leaderboard_pool=to_units(config['LEADERBOARD_REWARD_POOL']),
            rank_weights=weights,
            reset_time=reset_time,
            reset_levels=bool(config['LEADERBOARD_RESET_LEVELS']),
            round_max_idle_ms=int(config.get('ROUND_MAX_IDLE_MS', 0)),
            round_sweep_interval_sec=int(config.get('ROUND_SWEEP_INTERVAL_SEC', 60)),
        )
