from fractions import Fraction
from types import SimpleNamespace

import pytest

from memorix.services.games.anticheat import verify_round
from memorix.services.games.difficulty import daily_difficulty, infinite_difficulty
from memorix.services.games.scoring import calculate_score, count_correct_steps
from memorix.services.games.sequence import generate_sequence
from memorix.settings import AntiCheatRules, format_units, to_units


def test_sequence_length_and_range():
    for grid_size in (2, 3, 6, 10):
        seq = generate_sequence(grid_size, 12)
        assert len(seq) == 12
        assert all(0 <= tile < grid_size * grid_size for tile in seq)


def test_sequence_degenerate_inputs():
    assert generate_sequence(3, 0) == []
    assert generate_sequence(1, 5) == [0, 0, 0, 0, 0]


def test_infinite_difficulty_base_tier(settings):
    d = infinite_difficulty(1, settings.curve)
    assert (d.grid_size, d.steps, d.show_duration, d.interval_between, d.time_limit) == (3, 3, 600, 300, 10000)
    # level 0 and negatives clamp to the base tier
    assert infinite_difficulty(0, settings.curve) == d
    assert infinite_difficulty(-5, settings.curve) == d


def test_infinite_difficulty_level_four(settings):
    d = infinite_difficulty(4, settings.curve)
    assert d.grid_size == 4
    assert d.steps == 4
    assert d.time_limit == 9400
    assert d.show_duration == 540
    assert d.interval_between == 270


def test_infinite_difficulty_respects_caps_and_floors(settings):
    d = infinite_difficulty(100, settings.curve)
    assert d.grid_size == 6
    assert d.steps == 50
    assert d.time_limit == 4000
    assert d.show_duration == 250
    assert d.interval_between == 120


def test_infinite_difficulty_is_monotonic(settings):
    prev = infinite_difficulty(1, settings.curve)
    for level in range(2, 80):
        cur = infinite_difficulty(level, settings.curve)
        assert cur.grid_size >= prev.grid_size
        assert cur.steps >= prev.steps
        assert cur.time_limit <= prev.time_limit
        assert cur.show_duration <= prev.show_duration
        assert cur.interval_between <= prev.interval_between
        prev = cur


def test_daily_difficulty_copies_challenge():
    row = SimpleNamespace(grid_size=4, steps=8, show_duration=400, interval_between=250, time_limit=15000)
    d = daily_difficulty(row)
    assert d.to_dict() == {
        'grid_size': 4, 'steps': 8, 'show_duration': 400, 'interval_between': 250, 'time_limit': 15000,
    }


def test_score_perfect_round(settings):
    # 50 base + 75 time bonus, x1.5 for perfect
    assert calculate_score(5, 5, 2500, 10000, 1, settings.infinite_scoring) == 187


def test_score_applies_level_multiplier(settings):
    # 187 * 1.1 ** 2 = 226.27
    assert calculate_score(5, 5, 2500, 10000, 3, settings.infinite_scoring) == 226


def test_score_partial_round(settings):
    # 50 * 3/5 + 75, no perfect multiplier
    assert calculate_score(3, 5, 2500, 10000, 1, settings.infinite_scoring) == 105


def test_score_no_time_bonus_after_limit(settings):
    assert calculate_score(3, 5, 12000, 10000, 1, settings.infinite_scoring) == 30


def test_score_zero_steps(settings):
    assert calculate_score(0, 0, 0, 1000, 1, settings.infinite_scoring) == 10


def test_score_daily_ignores_level(settings):
    rules = settings.daily_scoring
    assert rules.level_multiplier is None
    # 160 base + 2000 time bonus, x1.5
    assert calculate_score(8, 8, 5000, 15000, 0, rules) == 3240
    assert calculate_score(8, 8, 5000, 15000, 7, rules) == 3240


def test_score_is_deterministic(settings):
    results = {calculate_score(7, 9, 3333, 9400, 12, settings.infinite_scoring) for _ in range(50)}
    assert len(results) == 1


def test_count_correct_steps_stops_at_first_mistake():
    assert count_correct_steps([1, 2, 3, 4], [1, 2, 3, 4]) == 4
    assert count_correct_steps([1, 2, 3, 4], [1, 2, 9, 4]) == 2
    assert count_correct_steps([1, 2, 3, 4], []) == 0
    assert count_correct_steps([1, 2, 3, 4], [1, 2, 3, 4, 5]) == 4


def _telemetry(end_ts, *stamps):
    return {'sequence_end_ts': end_ts, 'clicks': [{'index': 0, 'client_ts': ts} for ts in stamps]}


def test_anticheat_flags_fast_clicks():
    rules = AntiCheatRules(enabled=True, min_reaction_time_ms=100)
    result = verify_round(None, _telemetry(990, 1000, 1050, 1100), rules)
    assert not result.passed
    assert result.reasons == ['Suspiciously fast reactions']


def test_anticheat_passes_human_timing():
    rules = AntiCheatRules(enabled=True, min_reaction_time_ms=100)
    assert verify_round(None, _telemetry(1000, 1400, 1800, 2300), rules).passed


def test_anticheat_without_sequence_end_measures_between_clicks():
    rules = AntiCheatRules(enabled=True, min_reaction_time_ms=100)
    # intervals 0, 300, 300: mean 200
    assert verify_round(None, _telemetry(None, 1000, 1300, 1600), rules).passed


def test_anticheat_missing_telemetry_passes():
    rules = AntiCheatRules(enabled=True, min_reaction_time_ms=100)
    assert verify_round(None, None, rules).passed
    assert verify_round(None, {'clicks': []}, rules).passed


def test_anticheat_disabled():
    rules = AntiCheatRules(enabled=False, min_reaction_time_ms=100)
    assert verify_round(None, _telemetry(990, 1000, 1001, 1002), rules).passed


def test_amount_conversion():
    assert to_units('0.001') == 1_000_000
    assert to_units('1') == 10 ** 9
    assert format_units(8_062_500) == '0.0080625'
    assert format_units(10 ** 9) == '1'
    assert format_units(0) == '0'


def test_amount_conversion_rejects_bad_input():
    with pytest.raises(ValueError):
        to_units('abc')
    with pytest.raises(ValueError):
        to_units('0.0000000001')


def test_settings_parse_exact_fractions(settings):
    assert settings.infinite_scoring.level_multiplier == Fraction(11, 10)
    assert settings.rank_weights == (30, 20, 15, 10, 8, 6, 4, 3, 2, 2)
    assert settings.reset_time == (0, 0)
