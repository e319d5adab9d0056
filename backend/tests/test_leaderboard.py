from datetime import datetime, timezone

from memorix import create_app, socketio
from memorix.models import NO_PLAYER
from memorix.services.leaderboard import LeaderboardAccumulator, LeaderboardPayoutJob, pad_top
from memorix.services.games import scheduler
from memorix.services.games.scheduler import schedule_leaderboard_payout, schedule_round_sweep, seconds_until


class FailingLedger:
    def __init__(self):
        self.calls = 0

    def update_leaderboard_and_pay(self, caller, players, scores, levels):
        self.calls += 1
        raise RuntimeError('ledger offline')


def test_accumulator_ranks_by_level_then_score():
    acc = LeaderboardAccumulator()
    acc.record('0xa', 2, 100)
    acc.record('0xb', 5, 10)
    acc.record('0xc', 2, 300)
    acc.record('0xa', 3, 50)
    assert acc.ranked() == [('0xb', 10, 5), ('0xa', 150, 3), ('0xc', 300, 2)]


def test_accumulator_keeps_highest_level():
    acc = LeaderboardAccumulator()
    acc.record('0xa', 6, 10)
    acc.record('0xa', 1, 10)
    assert acc.ranked() == [('0xa', 20, 6)]


def test_accumulator_drain_resets_period():
    acc = LeaderboardAccumulator()
    acc.record('0xa', 1, 10)
    acc.record('', 1, 10)
    assert len(acc) == 1
    assert acc.drain() == [('0xa', 10, 1)]
    assert len(acc) == 0
    assert acc.ranked() == []


def test_pad_top_fills_with_sentinel():
    players, scores, levels = pad_top([('0xa', 10, 2), ('0xb', 5, 1)])
    assert players == ['0xa', '0xb'] + [NO_PLAYER] * 8
    assert scores == [10, 5] + [0] * 8
    assert levels == [2, 1] + [0] * 8


def test_pad_top_truncates_to_ten():
    ranked = [(f'0x{i}', 100 - i, 1) for i in range(15)]
    players, _, _ = pad_top(ranked)
    assert players == [f'0x{i}' for i in range(10)]


def test_empty_period_makes_no_ledger_call(settings):
    ledger = FailingLedger()
    report = LeaderboardPayoutJob(settings, ledger, LeaderboardAccumulator()).trigger()
    assert not report.paid
    assert report.error is None
    assert ledger.calls == 0


def test_failed_payout_drops_the_period(settings):
    acc = LeaderboardAccumulator()
    acc.record('0xa', 3, 10)
    ledger = FailingLedger()
    job = LeaderboardPayoutJob(settings, ledger, acc)

    report = job.trigger()
    assert not report.paid
    assert 'ledger offline' in report.error
    assert ledger.calls == 1
    # not retried: the next trigger starts from an empty period
    assert len(acc) == 0
    job.trigger()
    assert ledger.calls == 1


def test_payout_credits_ranked_players_and_resets_levels(ledger, owner, services):
    for _ in range(3):
        ledger.record_infinite_round(owner, '0xa', 100, 3, 5, 5, 2500, 10000, False, True)
    ledger.record_infinite_round(owner, '0xb', 100, 3, 5, 5, 2500, 10000, False, True)
    acc = services.accumulator
    acc.record('0xa', 4, 300)
    acc.record('0xb', 2, 900)
    pending_a = ledger.get_pending_rewards('0xa')

    report = services.payout_job.trigger()
    assert report.paid
    assert report.players[:2] == ['0xa', '0xb']
    assert report.credited[:2] == [300_000_000, 200_000_000]
    assert sum(report.credited) == 500_000_000
    assert ledger.get_pending_rewards('0xa') == pending_a + 300_000_000

    board = ledger.get_leaderboard()
    assert [(e.player, e.level) for e in board[:2]] == [('0xa', 4), ('0xb', 2)]
    assert board[2].player == NO_PLAYER

    # period over: levels back to 1, accumulator empty
    assert ledger.current_level('0xa') == 1
    assert ledger.current_level('0xb') == 1
    assert len(acc) == 0


def test_report_serialises(settings):
    acc = LeaderboardAccumulator()
    report = LeaderboardPayoutJob(settings, FailingLedger(), acc).trigger()
    payload = report.to_dict()
    assert payload['players'] == [NO_PLAYER] * 10
    assert payload['paid'] is False


def test_seconds_until_next_reset():
    now = datetime(2025, 10, 9, 23, 30, tzinfo=timezone.utc)
    assert seconds_until((0, 0), now) == 30 * 60
    assert seconds_until((23, 45), now) == 15 * 60
    # exactly at the reset time waits a full day
    assert seconds_until((23, 30), now) == 24 * 3600


def test_scheduler_is_idle_in_tests(flask_app):
    schedule_leaderboard_payout(flask_app)
    schedule_round_sweep(flask_app)
    assert 'leaderboard_payout' not in scheduler._scheduled_jobs
    assert 'round_sweep' not in scheduler._scheduled_jobs


def _capture_background_tasks(monkeypatch):
    started = []
    monkeypatch.setattr(scheduler, '_scheduled_jobs', set())
    monkeypatch.setattr(socketio, 'start_background_task', lambda target, *a, **kw: started.append(target))
    return started


def test_app_factory_starts_schedulers(monkeypatch, config_class):
    started = _capture_background_tasks(monkeypatch)

    class SchedulingConfig(config_class):
        ENABLE_SCHEDULER_IN_TESTS = True

    create_app(SchedulingConfig)
    assert scheduler._scheduled_jobs == {'leaderboard_payout', 'round_sweep'}
    assert len(started) == 2


def test_app_factory_can_skip_schedulers(monkeypatch, config_class):
    started = _capture_background_tasks(monkeypatch)

    class QuietConfig(config_class):
        ENABLE_SCHEDULER_IN_TESTS = True
        RUN_SCHEDULERS = False

    create_app(QuietConfig)
    assert scheduler._scheduled_jobs == set()
    assert started == []
