import time
from datetime import datetime, timedelta, timezone
from typing import Set

from memorix import socketio


_scheduled_jobs: Set[str] = set()


def seconds_until(reset_time, now: datetime = None) -> float:
    """Seconds from ``now`` until the next ``(hour, minute)`` in UTC."""
    now = now or datetime.now(timezone.utc)
    hour, minute = reset_time
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


def _sleep(app, job: str, delay: float) -> None:
    # heartbeat sleep loop if enabled
    try:
        hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
    except (TypeError, ValueError):
        hb = 0
    if hb and hb > 0:
        slept = 0.0
        while slept < delay:
            step = min(hb, delay - slept)
            time.sleep(step)
            slept += step
            app.logger.info(f"[timer-heartbeat] job={job} remaining={max(0, delay - slept):.0f}s")
    else:
        time.sleep(delay)


def schedule_leaderboard_payout(app) -> None:
    """Run the leaderboard payout job daily at the configured UTC time.

    - No-ops in TESTING mode
    - Ensures a single payout loop per process
    - Each firing is independent: a failed payout is not retried
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return
    if 'leaderboard_payout' in _scheduled_jobs:
        app.logger.info("[timer-skip] leaderboard payout already scheduled")
        return
    _scheduled_jobs.add('leaderboard_payout')

    services = app.extensions['memorix']
    reset_time = services.settings.reset_time

    def _worker():
        while True:
            delay = seconds_until(reset_time)
            app.logger.info(f"[timer-set] job=leaderboard_payout fires in {delay:.0f}s")
            _sleep(app, 'leaderboard_payout', delay)
            with app.app_context():
                app.logger.info("[timer-fire] job=leaderboard_payout")
                report = services.payout_job.trigger()
                if report.error:
                    app.logger.error(f"[timer-fire] leaderboard payout failed: {report.error}")

    socketio.start_background_task(_worker)
    app.logger.info(
        f"Leaderboard payout scheduled for {reset_time[0]:02d}:{reset_time[1]:02d} UTC daily"
    )


def schedule_round_sweep(app) -> None:
    """Periodically expire active rounds that were never submitted."""
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return
    services = app.extensions['memorix']
    if services.settings.round_max_idle_ms <= 0:
        return
    if 'round_sweep' in _scheduled_jobs:
        return
    _scheduled_jobs.add('round_sweep')
    interval = max(1, services.settings.round_sweep_interval_sec)

    def _worker():
        while True:
            time.sleep(interval)
            services.engine.sweep_expired()

    socketio.start_background_task(_worker)
