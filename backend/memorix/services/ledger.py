"""Reward ledger: the durable, authoritative record of rounds and funds.

All mutating operations go through ``RewardLedger._write`` which serialises
writers on a process-wide lock, checks the caller where the operation is
privileged, commits on success and rolls back on any exception. Nothing is
persisted for an operation that raises.

Amounts are integer base units (see ``memorix.settings.UNITS_PER_COIN``).
"""

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError

from memorix import db, socketio
from memorix.errors import (
    AlreadyCompleted, ArityMismatch, InsufficientFunds, InvalidInput, NoRewards,
    NotAuthorized, NotInitialized, NotVerified, TriesExceeded,
)
from memorix.models import (
    NO_PLAYER, DailyChallenge, DailyChallengeEntry, FailureReason, LeaderboardEntry,
    LedgerEvent, LedgerState, PendingReward, PlayerStats, Round, RoundType, Withdrawal, utcnow,
)
from memorix.settings import LEADERBOARD_SIZE, GameSettings

logger = logging.getLogger(__name__)

MAX_STEPS = 50
MIN_GRID_SIZE = 2
MAX_GRID_SIZE = 10


@dataclass(frozen=True)
class Settlement:
    round_id: int
    reward: int
    failure_reason: FailureReason
    leveled_up: bool
    new_level: int

    def to_dict(self):
        return {
            'round_id': self.round_id,
            'reward': self.reward,
            'failure_reason': self.failure_reason.value,
            'leveled_up': self.leveled_up,
            'new_level': self.new_level,
        }


def compute_infinite_reward(correct_steps: int, elapsed_ms: int, time_limit_ms: int, perfect: bool,
                            base_reward_per_step: int, time_bonus_multiplier: int) -> int:
    """Reward in base units for a qualifying infinite round.

    The time bonus is ``reward * time_left / time_limit * multiplier / 1000``,
    computed as one integer division so no precision is lost in between.
    """
    reward = correct_steps * base_reward_per_step
    if time_limit_ms > 0:
        time_left = max(0, time_limit_ms - elapsed_ms)
        reward += reward * time_left * time_bonus_multiplier // (time_limit_ms * 1000)
    if perfect:
        reward += reward // 2
    return reward


def _require_int(name: str, value, minimum: int = None, maximum: int = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{name} must be an integer")
    if minimum is not None and value < minimum:
        raise InvalidInput(f"{name} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise InvalidInput(f"{name} must be <= {maximum}")
    return value


def _require_player(player) -> str:
    if not isinstance(player, str) or not player.strip() or player == NO_PLAYER:
        raise InvalidInput("player identity is required")
    if len(player) > 128:
        raise InvalidInput("player identity is too long")
    return player


def _require_date(date) -> int:
    _require_int('date', date, 19700101, 99991231)
    try:
        datetime.strptime(str(date), '%Y%m%d')
    except ValueError:
        raise InvalidInput(f"{date} is not a YYYYMMDD date")
    return date


class RewardLedger:
    """SQLAlchemy-backed ledger with a single privileged owner identity."""

    def __init__(self, settings: GameSettings, payout_sink: Optional[Callable[[str, int], None]] = None):
        self.settings = settings
        self.owner = settings.ledger_owner
        # Performs the actual transfer on withdrawal; raising aborts the withdrawal.
        self.payout_sink = payout_sink
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------
    @contextmanager
    def _write(self, caller: Optional[str] = None, operation: Optional[str] = None):
        signals = []
        with self._lock:
            if operation is not None and caller != self.owner:
                logger.warning(f"[ledger-denied] caller={caller} op={operation}")
                raise NotAuthorized(caller, operation)
            try:
                yield signals
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
        for kind, player, payload in signals:
            self._broadcast(kind, player, payload)

    def _signal(self, signals: list, kind: str, player: Optional[str], **payload) -> None:
        db.session.add(LedgerEvent(kind=kind, player=player, payload=json.dumps(payload)))
        signals.append((kind, player, payload))

    def _broadcast(self, kind: str, player: Optional[str], payload: dict) -> None:
        message = dict(payload, player=player)
        try:
            if player:
                socketio.emit(kind, message, to=f"player:{player}", namespace='/ws')
            else:
                socketio.emit(kind, message, namespace='/ws')
        except Exception as exc:
            logger.warning(f"[ledger-broadcast] kind={kind} player={player} failed: {exc}")

    def _state(self) -> LedgerState:
        state = db.session.get(LedgerState, 1)
        if state is None:
            state = LedgerState(
                id=1,
                escrow_balance=0,
                base_reward_per_step=self.settings.base_reward_per_step,
                time_bonus_multiplier=self.settings.time_bonus_multiplier,
                daily_reward_per_completion=self.settings.daily_reward_per_completion,
                leaderboard_pool=self.settings.leaderboard_pool,
            )
            db.session.add(state)
            db.session.flush()
        return state

    def _stats(self, player: str) -> PlayerStats:
        stats = db.session.get(PlayerStats, player)
        if stats is None:
            stats = PlayerStats(player=player)
            db.session.add(stats)
        return stats

    def _credit(self, player: str, amount: int) -> None:
        pending = db.session.get(PendingReward, player)
        if pending is None:
            pending = PendingReward(player=player, amount=0)
            db.session.add(pending)
        pending.amount += amount
        self._stats(player).total_rewards += amount

    # ------------------------------------------------------------------
    # Round settlement
    # ------------------------------------------------------------------
    def record_infinite_round(self, caller: str, player: str, score: int, grid_size: int, steps: int,
                              correct_steps: int, elapsed_ms: int, time_limit_ms: int,
                              time_expired: bool, verified: bool) -> Settlement:
        with self._write(caller, 'record_infinite_round') as signals:
            _require_player(player)
            _require_int('steps', steps, 1, MAX_STEPS)
            _require_int('correct_steps', correct_steps, 0, steps)
            _require_int('grid_size', grid_size, MIN_GRID_SIZE, MAX_GRID_SIZE)
            _require_int('score', score, 0)
            _require_int('elapsed_ms', elapsed_ms, 0)
            _require_int('time_limit_ms', time_limit_ms, 0)

            if time_expired:
                failure_reason = FailureReason.TIME_EXPIRED
            elif correct_steps < steps:
                failure_reason = FailureReason.WRONG_SEQUENCE
            else:
                failure_reason = FailureReason.NONE
            qualifies = bool(verified) and correct_steps == steps and not time_expired

            stats = self._stats(player)
            level = stats.current_level
            reward = 0
            if qualifies:
                state = self._state()
                reward = compute_infinite_reward(
                    correct_steps, elapsed_ms, time_limit_ms, True,
                    state.base_reward_per_step, state.time_bonus_multiplier,
                )

            rnd = Round(
                player=player,
                round_type=RoundType.INFINITE.value,
                level=level,
                grid_size=grid_size,
                total_steps=steps,
                correct_steps=correct_steps,
                score=score,
                elapsed_ms=elapsed_ms,
                time_limit_ms=time_limit_ms,
                reward=reward,
                verified=bool(verified),
                failure_reason=failure_reason.value,
            )
            db.session.add(rnd)
            db.session.flush()

            stats.total_rounds += 1
            stats.total_score += score
            if qualifies:
                self._credit(player, reward)
                stats.current_level += 1
                stats.current_streak += 1
                stats.perfect_rounds_count += 1
                if score > stats.best_score:
                    stats.best_score = score
                self._signal(signals, 'level_up', player, round_id=rnd.id, level=stats.current_level,
                             streak=stats.current_streak, reward=reward)
            else:
                stats.current_streak = 0
                if time_expired:
                    stats.timeouts_count += 1
                    self._signal(signals, 'time_expired', player, round_id=rnd.id, elapsed_ms=elapsed_ms,
                                 time_limit_ms=time_limit_ms)
            self._signal(signals, 'round_recorded', player, round_id=rnd.id, round_type=rnd.round_type,
                         score=score, reward=reward, failure_reason=failure_reason.value)

            logger.info(
                f"[ledger-round] id={rnd.id} player={player} level={level} "
                f"correct={correct_steps}/{steps} reward={reward} reason={failure_reason.value}"
            )
            return Settlement(
                round_id=rnd.id,
                reward=reward,
                failure_reason=failure_reason,
                leveled_up=qualifies,
                new_level=stats.current_level,
            )

    def record_daily_challenge(self, caller: str, player: str, date: int, score: int, correct_steps: int,
                               total_steps: int, elapsed_ms: int, time_limit_ms: int,
                               time_expired: bool, verified: bool) -> Settlement:
        with self._write(caller, 'record_daily_challenge') as signals:
            _require_player(player)
            _require_date(date)
            _require_int('total_steps', total_steps, 1, MAX_STEPS)
            _require_int('correct_steps', correct_steps, 0, total_steps)
            _require_int('score', score, 0)
            _require_int('elapsed_ms', elapsed_ms, 0)
            _require_int('time_limit_ms', time_limit_ms, 0)

            challenge = db.session.get(DailyChallenge, date)
            if challenge is None:
                raise NotInitialized(date)
            entry = DailyChallengeEntry.query.filter_by(date=date, player=player).first()
            if entry is not None and entry.completed:
                raise AlreadyCompleted(player, date)
            if not (verified and correct_steps == total_steps and not time_expired):
                raise NotVerified(player, date)

            if entry is None:
                entry = DailyChallengeEntry(date=date, player=player, tries_used=0)
                db.session.add(entry)
            entry.completed = True
            try:
                db.session.flush()
            except IntegrityError:
                # Another writer created the entry first
                raise AlreadyCompleted(player, date)

            reward = self._state().daily_reward_per_completion
            rnd = Round(
                player=player,
                round_type=RoundType.DAILY_CHALLENGE.value,
                level=0,
                grid_size=challenge.grid_size,
                total_steps=total_steps,
                correct_steps=correct_steps,
                score=score,
                elapsed_ms=elapsed_ms,
                time_limit_ms=time_limit_ms,
                reward=reward,
                verified=True,
                failure_reason=FailureReason.NONE.value,
                challenge_date=date,
            )
            db.session.add(rnd)
            db.session.flush()

            stats = self._stats(player)
            stats.total_rounds += 1
            stats.total_score += score
            stats.perfect_rounds_count += 1
            stats.last_daily_challenge_date = date
            self._credit(player, reward)
            challenge.rewards_credited += reward
            if challenge.rewards_credited > challenge.reward_pool:
                # Escrow still backs the credit; the date's pool is only a budget
                logger.warning(
                    f"[ledger-daily-overdrawn] date={date} credited={challenge.rewards_credited} "
                    f"pool={challenge.reward_pool}"
                )

            self._signal(signals, 'daily_completed', player, round_id=rnd.id, date=date, reward=reward)
            logger.info(f"[ledger-daily] id={rnd.id} player={player} date={date} reward={reward}")
            return Settlement(
                round_id=rnd.id,
                reward=reward,
                failure_reason=FailureReason.NONE,
                leveled_up=False,
                new_level=stats.current_level,
            )

    def register_daily_attempt(self, caller: str, player: str, date: int) -> int:
        """Consume one daily try; returns the tries used so far (this one included)."""
        with self._write(caller, 'register_daily_attempt'):
            _require_player(player)
            _require_date(date)
            challenge = db.session.get(DailyChallenge, date)
            if challenge is None:
                raise NotInitialized(date)
            entry = DailyChallengeEntry.query.filter_by(date=date, player=player).first()
            if entry is None:
                entry = DailyChallengeEntry(date=date, player=player, tries_used=0, completed=False)
                db.session.add(entry)
            if entry.completed:
                raise AlreadyCompleted(player, date)
            if entry.tries_used >= challenge.max_tries:
                raise TriesExceeded(player, date, challenge.max_tries)
            entry.tries_used += 1
            return entry.tries_used

    # ------------------------------------------------------------------
    # Leaderboard
    # ------------------------------------------------------------------
    def update_leaderboard_and_pay(self, caller: str, players: Sequence[str], scores: Sequence[int],
                                   levels: Sequence[int]) -> List[int]:
        """Replace the top-10 table and credit each ranked player their share of the pool.

        Returns the amount credited per rank (0 for empty slots).
        """
        with self._write(caller, 'update_leaderboard_and_pay') as signals:
            sizes = (len(players), len(scores), len(levels))
            if sizes != (LEADERBOARD_SIZE,) * 3:
                raise ArityMismatch(LEADERBOARD_SIZE, sizes)
            for score in scores:
                _require_int('score', score, 0)
            for level in levels:
                _require_int('level', level, 0)
            ranked = [p for p in players if p and p != NO_PLAYER]
            for player in ranked:
                _require_player(player)
            if len(set(ranked)) != len(ranked):
                raise InvalidInput("a player may hold only one leaderboard rank")

            state = self._state()
            pool = state.leaderboard_pool
            weights = self.settings.rank_weights

            LeaderboardEntry.query.delete()
            credited = []
            for idx, (player, score, level) in enumerate(zip(players, scores, levels)):
                player = player or NO_PLAYER
                amount = 0
                if player != NO_PLAYER:
                    amount = pool * weights[idx] // 100
                    if amount:
                        self._credit(player, amount)
                        self._signal(signals, 'leaderboard_reward', player, rank=idx + 1, reward=amount)
                db.session.add(LeaderboardEntry(rank=idx + 1, player=player, score=score, level=level, reward=amount))
                credited.append(amount)

            state.last_payout_at = utcnow()
            self._signal(signals, 'leaderboard_updated', None, total_paid=sum(credited),
                         players=[p or NO_PLAYER for p in players])
            logger.info(f"[ledger-leaderboard] pool={pool} paid={sum(credited)}")
            return credited

    def reset_period_stats(self, caller: str, players: Sequence[str]) -> int:
        """Reset level and streak for the given players at the end of a payout period."""
        with self._write(caller, 'reset_period_stats') as signals:
            count = 0
            for player in players:
                if not player or player == NO_PLAYER:
                    continue
                stats = db.session.get(PlayerStats, player)
                if stats is None:
                    continue
                stats.current_level = 1
                stats.current_streak = 0
                count += 1
                self._signal(signals, 'period_reset', player)
            return count

    # ------------------------------------------------------------------
    # Funds
    # ------------------------------------------------------------------
    def withdraw(self, player: str) -> int:
        """Pay out everything pending for ``player``; all or nothing."""
        with self._write() as signals:
            _require_player(player)
            pending = db.session.get(PendingReward, player)
            amount = pending.amount if pending is not None else 0
            if amount <= 0:
                raise NoRewards(player)
            state = self._state()
            if state.escrow_balance < amount:
                logger.critical(
                    f"[ledger-insolvent] player={player} requested={amount} escrow={state.escrow_balance}"
                )
                raise InsufficientFunds(amount, state.escrow_balance)

            # Zero before transfer: a re-entrant withdraw sees nothing pending.
            pending.amount = 0
            state.escrow_balance -= amount
            db.session.add(Withdrawal(player=player, amount=amount))
            db.session.flush()
            if self.payout_sink is not None:
                self.payout_sink(player, amount)
            self._signal(signals, 'rewards_withdrawn', player, amount=amount)
            logger.info(f"[ledger-withdraw] player={player} amount={amount}")
            return amount

    def deposit(self, caller: str, amount: int) -> int:
        with self._write(caller, 'deposit') as signals:
            _require_int('amount', amount, 1)
            state = self._state()
            state.escrow_balance += amount
            self._signal(signals, 'funds_deposited', None, amount=amount, escrow_balance=state.escrow_balance)
            return state.escrow_balance

    def emergency_withdraw(self, caller: str) -> int:
        """Drain the whole escrow to the owner."""
        with self._write(caller, 'emergency_withdraw') as signals:
            state = self._state()
            amount = state.escrow_balance
            if amount > 0:
                state.escrow_balance = 0
                db.session.add(Withdrawal(player=self.owner, amount=amount))
                db.session.flush()
                if self.payout_sink is not None:
                    self.payout_sink(self.owner, amount)
                self._signal(signals, 'emergency_withdrawal', self.owner, amount=amount)
            logger.warning(f"[ledger-drain] owner={self.owner} amount={amount}")
            return amount

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------
    def set_daily_challenge(self, caller: str, date: int, grid_size: int, steps: int, show_duration: int,
                            interval_between: int, time_limit: int, max_tries: int = None) -> DailyChallenge:
        with self._write(caller, 'set_daily_challenge') as signals:
            _require_date(date)
            _require_int('grid_size', grid_size, MIN_GRID_SIZE, MAX_GRID_SIZE)
            _require_int('steps', steps, 1, MAX_STEPS)
            _require_int('show_duration', show_duration, 1)
            _require_int('interval_between', interval_between, 0)
            _require_int('time_limit', time_limit, 1)
            if max_tries is None:
                max_tries = self.settings.daily.max_tries
            _require_int('max_tries', max_tries, 1)

            challenge = db.session.get(DailyChallenge, date)
            if challenge is None:
                challenge = DailyChallenge(date=date, reward_pool=0, rewards_credited=0)
                db.session.add(challenge)
            challenge.grid_size = grid_size
            challenge.steps = steps
            challenge.show_duration = show_duration
            challenge.interval_between = interval_between
            challenge.time_limit = time_limit
            challenge.max_tries = max_tries
            self._signal(signals, 'daily_challenge_set', None, date=date, grid_size=grid_size, steps=steps)
            return challenge

    def fund_daily_challenge(self, caller: str, date: int, amount: int) -> int:
        """Escrow ``amount`` for a configured date; returns that date's pool."""
        with self._write(caller, 'fund_daily_challenge') as signals:
            _require_date(date)
            _require_int('amount', amount, 1)
            challenge = db.session.get(DailyChallenge, date)
            if challenge is None:
                raise NotInitialized(date)
            challenge.reward_pool += amount
            state = self._state()
            state.escrow_balance += amount
            self._signal(signals, 'funds_deposited', None, amount=amount, date=date,
                         escrow_balance=state.escrow_balance)
            return challenge.reward_pool

    def set_reward_parameters(self, caller: str, base_reward_per_step: int = None,
                              time_bonus_multiplier: int = None, daily_reward_per_completion: int = None,
                              leaderboard_pool: int = None) -> LedgerState:
        with self._write(caller, 'set_reward_parameters') as signals:
            state = self._state()
            if base_reward_per_step is not None:
                state.base_reward_per_step = _require_int('base_reward_per_step', base_reward_per_step, 0)
            if time_bonus_multiplier is not None:
                state.time_bonus_multiplier = _require_int('time_bonus_multiplier', time_bonus_multiplier, 0)
            if daily_reward_per_completion is not None:
                state.daily_reward_per_completion = _require_int(
                    'daily_reward_per_completion', daily_reward_per_completion, 0)
            if leaderboard_pool is not None:
                state.leaderboard_pool = _require_int('leaderboard_pool', leaderboard_pool, 0)
            self._signal(signals, 'reward_parameters_updated', None, **{
                k: v for k, v in state.to_dict().items() if k != 'last_payout_at'
            })
            return state

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_player_stats(self, player: str) -> PlayerStats:
        """Stats for ``player``; an unsaved default row when they never played."""
        return db.session.get(PlayerStats, player) or PlayerStats(player=player)

    def current_level(self, player: str) -> int:
        return self.get_player_stats(player).current_level

    def get_pending_rewards(self, player: str) -> int:
        pending = db.session.get(PendingReward, player)
        return pending.amount if pending is not None else 0

    def get_round(self, round_id: int) -> Optional[Round]:
        return db.session.get(Round, round_id)

    def get_player_rounds(self, player: str, limit: int = 20) -> List[Round]:
        rows = Round.query.filter_by(player=player).order_by(Round.id.desc()).limit(limit).all()
        return list(reversed(rows))

    def get_leaderboard(self) -> List[LeaderboardEntry]:
        return LeaderboardEntry.query.order_by(LeaderboardEntry.rank).all()

    def get_daily_challenge(self, date: int) -> Optional[DailyChallenge]:
        return db.session.get(DailyChallenge, date)

    def get_daily_status(self, date: int, player: str) -> dict:
        challenge = db.session.get(DailyChallenge, date)
        entry = DailyChallengeEntry.query.filter_by(date=date, player=player).first()
        tries_used = entry.tries_used if entry else 0
        completed = bool(entry.completed) if entry else False
        max_tries = challenge.max_tries if challenge else self.settings.daily.max_tries
        return {
            'date': date,
            'configured': challenge is not None,
            'tries_used': tries_used,
            'max_tries': max_tries,
            'completed': completed,
            'can_play': challenge is not None and not completed and tries_used < max_tries,
        }

    def escrow_balance(self) -> int:
        state = db.session.get(LedgerState, 1)
        return state.escrow_balance if state is not None else 0

    def get_state(self) -> LedgerState:
        with self._write():
            return self._state()

    def get_events(self, player: str = None, limit: int = 50) -> List[LedgerEvent]:
        query = LedgerEvent.query
        if player is not None:
            query = query.filter_by(player=player)
        return query.order_by(LedgerEvent.id.desc()).limit(limit).all()
