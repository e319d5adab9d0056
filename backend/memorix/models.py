from memorix import db
from datetime import datetime, timezone
from enum import Enum
import json


NO_PLAYER = '0x' + '0' * 40


def utcnow():
    return datetime.now(timezone.utc)


class RoundType(str, Enum):
    INFINITE = 'INFINITE'
    DAILY_CHALLENGE = 'DAILY_CHALLENGE'


class FailureReason(str, Enum):
    NONE = 'NONE'
    WRONG_SEQUENCE = 'WRONG_SEQUENCE'
    TIME_EXPIRED = 'TIME_EXPIRED'


class Round(db.Model):
    """A settled round. Rows are appended by the ledger and never updated."""
    __tablename__ = 'round'
    id = db.Column(db.Integer, primary_key=True)
    player = db.Column(db.String(128), nullable=False, index=True)
    round_type = db.Column(db.String(32), nullable=False)
    level = db.Column(db.Integer, nullable=False, default=0)
    grid_size = db.Column(db.Integer, nullable=False)
    total_steps = db.Column(db.Integer, nullable=False)
    correct_steps = db.Column(db.Integer, nullable=False)
    score = db.Column(db.BigInteger, nullable=False, default=0)
    elapsed_ms = db.Column(db.BigInteger, nullable=False)
    time_limit_ms = db.Column(db.BigInteger, nullable=False)
    reward = db.Column(db.BigInteger, nullable=False, default=0)
    verified = db.Column(db.Boolean, nullable=False, default=False)
    failure_reason = db.Column(db.String(32), nullable=False, default=FailureReason.NONE.value)
    challenge_date = db.Column(db.Integer, nullable=True)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'player': self.player,
            'round_type': self.round_type,
            'level': self.level,
            'grid_size': self.grid_size,
            'total_steps': self.total_steps,
            'correct_steps': self.correct_steps,
            'score': self.score,
            'elapsed_ms': self.elapsed_ms,
            'time_limit_ms': self.time_limit_ms,
            'reward': self.reward,
            'verified': self.verified,
            'failure_reason': self.failure_reason,
            'challenge_date': self.challenge_date,
            'settled_at': self.settled_at.isoformat() if self.settled_at else None,
        }


class PlayerStats(db.Model):
    __tablename__ = 'player_stats'
    player = db.Column(db.String(128), primary_key=True)
    total_rounds = db.Column(db.Integer, nullable=False, default=0)
    total_score = db.Column(db.BigInteger, nullable=False, default=0)
    total_rewards = db.Column(db.BigInteger, nullable=False, default=0)
    best_score = db.Column(db.BigInteger, nullable=False, default=0)
    current_streak = db.Column(db.Integer, nullable=False, default=0)
    current_level = db.Column(db.Integer, nullable=False, default=1)
    timeouts_count = db.Column(db.Integer, nullable=False, default=0)
    perfect_rounds_count = db.Column(db.Integer, nullable=False, default=0)
    last_daily_challenge_date = db.Column(db.Integer, nullable=True)

    def __init__(self, **kwargs):
        # Column defaults only apply at flush; stats are mutated before that.
        kwargs.setdefault('total_rounds', 0)
        kwargs.setdefault('total_score', 0)
        kwargs.setdefault('total_rewards', 0)
        kwargs.setdefault('best_score', 0)
        kwargs.setdefault('current_streak', 0)
        kwargs.setdefault('current_level', 1)
        kwargs.setdefault('timeouts_count', 0)
        kwargs.setdefault('perfect_rounds_count', 0)
        super(PlayerStats, self).__init__(**kwargs)

    def to_dict(self):
        return {
            'player': self.player,
            'total_rounds': self.total_rounds,
            'total_score': self.total_score,
            'total_rewards': self.total_rewards,
            'best_score': self.best_score,
            'current_streak': self.current_streak,
            'current_level': self.current_level,
            'timeouts_count': self.timeouts_count,
            'perfect_rounds_count': self.perfect_rounds_count,
            'last_daily_challenge_date': self.last_daily_challenge_date,
        }


class PendingReward(db.Model):
    __tablename__ = 'pending_reward'
    player = db.Column(db.String(128), primary_key=True)
    amount = db.Column(db.BigInteger, nullable=False, default=0)


class DailyChallenge(db.Model):
    __tablename__ = 'daily_challenge'
    date = db.Column(db.Integer, primary_key=True)  # YYYYMMDD, UTC
    grid_size = db.Column(db.Integer, nullable=False)
    steps = db.Column(db.Integer, nullable=False)
    show_duration = db.Column(db.Integer, nullable=False)
    interval_between = db.Column(db.Integer, nullable=False)
    time_limit = db.Column(db.Integer, nullable=False)
    max_tries = db.Column(db.Integer, nullable=False, default=3)
    reward_pool = db.Column(db.BigInteger, nullable=False, default=0)
    rewards_credited = db.Column(db.BigInteger, nullable=False, default=0)
    entries = db.relationship('DailyChallengeEntry', backref='challenge', lazy='dynamic')

    def to_dict(self):
        return {
            'date': self.date,
            'grid_size': self.grid_size,
            'steps': self.steps,
            'show_duration': self.show_duration,
            'interval_between': self.interval_between,
            'time_limit': self.time_limit,
            'max_tries': self.max_tries,
            'reward_pool': self.reward_pool,
            'rewards_credited': self.rewards_credited,
        }


class DailyChallengeEntry(db.Model):
    __tablename__ = 'daily_challenge_entry'
    __table_args__ = (db.UniqueConstraint('date', 'player', name='uq_daily_entry_date_player'),)
    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Integer, db.ForeignKey('daily_challenge.date'), nullable=False)
    player = db.Column(db.String(128), nullable=False, index=True)
    tries_used = db.Column(db.Integer, nullable=False, default=0)
    completed = db.Column(db.Boolean, nullable=False, default=False)


class LeaderboardEntry(db.Model):
    """One rank of the current top-10 table; replaced wholesale on each payout."""
    __tablename__ = 'leaderboard_entry'
    rank = db.Column(db.Integer, primary_key=True)
    player = db.Column(db.String(128), nullable=False, default=NO_PLAYER)
    score = db.Column(db.BigInteger, nullable=False, default=0)
    level = db.Column(db.Integer, nullable=False, default=0)
    reward = db.Column(db.BigInteger, nullable=False, default=0)

    def to_dict(self):
        return {
            'rank': self.rank,
            'player': self.player,
            'score': self.score,
            'level': self.level,
            'reward': self.reward,
        }


class LedgerState(db.Model):
    """Singleton row (id=1) holding escrow and adjustable reward parameters."""
    __tablename__ = 'ledger_state'
    id = db.Column(db.Integer, primary_key=True)
    escrow_balance = db.Column(db.BigInteger, nullable=False, default=0)
    base_reward_per_step = db.Column(db.BigInteger, nullable=False)
    time_bonus_multiplier = db.Column(db.Integer, nullable=False)
    daily_reward_per_completion = db.Column(db.BigInteger, nullable=False)
    leaderboard_pool = db.Column(db.BigInteger, nullable=False)
    last_payout_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            'escrow_balance': self.escrow_balance,
            'base_reward_per_step': self.base_reward_per_step,
            'time_bonus_multiplier': self.time_bonus_multiplier,
            'daily_reward_per_completion': self.daily_reward_per_completion,
            'leaderboard_pool': self.leaderboard_pool,
            'last_payout_at': self.last_payout_at.isoformat() if self.last_payout_at else None,
        }


class Withdrawal(db.Model):
    __tablename__ = 'withdrawal'
    id = db.Column(db.Integer, primary_key=True)
    player = db.Column(db.String(128), nullable=False, index=True)
    amount = db.Column(db.BigInteger, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)


class LedgerEvent(db.Model):
    """Append-only log of ledger signals (level ups, payouts, withdrawals...)."""
    __tablename__ = 'ledger_event'
    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(64), nullable=False, index=True)
    player = db.Column(db.String(128), nullable=True, index=True)
    payload = db.Column(db.Text, nullable=True)  # JSON-encoded
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self):
        try:
            payload = json.loads(self.payload) if self.payload else {}
        except ValueError:
            payload = {}
        return {
            'id': self.id,
            'kind': self.kind,
            'player': self.player,
            'payload': payload,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
