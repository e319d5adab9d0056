"""Round engine: issue a sequence, grade the replay, settle with the ledger.

A round token moves ISSUED -> ACTIVE -> SETTLED | EXPIRED and is consumed
exactly once. The active-round table lock is only held while a token is
looked up or removed; grading and the ledger call happen outside it.

Grading counts matches up to the first mistake in both modes. Infinite
rounds only pay a reward when perfect (the ledger enforces this too).
"""

import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from memorix.errors import InvalidInput, MemorixError, RoundNotFound, RoundUnauthorized
from memorix.models import RoundType
from memorix.settings import GameSettings
from .anticheat import Verification, check_telemetry, verify_round
from .difficulty import Difficulty, daily_difficulty, infinite_difficulty
from .scoring import calculate_score, count_correct_steps
from .sequence import generate_sequence

logger = logging.getLogger(__name__)


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


def today_date_num(now_ms: int = None) -> int:
    """Calendar date (UTC) as an integer YYYYMMDD."""
    moment = datetime.fromtimestamp((now_ms if now_ms is not None else wall_clock_ms()) / 1000, tz=timezone.utc)
    return int(moment.strftime('%Y%m%d'))


class RoundState(str, Enum):
    ISSUED = 'ISSUED'
    ACTIVE = 'ACTIVE'
    SETTLED = 'SETTLED'
    EXPIRED = 'EXPIRED'


class Outcome(str, Enum):
    LEVELED_UP = 'leveled_up'          # perfect infinite round settled with a reward
    COMPLETED = 'completed'            # daily challenge settled with its reward
    PARTIAL_CREDIT = 'partial_credit'  # settled, imperfect, score counted, no reward
    TIMED_OUT = 'timed_out'            # time limit exceeded
    REJECTED = 'rejected'              # failed anti-cheat or imperfect daily run; not settled
    UNSETTLED = 'unsettled'            # the ledger call failed; earns nothing


@dataclass
class ActiveRound:
    token: str
    player: str
    round_type: RoundType
    sequence: List[int]
    difficulty: Difficulty
    level: int
    started_at: int
    challenge_date: Optional[int] = None
    state: RoundState = RoundState.ISSUED


@dataclass(frozen=True)
class RoundResult:
    outcome: Outcome
    token: str
    round_type: RoundType
    score: int
    correct_steps: int
    total_steps: int
    elapsed_ms: int
    time_expired: bool
    verified: bool
    reasons: List[str] = field(default_factory=list)
    level: int = 0
    next_level: int = 0
    reward: int = 0
    settlement_id: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_perfect(self) -> bool:
        return self.total_steps > 0 and self.correct_steps == self.total_steps

    @property
    def reward_eligible(self) -> bool:
        return self.outcome in (Outcome.LEVELED_UP, Outcome.COMPLETED)

    @property
    def can_continue(self) -> bool:
        return self.outcome is Outcome.LEVELED_UP

    def to_dict(self):
        return {
            'outcome': self.outcome.value,
            'round_id': self.token,
            'round_type': self.round_type.value,
            'score': self.score,
            'correct_steps': self.correct_steps,
            'total_steps': self.total_steps,
            'elapsed_ms': self.elapsed_ms,
            'time_expired': self.time_expired,
            'verified': self.verified,
            'reasons': list(self.reasons),
            'is_perfect': self.is_perfect,
            'reward_eligible': self.reward_eligible,
            'can_continue': self.can_continue,
            'level': self.level,
            'next_level': self.next_level,
            'reward': self.reward,
            'settlement_id': self.settlement_id,
            'error': self.error,
        }


class RoundEngine:
    """Owns the active-round table for one process."""

    def __init__(self, settings: GameSettings, ledger, accumulator=None,
                 clock: Callable[[], int] = wall_clock_ms):
        self.settings = settings
        self.ledger = ledger
        self.accumulator = accumulator
        self.clock = clock
        self._rounds: Dict[str, ActiveRound] = {}
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._rounds)

    def start(self, player: str, mode: RoundType, level: int = None) -> ActiveRound:
        """Issue a new round. The full sequence and time limit are returned to the caller."""
        mode = RoundType(mode)
        now = self.clock()
        challenge_date = None
        if mode is RoundType.DAILY_CHALLENGE:
            challenge_date = today_date_num(now)
            # Raises NotInitialized / AlreadyCompleted / TriesExceeded
            self.ledger.register_daily_attempt(self.settings.ledger_owner, player, challenge_date)
            difficulty = daily_difficulty(self.ledger.get_daily_challenge(challenge_date))
            level = 0
        else:
            # The ledger's level is authoritative; a differing client level is ignored
            stored = self.ledger.current_level(player)
            if level is not None and level != stored:
                logger.info(f"[round-start] player={player} requested level={level}, playing stored level={stored}")
            level = stored
            difficulty = infinite_difficulty(level, self.settings.curve)

        rnd = ActiveRound(
            token=secrets.token_urlsafe(16),
            player=player,
            round_type=mode,
            sequence=generate_sequence(difficulty.grid_size, difficulty.steps),
            difficulty=difficulty,
            level=level,
            started_at=now,
            challenge_date=challenge_date,
        )
        with self._lock:
            rnd.state = RoundState.ACTIVE
            self._rounds[rnd.token] = rnd
        logger.info(f"[round-start] player={player} mode={mode.value} level={level} token={rnd.token}")
        return rnd

    def get(self, token: str) -> Optional[ActiveRound]:
        return self._rounds.get(token)

    def _consume(self, token: str, player: str, state: RoundState) -> ActiveRound:
        with self._lock:
            rnd = self._rounds.get(token)
            if rnd is None:
                raise RoundNotFound(token)
            if rnd.player != player:
                raise RoundUnauthorized(token, player)
            del self._rounds[token]
            rnd.state = state
            return rnd

    def expire(self, token: str, player: str) -> ActiveRound:
        """Discard an ACTIVE round without settling it."""
        rnd = self._consume(token, player, RoundState.EXPIRED)
        logger.info(f"[round-expire] player={player} token={token}")
        return rnd

    def sweep_expired(self, max_idle_ms: int = None) -> int:
        """Expire every round started more than ``max_idle_ms`` ago."""
        max_idle_ms = self.settings.round_max_idle_ms if max_idle_ms is None else max_idle_ms
        if not max_idle_ms or max_idle_ms <= 0:
            return 0
        cutoff = self.clock() - max_idle_ms
        with self._lock:
            stale = [token for token, rnd in self._rounds.items() if rnd.started_at < cutoff]
            for token in stale:
                self._rounds.pop(token).state = RoundState.EXPIRED
        if stale:
            logger.info(f"[round-sweep] expired={len(stale)} remaining={len(self._rounds)}")
        return len(stale)

    def submit(self, token: str, player: str, clicks, telemetry: dict = None) -> RoundResult:
        """Grade a replay and settle it with the ledger (at most one ledger call)."""
        if clicks is not None and not isinstance(clicks, list):
            raise InvalidInput('clicks must be a list')
        check_telemetry(telemetry)
        rnd = self._consume(token, player, RoundState.SETTLED)

        clicked = [c.get('index') if isinstance(c, dict) else c for c in (clicks or [])]
        steps = rnd.difficulty.steps
        correct_steps = count_correct_steps(rnd.sequence, clicked)
        elapsed_ms = max(0, self.clock() - rnd.started_at)
        time_expired = elapsed_ms > rnd.difficulty.time_limit
        perfect = correct_steps == steps

        verification = verify_round(rnd, telemetry, self.settings.anti_cheat)
        if rnd.round_type is RoundType.INFINITE:
            rules = self.settings.infinite_scoring
        else:
            rules = self.settings.daily_scoring
        score = calculate_score(correct_steps, steps, elapsed_ms, rnd.difficulty.time_limit, rnd.level, rules)

        result = dict(
            token=rnd.token,
            round_type=rnd.round_type,
            score=score,
            correct_steps=correct_steps,
            total_steps=steps,
            elapsed_ms=elapsed_ms,
            time_expired=time_expired,
            verified=verification.passed,
            reasons=list(verification.reasons),
            level=rnd.level,
            next_level=rnd.level,
        )

        if not verification.passed:
            logger.warning(f"[round-rejected] player={player} token={token} reasons={verification.reasons}")
            return RoundResult(outcome=Outcome.REJECTED, **result)

        if rnd.round_type is RoundType.DAILY_CHALLENGE and (time_expired or not perfect):
            outcome = Outcome.TIMED_OUT if time_expired else Outcome.REJECTED
            return RoundResult(outcome=outcome, **result)

        settlement, error = self._settle(rnd, score, correct_steps, elapsed_ms, time_expired, verification)
        if settlement is None:
            return RoundResult(outcome=Outcome.UNSETTLED, error=error, **result)

        if rnd.round_type is RoundType.DAILY_CHALLENGE:
            outcome = Outcome.COMPLETED
            board_level = settlement.new_level
        elif settlement.leveled_up:
            outcome = Outcome.LEVELED_UP
            result['next_level'] = settlement.new_level
            board_level = settlement.new_level
        else:
            outcome = Outcome.TIMED_OUT if time_expired else Outcome.PARTIAL_CREDIT
            board_level = settlement.new_level

        if self.accumulator is not None:
            self.accumulator.record(player, board_level, score)
        return RoundResult(outcome=outcome, reward=settlement.reward, settlement_id=settlement.round_id, **result)

    def _settle(self, rnd: ActiveRound, score: int, correct_steps: int, elapsed_ms: int,
                time_expired: bool, verification: Verification):
        """Single ledger call for a graded round; failures leave it permanently unsettled."""
        owner = self.settings.ledger_owner
        try:
            if rnd.round_type is RoundType.DAILY_CHALLENGE:
                settlement = self.ledger.record_daily_challenge(
                    owner, rnd.player, rnd.challenge_date, score, correct_steps, rnd.difficulty.steps,
                    elapsed_ms, rnd.difficulty.time_limit, time_expired, verification.passed,
                )
            else:
                settlement = self.ledger.record_infinite_round(
                    owner, rnd.player, score, rnd.difficulty.grid_size, rnd.difficulty.steps, correct_steps,
                    elapsed_ms, rnd.difficulty.time_limit, time_expired, verification.passed,
                )
        except MemorixError as exc:
            logger.warning(f"[round-unsettled] player={rnd.player} token={rnd.token} error={exc.code}: {exc}")
            return None, exc.code
        except SQLAlchemyError as exc:
            logger.warning(f"[round-unsettled] player={rnd.player} token={rnd.token} ledger unavailable: {exc}")
            return None, 'LEDGER_UNAVAILABLE'
        logger.info(
            f"[round-settled] player={rnd.player} token={rnd.token} round_id={settlement.round_id} "
            f"reward={settlement.reward}"
        )
        return settlement, None
