"""Leaderboard accumulation and the periodic payout job.

Scores accumulate in memory for the current period as rounds settle. On
trigger the job ranks players by level, then score, pays the top ten through
the ledger and starts a fresh period. A failed payout is logged and dropped,
never retried.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from memorix.models import NO_PLAYER
from memorix.settings import LEADERBOARD_SIZE, GameSettings

logger = logging.getLogger(__name__)


class LeaderboardAccumulator:
    """Per-period ``player -> (score, level)`` map; score is additive, level is the max seen."""

    def __init__(self):
        self._entries: Dict[str, Dict[str, int]] = {}
        self._lock = threading.Lock()

    def record(self, player: str, level: int, score: int) -> None:
        if not player:
            return
        with self._lock:
            entry = self._entries.setdefault(player, {'score': 0, 'level': 1})
            entry['score'] += int(score or 0)
            entry['level'] = max(entry['level'], int(level or 1))

    def ranked(self) -> List[Tuple[str, int, int]]:
        """``(player, score, level)`` sorted by level desc, then score desc."""
        with self._lock:
            items = [(p, e['score'], e['level']) for p, e in self._entries.items()]
        items.sort(key=lambda item: (-item[2], -item[1]))
        return items

    def drain(self) -> List[Tuple[str, int, int]]:
        """Ranked snapshot and reset, atomically."""
        with self._lock:
            items = [(p, e['score'], e['level']) for p, e in self._entries.items()]
            self._entries.clear()
        items.sort(key=lambda item: (-item[2], -item[1]))
        return items

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)


@dataclass(frozen=True)
class PayoutReport:
    players: List[str]
    scores: List[int]
    levels: List[int]
    credited: List[int] = field(default_factory=list)
    paid: bool = False
    error: Optional[str] = None

    def to_dict(self):
        return {
            'players': list(self.players),
            'scores': list(self.scores),
            'levels': list(self.levels),
            'credited': list(self.credited),
            'paid': self.paid,
            'error': self.error,
        }


def pad_top(ranked: List[Tuple[str, int, int]], size: int = LEADERBOARD_SIZE):
    """Top ``size`` rows as three parallel columns, padded with the no-player sentinel."""
    players = [NO_PLAYER] * size
    scores = [0] * size
    levels = [0] * size
    for idx, (player, score, level) in enumerate(ranked[:size]):
        players[idx] = player
        scores[idx] = score
        levels[idx] = level
    return players, scores, levels


class LeaderboardPayoutJob:
    def __init__(self, settings: GameSettings, ledger, accumulator: LeaderboardAccumulator):
        self.settings = settings
        self.ledger = ledger
        self.accumulator = accumulator

    def trigger(self) -> PayoutReport:
        ranked = self.accumulator.drain()
        players, scores, levels = pad_top(ranked)
        if not ranked:
            logger.info("[payout] no players to reward this period")
            return PayoutReport(players=players, scores=scores, levels=levels)

        owner = self.settings.ledger_owner
        try:
            credited = self.ledger.update_leaderboard_and_pay(owner, players, scores, levels)
        except Exception as exc:
            logger.error(f"[payout] leaderboard update failed, period dropped: {exc}")
            return PayoutReport(players=players, scores=scores, levels=levels, error=str(exc))

        logger.info(f"[payout] paid {sum(credited)} across {len(ranked[:LEADERBOARD_SIZE])} players")
        if self.settings.reset_levels:
            try:
                self.ledger.reset_period_stats(owner, [p for p in players if p != NO_PLAYER])
            except Exception as exc:
                logger.error(f"[payout] period stats reset failed: {exc}")
        return PayoutReport(players=players, scores=scores, levels=levels, credited=credited, paid=True)
