from dataclasses import dataclass, field
from fractions import Fraction
from typing import List, Optional

from memorix.errors import InvalidInput
from memorix.settings import AntiCheatRules


@dataclass(frozen=True)
class Verification:
    passed: bool
    reasons: List[str] = field(default_factory=list)


def _timestamp(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInput(f"{name} must be a number")
    return int(value)


def check_telemetry(telemetry) -> None:
    """Reject telemetry that ``verify_round`` could not read.

    Called before a round token is consumed so a malformed payload leaves
    the round open for a corrected submission.
    """
    if telemetry is None:
        return
    if not isinstance(telemetry, dict):
        raise InvalidInput('telemetry must be an object')
    clicks = telemetry.get('clicks')
    if clicks is not None:
        if not isinstance(clicks, list):
            raise InvalidInput('telemetry.clicks must be a list')
        for click in clicks:
            if not isinstance(click, dict):
                raise InvalidInput('telemetry.clicks entries must be objects')
            _timestamp('telemetry.clicks[].client_ts', click.get('client_ts', 0))
    if telemetry.get('sequence_end_ts') is not None:
        _timestamp('telemetry.sequence_end_ts', telemetry['sequence_end_ts'])


def verify_round(active_round, telemetry: Optional[dict], rules: AntiCheatRules) -> Verification:
    """Flag implausibly fast click timing.

    Missing telemetry passes: only positive evidence of automation fails a
    round. The first interval is measured from ``sequence_end_ts`` (the moment
    the sequence finished displaying), later ones between consecutive clicks.
    """
    if not rules.enabled:
        return Verification(passed=True)
    check_telemetry(telemetry)
    clicks = (telemetry or {}).get('clicks') or []
    if not clicks:
        return Verification(passed=True)

    timestamps = [_timestamp('client_ts', c.get('client_ts', 0)) for c in clicks]
    start = (telemetry or {}).get('sequence_end_ts')
    start = timestamps[0] if start is None else int(start)
    intervals = [timestamps[0] - start]
    intervals.extend(b - a for a, b in zip(timestamps, timestamps[1:]))

    reasons = []
    mean = Fraction(sum(intervals), len(intervals))
    if mean < rules.min_reaction_time_ms:
        reasons.append('Suspiciously fast reactions')
    return Verification(passed=not reasons, reasons=reasons)
