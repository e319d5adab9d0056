from flask import Blueprint, jsonify, request, current_app
from memorix.errors import InvalidInput, RoundNotFound
from memorix.models import RoundType
from memorix.services import get_services
from memorix.services.games.engine import Outcome
from memorix.settings import format_units


rounds = Blueprint('rounds', __name__)


def _player_from(data) -> str:
    player = (data or {}).get('player')
    if not player or not isinstance(player, str):
        raise InvalidInput('player is required')
    return player


def _started_payload(rnd):
    payload = {
        'success': True,
        'round_id': rnd.token,
        'round_type': rnd.round_type.value,
        'sequence': list(rnd.sequence),
        'level': rnd.level,
    }
    payload.update(rnd.difficulty.to_dict())
    if rnd.challenge_date is not None:
        payload['date'] = rnd.challenge_date
    return payload


def _message(result) -> str:
    if result.outcome is Outcome.LEVELED_UP:
        return f"Perfect! Level {result.level} complete! Moving to Level {result.next_level}"
    if result.outcome is Outcome.COMPLETED:
        return f"Perfect! You earned {format_units(result.reward)}!"
    if result.outcome is Outcome.TIMED_OUT:
        return 'Time expired! Try again.'
    if result.outcome is Outcome.UNSETTLED:
        return 'Round graded but could not be recorded; no reward was earned.'
    if not result.verified:
        return 'Round could not be verified.'
    return f"Got {result.correct_steps}/{result.total_steps} correct. Try again!"


def _submit(mode: RoundType):
    data = request.get_json(silent=True) or {}
    token = data.get('round_id')
    player = _player_from(data)
    engine = get_services().engine

    active = engine.get(token) if token else None
    if active is None or active.round_type is not mode:
        raise RoundNotFound(str(token))

    result = engine.submit(token, player, data.get('clicks') or [], data.get('telemetry'))
    current_app.logger.info(
        f"[submit] player={player} mode={mode.value} outcome={result.outcome.value} score={result.score}"
    )
    payload = result.to_dict()
    payload['success'] = True
    payload['reward_display'] = format_units(result.reward)
    payload['message'] = _message(result)
    return jsonify(payload)


@rounds.route('/round/start/infinite', methods=['POST'])
def start_infinite():
    data = request.get_json(silent=True) or {}
    player = _player_from(data)
    level = data.get('level')
    if level is not None:
        try:
            level = int(level)
        except (TypeError, ValueError):
            raise InvalidInput('level must be an integer')
    rnd = get_services().engine.start(player, RoundType.INFINITE, level)
    return jsonify(_started_payload(rnd))


@rounds.route('/round/submit/infinite', methods=['POST'])
def submit_infinite():
    return _submit(RoundType.INFINITE)


@rounds.route('/round/start/daily', methods=['POST'])
def start_daily():
    data = request.get_json(silent=True) or {}
    player = _player_from(data)
    rnd = get_services().engine.start(player, RoundType.DAILY_CHALLENGE)
    return jsonify(_started_payload(rnd))


@rounds.route('/round/submit/daily', methods=['POST'])
def submit_daily():
    return _submit(RoundType.DAILY_CHALLENGE)
