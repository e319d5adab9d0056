from flask import Blueprint, jsonify, request, current_app
from memorix.errors import InvalidInput, NotAuthorized
from memorix.models import NO_PLAYER
from memorix.services import get_services
from memorix.services.games.engine import today_date_num
from memorix.settings import format_units, to_units


ledger_api = Blueprint('ledger_api', __name__)


def _admin_caller() -> str:
    """Ledger identity of the request: the owner when the admin token matches."""
    settings = get_services().settings
    token = request.headers.get('X-Admin-Token')
    if settings.admin_token and token == settings.admin_token:
        return settings.ledger_owner
    return 'anonymous'


def _amount(data, key, required=True):
    value = (data or {}).get(key)
    if value is None:
        if required:
            raise InvalidInput(f"{key} is required")
        return None
    try:
        return to_units(value)
    except ValueError as exc:
        raise InvalidInput(str(exc))


def _int(data, key, required=True):
    value = (data or {}).get(key)
    if value is None:
        if required:
            raise InvalidInput(f"{key} is required")
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{key} must be an integer")


@ledger_api.route('/player/<string:player>/stats', methods=['GET'])
def player_stats(player):
    ledger = get_services().ledger
    stats = ledger.get_player_stats(player).to_dict()
    pending = ledger.get_pending_rewards(player)
    stats['total_rewards_display'] = format_units(stats['total_rewards'])
    stats['pending_rewards'] = pending
    stats['pending_rewards_display'] = format_units(pending)
    return jsonify({'success': True, 'stats': stats})


@ledger_api.route('/player/<string:player>/rounds', methods=['GET'])
def player_rounds(player):
    try:
        limit = max(1, min(100, int(request.args.get('limit', 20))))
    except ValueError:
        limit = 20
    rows = get_services().ledger.get_player_rounds(player, limit=limit)
    return jsonify({'success': True, 'rounds': [r.to_dict() for r in rows]})


@ledger_api.route('/player/<string:player>/withdraw', methods=['POST'])
def withdraw(player):
    amount = get_services().ledger.withdraw(player)
    current_app.logger.info(f"[withdraw] player={player} amount={amount}")
    return jsonify({'success': True, 'amount': amount, 'amount_display': format_units(amount)})


@ledger_api.route('/leaderboard', methods=['GET'])
def leaderboard():
    services = get_services()
    entries = [e.to_dict() for e in services.ledger.get_leaderboard() if e.player != NO_PLAYER]
    # Live standings for the running period
    live = [
        {'rank': idx + 1, 'player': player, 'score': score, 'level': level}
        for idx, (player, score, level) in enumerate(services.accumulator.ranked())
    ]
    hour, minute = services.settings.reset_time
    return jsonify({
        'success': True,
        'leaderboard': entries,
        'current_period': live,
        'next_reset': f'{hour:02d}:{minute:02d}',
    })


@ledger_api.route('/daily-challenge/status/<string:player>', methods=['GET'])
def daily_status(player):
    status = get_services().ledger.get_daily_status(today_date_num(), player)
    status['success'] = True
    return jsonify(status)


# ---- Administration (owner only) ----

@ledger_api.route('/admin/deposit', methods=['POST'])
def admin_deposit():
    data = request.get_json(silent=True) or {}
    balance = get_services().ledger.deposit(_admin_caller(), _amount(data, 'amount'))
    return jsonify({'success': True, 'escrow_balance': balance, 'escrow_display': format_units(balance)})


@ledger_api.route('/admin/daily-challenge', methods=['POST'])
def admin_set_daily_challenge():
    data = request.get_json(silent=True) or {}
    date = _int(data, 'date', required=False) or today_date_num()
    challenge = get_services().ledger.set_daily_challenge(
        _admin_caller(),
        date,
        _int(data, 'grid_size'),
        _int(data, 'steps'),
        _int(data, 'show_duration'),
        _int(data, 'interval_between'),
        _int(data, 'time_limit'),
        _int(data, 'max_tries', required=False),
    )
    return jsonify({'success': True, 'challenge': challenge.to_dict()}), 201


@ledger_api.route('/admin/daily-challenge/fund', methods=['POST'])
def admin_fund_daily_challenge():
    data = request.get_json(silent=True) or {}
    date = _int(data, 'date', required=False) or today_date_num()
    pool = get_services().ledger.fund_daily_challenge(_admin_caller(), date, _amount(data, 'amount'))
    return jsonify({'success': True, 'date': date, 'reward_pool': pool})


@ledger_api.route('/admin/reward-parameters', methods=['POST'])
def admin_reward_parameters():
    data = request.get_json(silent=True) or {}
    state = get_services().ledger.set_reward_parameters(
        _admin_caller(),
        base_reward_per_step=_amount(data, 'base_reward_per_step', required=False),
        time_bonus_multiplier=_int(data, 'time_bonus_multiplier', required=False),
        daily_reward_per_completion=_amount(data, 'daily_reward_per_completion', required=False),
        leaderboard_pool=_amount(data, 'leaderboard_pool', required=False),
    )
    return jsonify({'success': True, 'parameters': state.to_dict()})


@ledger_api.route('/admin/leaderboard/payout', methods=['POST'])
def admin_leaderboard_payout():
    services = get_services()
    caller = _admin_caller()
    if caller != services.settings.ledger_owner:
        # Reject before draining the accumulator
        raise NotAuthorized(caller, 'leaderboard_payout')
    report = services.payout_job.trigger()
    return jsonify({'success': report.error is None, 'report': report.to_dict()})


@ledger_api.route('/admin/emergency-withdraw', methods=['POST'])
def admin_emergency_withdraw():
    amount = get_services().ledger.emergency_withdraw(_admin_caller())
    return jsonify({'success': True, 'amount': amount, 'amount_display': format_units(amount)})
