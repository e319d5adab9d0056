from flask import Blueprint, jsonify
from memorix.services import get_services

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Memorix game server is running'})

@main.route('/api/health')
def health():
    services = get_services()
    hour, minute = services.settings.reset_time
    return jsonify({
        'success': True,
        'status': 'healthy',
        'active_rounds': len(services.engine),
        'leaderboard_next_reset': f'Daily at {hour:02d}:{minute:02d} UTC',
    })

@main.route('/api/config')
def game_config():
    """Client-facing game parameters (no secrets)."""
    settings = get_services().settings
    curve = settings.curve
    return jsonify({
        'success': True,
        'config': {
            'infinite_mode': {
                'base_difficulty': {
                    'grid_size': curve.base_grid_size,
                    'steps': curve.base_steps,
                    'show_duration': curve.base_show_duration,
                    'interval_between': curve.base_interval,
                    'time_limit': curve.base_time_limit,
                },
                'max_grid_size': curve.max_grid_size,
            },
            'daily_challenge': {'max_tries': settings.daily.max_tries},
            'leaderboard': {
                'top_players': len(settings.rank_weights),
                'rank_weights': list(settings.rank_weights),
            },
        }
    })
