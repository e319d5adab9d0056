from flask_socketio import join_room, leave_room, emit
from memorix import socketio


def player_room(player: str) -> str:
    return f"player:{player}"


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_player(data):
    """Subscribe this socket to a player's ledger signals (level ups, payouts...)."""
    player = (data or {}).get('player')
    if not player:
        emit('error', {'message': 'player is required'})
        return
    room = player_room(player)
    join_room(room)
    emit('joined', {'room': room})


def handle_leave_player(data):
    player = (data or {}).get('player')
    if not player:
        emit('error', {'message': 'player is required'})
        return
    room = player_room(player)
    leave_room(room)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('join_player', handle_join_player, namespace='/ws')
    socketio.on_event('leave_player', handle_leave_player, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('join_player', handle_join_player, namespace='/')
        socketio.on_event('leave_player', handle_leave_player, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
