from typing import Any, Dict, Tuple

from flask import current_app, request
from flask_socketio import emit, join_room, leave_room

from skatebattle import socketio
from skatebattle.services.games import state
from skatebattle.services.games.idempotency import generate_event_id
from skatebattle.services.notifications import user_room

# sid -> {'game_id', 'player_id'}
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}
# (game_id, player_id) -> number of open sockets
_presence: Dict[Tuple[str, str], int] = {}


def _get_sid() -> str:
    return request.sid  # type: ignore[attr-defined]


def game_room(game_id: str) -> str:
    return f"game:{game_id}"


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def _release(ctx: Dict[str, Any]) -> bool:
    """Drop one socket for the player; True when it was their last one."""
    key = (ctx['game_id'], ctx['player_id'])
    remaining = _presence.get(key, 0) - 1
    if remaining > 0:
        _presence[key] = remaining
        return False
    _presence.pop(key, None)
    return True


def handle_disconnect(*args):
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx or not _release(ctx):
        return
    game_id, player_id = ctx['game_id'], ctx['player_id']
    event_id = generate_event_id('disconnect', player_id, game_id)
    result = state.handle_disconnect(event_id, game_id, player_id)
    if result.success:
        socketio.emit('state_update', {'game_id': game_id}, to=game_room(game_id), namespace='/ws')
    else:
        current_app.logger.info(f"[socket-disconnect] game={game_id} player={player_id} error={result.error}")


def handle_join_game(data):
    game_id = (data or {}).get('game_id')
    player_id = (data or {}).get('player_id')
    if not all([game_id, player_id]):
        emit('error', {'message': 'game_id and player_id are required'})
        return

    snapshot = state.get_game_state(game_id)
    if snapshot is None:
        emit('error', {'message': 'Game not found'})
        return

    sid = _get_sid()
    previous = _sid_to_ctx.get(sid)
    if previous != {'game_id': game_id, 'player_id': player_id}:
        if previous:
            _release(previous)
        _sid_to_ctx[sid] = {'game_id': game_id, 'player_id': player_id}
        key = (game_id, player_id)
        _presence[key] = _presence.get(key, 0) + 1

    join_room(game_room(game_id))
    join_room(user_room(player_id))

    me = next((p for p in snapshot.get('players') or [] if p.get('id') == player_id), None)
    if me and not me.get('connected', True):
        event_id = generate_event_id('reconnect', player_id, game_id)
        result = state.handle_reconnect(event_id, game_id, player_id)
        if result.success:
            snapshot = result.game
            socketio.emit('state_update', {'game_id': game_id}, to=game_room(game_id), namespace='/ws')

    emit('joined', {'room': game_room(game_id), 'game': snapshot})


def handle_leave_game(data):
    game_id = (data or {}).get('game_id')
    if not game_id:
        emit('error', {'message': 'game_id is required'})
        return
    room = game_room(game_id)
    leave_room(room)
    # Presence is kept until the socket itself closes
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = [
        ('connect', handle_connect),
        ('disconnect', handle_disconnect),
        ('join_game', handle_join_game),
        ('leave_game', handle_leave_game),
        ('ping', handle_ping),
    ]
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        for event, handler in handlers:
            socketio.on_event(event, handler, namespace=namespace)
