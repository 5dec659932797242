from flask import Blueprint, jsonify, request

from skatebattle.services.games import errors, state
from skatebattle.services.games.idempotency import generate_event_id


games = Blueprint('games', __name__)


def respond(result, success_status: int = 200):
    """Translate a state machine result into a JSON response."""
    if result.success:
        return jsonify(result.to_dict()), success_status
    if result.error in errors.NOT_FOUND_ERRORS:
        return jsonify(result.to_dict()), 404
    if result.error and result.error.startswith('Failed to'):
        return jsonify(result.to_dict()), 500
    return jsonify(result.to_dict()), 400


def _event_id(data: dict, kind: str, player_id: str, game_id: str) -> str:
    # Clients retrying a request resend the same event_id
    return data.get('event_id') or generate_event_id(kind, player_id, game_id)


@games.route('/create', methods=['POST'])
def create_game():
    data = request.get_json(silent=True) or {}
    spot_id = data.get('spot_id')
    player_id = data.get('player_id')
    if not all([spot_id, player_id]):
        return jsonify({'error': 'spot_id and player_id are required'}), 400

    max_players = data.get('max_players')
    try:
        max_players = int(max_players) if max_players is not None else None
    except (TypeError, ValueError):
        return jsonify({'error': 'max_players must be an integer'}), 400

    event_id = data.get('event_id') or generate_event_id('create', player_id, spot_id)
    return respond(state.create_game(event_id, spot_id, player_id, max_players), 201)


@games.route('/<string:game_id>/join', methods=['POST'])
def join_game(game_id):
    data = request.get_json(silent=True) or {}
    player_id = data.get('player_id')
    if not player_id:
        return jsonify({'error': 'player_id is required'}), 400
    return respond(state.join_game(_event_id(data, 'join', player_id, game_id), game_id, player_id))


@games.route('/<string:game_id>/trick', methods=['POST'])
def submit_trick(game_id):
    data = request.get_json(silent=True) or {}
    player_id = data.get('player_id')
    trick_name = (data.get('trick_name') or '').strip()
    if not all([player_id, trick_name]):
        return jsonify({'error': 'player_id and trick_name are required'}), 400
    event_id = _event_id(data, 'trick', player_id, game_id)
    return respond(state.submit_trick(event_id, game_id, player_id, trick_name))


@games.route('/<string:game_id>/pass', methods=['POST'])
def pass_trick(game_id):
    data = request.get_json(silent=True) or {}
    player_id = data.get('player_id')
    if not player_id:
        return jsonify({'error': 'player_id is required'}), 400
    return respond(state.pass_trick(_event_id(data, 'pass', player_id, game_id), game_id, player_id))


@games.route('/<string:game_id>/forfeit', methods=['POST'])
def forfeit_game(game_id):
    data = request.get_json(silent=True) or {}
    player_id = data.get('player_id')
    if not player_id:
        return jsonify({'error': 'player_id is required'}), 400
    event_id = _event_id(data, 'forfeit', player_id, game_id)
    # Other forfeit reasons are reserved for the sweeps
    return respond(state.forfeit_game(event_id, game_id, player_id, 'voluntary'))


@games.route('/<string:game_id>/state', methods=['GET'])
def get_game_state(game_id):
    snapshot = state.get_game_state(game_id)
    if snapshot is None:
        return jsonify({'error': errors.GAME_NOT_FOUND}), 404
    return jsonify(snapshot)
