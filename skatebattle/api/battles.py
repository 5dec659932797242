from flask import Blueprint, jsonify, request

from skatebattle.api.games import respond
from skatebattle.models import Battle
from skatebattle.services.battles import voting
from skatebattle.services.games import errors
from skatebattle.services.games.idempotency import generate_event_id


battles = Blueprint('battles', __name__)


@battles.route('/<string:battle_id>/voting/start', methods=['POST'])
def start_voting(battle_id):
    data = request.get_json(silent=True) or {}
    creator_id = data.get('creator_id')
    opponent_id = data.get('opponent_id')
    if not (creator_id and opponent_id):
        # Fall back to the battle's own participants
        battle = Battle.query.filter_by(id=battle_id).first()
        if battle is None:
            return jsonify({'success': False, 'error': errors.BATTLE_NOT_FOUND}), 404
        creator_id, opponent_id = battle.creator_id, battle.opponent_id
    if not opponent_id:
        return jsonify({'error': 'Battle has no opponent yet'}), 400

    event_id = data.get('event_id') or generate_event_id('voting-start', creator_id, battle_id)
    return respond(voting.initialize_voting(event_id, battle_id, creator_id, opponent_id), 201)


@battles.route('/<string:battle_id>/vote', methods=['POST'])
def cast_vote(battle_id):
    data = request.get_json(silent=True) or {}
    player_id = data.get('player_id')
    vote = data.get('vote')
    if not all([player_id, vote]):
        return jsonify({'error': 'player_id and vote are required'}), 400
    if vote not in voting.VOTE_CHOICES:
        return jsonify({'error': f"vote must be one of {', '.join(voting.VOTE_CHOICES)}"}), 400

    event_id = data.get('event_id') or generate_event_id('vote', player_id, battle_id)
    return respond(voting.cast_vote(event_id, battle_id, player_id, vote))


@battles.route('/<string:battle_id>/vote-state', methods=['GET'])
def get_vote_state(battle_id):
    snapshot = voting.get_battle_vote_state(battle_id)
    if snapshot is None:
        return jsonify({'error': errors.BATTLE_NOT_FOUND}), 404
    return jsonify(snapshot)
