import time

import pytest

from skatebattle import db
from skatebattle.models import GameSession
from skatebattle.services.games import state
from skatebattle.services.games.idempotency import generate_event_id
from skatebattle.services.games.turns import is_eliminated


def ev(kind='test', actor='p', record='g'):
    return generate_event_id(kind, actor, record)


def _new_match(*player_ids, max_players=4):
    created = state.create_game(ev('create'), 'spot-1', player_ids[0], max_players)
    assert created.success
    game_id = created.game['id']
    for pid in player_ids[1:]:
        assert state.join_game(ev('join', pid), game_id, pid).success
    return game_id


def _set_players(game_id, players, **fields):
    game = db.session.get(GameSession, game_id)
    game.players = players
    for key, value in fields.items():
        setattr(game, key, value)
    db.session.commit()


def _letters(game, player_id):
    return next(p['letters'] for p in game['players'] if p['id'] == player_id)


def test_create_game_opens_waiting_match(flask_app):
    result = state.create_game('create-1', 'spot-1', 'p1', 4)
    assert result.success
    game = result.game
    assert game['status'] == 'waiting'
    assert game['max_players'] == 4
    assert [(p['id'], p['letters']) for p in game['players']] == [('p1', '')]
    assert game['processed_event_ids'] == ['create-1']


@pytest.mark.parametrize('requested, expected', [(1, 2), (9, 8), (None, 4), (3, 3)])
def test_create_game_clamps_max_players(flask_app, requested, expected):
    result = state.create_game(ev(), 'spot-1', 'p1', requested)
    assert result.game['max_players'] == expected


def test_second_player_starts_the_match(flask_app, sent):
    game_id = _new_match('p1')
    before = time.time()
    result = state.join_game(ev('join'), game_id, 'p2')
    assert result.success
    game = result.game
    assert game['status'] == 'active'
    assert game['current_turn_index'] == 0
    assert game['current_action'] == 'set'
    assert game['turn_deadline_at'] >= before + 60
    assert sent.kinds_for('p1') == ['game_started', 'your_turn']
    assert sent.kinds_for('p2') == ['game_started']


def test_set_phase_hands_turn_to_attempter(flask_app):
    game_id = _new_match('p1', 'p2')
    result = state.submit_trick(ev(), game_id, 'p1', 'Kickflip')
    assert result.success
    game = result.game
    assert game['current_action'] == 'attempt'
    assert game['current_trick'] == 'Kickflip'
    assert game['setter_id'] == 'p1'
    assert game['current_turn_index'] == 1


def test_pass_gives_attempter_a_letter(flask_app):
    game_id = _new_match('p1', 'p2')
    state.submit_trick(ev(), game_id, 'p1', 'Kickflip')
    result = state.pass_trick(ev(), game_id, 'p2')
    assert result.success
    assert result.letter_gained == 'S'
    assert result.is_eliminated is False
    assert _letters(result.game, 'p2') == 'S'
    # Rotation comes back to the setter, so the set moves on to p2
    assert result.game['current_action'] == 'set'
    assert result.game['current_turn_index'] == 1


def test_fifth_letter_ends_the_match(flask_app, sent):
    game_id = _new_match('p1', 'p2')
    seen = ['']
    result = None
    for _ in range(5):
        assert state.submit_trick(ev(), game_id, 'p1', 'Kickflip').success
        result = state.pass_trick(ev(), game_id, 'p2')
        assert result.success
        letters = _letters(result.game, 'p2')
        # Letters only ever grow as a prefix of SKATE
        assert letters.startswith(seen[-1]) and len(letters) == len(seen[-1]) + 1
        seen.append(letters)
        if result.game['status'] == 'completed':
            break
        # p2 sets, p1 lands it, set returns to p1
        assert state.submit_trick(ev(), game_id, 'p2', 'Heelflip').success
        assert state.submit_trick(ev(), game_id, 'p1', 'Heelflip').success

    assert seen[-2] == 'SKAT'
    assert result.letter_gained == 'SKATE'
    assert result.is_eliminated is True
    assert result.game['status'] == 'completed'
    assert result.game['winner_id'] == 'p1'
    assert result.game['end_reason'] == 'eliminated'
    assert [uid for uid, _ in sent.of_kind('game_completed')] == ['p1', 'p2']


def test_rotation_skips_eliminated_player(flask_app):
    game_id = _new_match('p1', 'p2')
    _set_players(game_id, [
        {'id': 'p1', 'letters': '', 'connected': True, 'disconnected_at': None},
        {'id': 'p2', 'letters': 'SKATE', 'connected': True, 'disconnected_at': None},
        {'id': 'p3', 'letters': '', 'connected': True, 'disconnected_at': None},
    ], max_players=3)
    result = state.submit_trick(ev(), game_id, 'p1', 'Tre Flip')
    assert result.success
    assert result.game['current_turn_index'] == 2
    assert result.game['current_action'] == 'attempt'


def test_three_player_round_rotates_setter(flask_app):
    game_id = _new_match('p1', 'p2')
    _set_players(game_id, [
        {'id': 'p1', 'letters': '', 'connected': True, 'disconnected_at': None},
        {'id': 'p2', 'letters': '', 'connected': True, 'disconnected_at': None},
        {'id': 'p3', 'letters': '', 'connected': True, 'disconnected_at': None},
    ], max_players=3)
    state.submit_trick(ev(), game_id, 'p1', 'Kickflip')
    result = state.submit_trick(ev(), game_id, 'p2', 'Kickflip')
    assert (result.game['current_turn_index'], result.game['current_action']) == (2, 'attempt')
    assert result.game['setter_id'] == 'p1'
    result = state.pass_trick(ev(), game_id, 'p3')
    assert (result.game['current_turn_index'], result.game['current_action']) == (1, 'set')
    assert result.game['current_trick'] is None
    assert result.game['setter_id'] is None


def test_elimination_in_three_player_match_keeps_it_running(flask_app):
    game_id = _new_match('p1', 'p2')
    _set_players(game_id, [
        {'id': 'p1', 'letters': '', 'connected': True, 'disconnected_at': None},
        {'id': 'p2', 'letters': 'SKAT', 'connected': True, 'disconnected_at': None},
        {'id': 'p3', 'letters': '', 'connected': True, 'disconnected_at': None},
    ], max_players=3)
    state.submit_trick(ev(), game_id, 'p1', 'Kickflip')
    result = state.pass_trick(ev(), game_id, 'p2')
    assert result.is_eliminated is True
    game = result.game
    assert game['status'] == 'active'
    assert (game['current_turn_index'], game['current_action']) == (2, 'attempt')
    current = game['players'][game['current_turn_index']]
    assert not is_eliminated(current['letters'])


def test_join_errors(flask_app):
    assert state.join_game(ev(), 'missing', 'p2').error == 'Game not found'

    game_id = _new_match('p1')
    assert state.join_game(ev(), game_id, 'p1').error == 'Already in game'

    full_id = _new_match('p1', 'p2', max_players=2)
    assert state.join_game(ev(), full_id, 'p3').error == 'Game is full'

    started_id = _new_match('p1', 'p2', max_players=4)
    assert state.join_game(ev(), started_id, 'p3').error == 'Game has already started'


def test_turn_and_phase_errors(flask_app):
    waiting_id = _new_match('p1')
    assert state.submit_trick(ev(), waiting_id, 'p1', 'Ollie').error == 'Game is not active'

    game_id = _new_match('p1', 'p2')
    assert state.submit_trick(ev(), game_id, 'p2', 'Ollie').error == 'Not your turn'
    assert state.pass_trick(ev(), game_id, 'p1').error == 'Can only pass during attempt phase'

    state.submit_trick(ev(), game_id, 'p1', 'Ollie')
    assert state.pass_trick(ev(), game_id, 'p1').error == 'Not your turn'
    assert state.submit_trick(ev(), 'missing', 'p1', 'Ollie').error == 'Game not found'


def test_failed_validation_does_not_mutate(flask_app):
    game_id = _new_match('p1', 'p2')
    before = state.get_game_state(game_id)
    result = state.submit_trick('bad-1', game_id, 'p2', 'Ollie')
    assert not result.success
    after = state.get_game_state(game_id)
    assert after == before
    assert 'bad-1' not in after['processed_event_ids']


def test_replayed_event_is_applied_once(flask_app, sent):
    game_id = _new_match('p1', 'p2')
    first = state.submit_trick('trick-1', game_id, 'p1', 'Kickflip')
    notified = len(sent.sent)
    second = state.submit_trick('trick-1', game_id, 'p1', 'Kickflip')
    assert first.success and not first.already_processed
    assert second.success and second.already_processed
    assert second.game == first.game
    assert len(sent.sent) == notified


def test_replayed_join_reports_already_processed(flask_app):
    game_id = _new_match('p1')
    state.join_game('join-p2', game_id, 'p2')
    again = state.join_game('join-p2', game_id, 'p2')
    assert again.success
    assert again.already_processed
    assert again.to_dict()['already_processed'] is True


def test_processed_event_log_is_bounded(flask_app):
    flask_app.config['MAX_PROCESSED_EVENTS'] = 3
    game_id = _new_match('p1', 'p2')
    # p1 sets, p2 lands, p2 sets, p1 lands
    for i, actor in enumerate(['p1', 'p2', 'p2', 'p1']):
        assert state.submit_trick(f'e{i}', game_id, actor, 'Ollie').success
    assert state.get_game_state(game_id)['processed_event_ids'] == ['e1', 'e2', 'e3']


def test_disconnect_pauses_and_reconnect_resumes(flask_app, sent):
    game_id = _new_match('p1', 'p2')
    result = state.handle_disconnect(ev(), game_id, 'p2')
    assert result.success
    game = result.game
    assert game['status'] == 'paused'
    assert game['paused_at'] is not None
    p2 = game['players'][1]
    assert p2['connected'] is False
    assert p2['disconnected_at'] is not None

    sent.sent.clear()
    before = time.time()
    result = state.handle_reconnect(ev(), game_id, 'p2')
    game = result.game
    assert game['status'] == 'active'
    assert game['paused_at'] is None
    assert game['players'][1]['connected'] is True
    assert game['players'][1]['disconnected_at'] is None
    assert game['turn_deadline_at'] >= before + 60
    assert sent.kinds_for('p1') == ['your_turn']


def test_match_stays_paused_until_everyone_is_back(flask_app):
    game_id = _new_match('p1', 'p2')
    state.handle_disconnect(ev(), game_id, 'p1')
    first = state.handle_disconnect(ev(), game_id, 'p2').game
    again = state.handle_disconnect(ev(), game_id, 'p2').game
    # A repeated disconnect keeps the first timestamp
    assert again['players'][1]['disconnected_at'] == first['players'][1]['disconnected_at']

    result = state.handle_reconnect(ev(), game_id, 'p1')
    assert result.game['status'] == 'paused'
    result = state.handle_reconnect(ev(), game_id, 'p2')
    assert result.game['status'] == 'active'


def test_disconnect_in_waiting_match_does_not_pause(flask_app):
    game_id = _new_match('p1')
    result = state.handle_disconnect(ev(), game_id, 'p1')
    assert result.success
    assert result.game['status'] == 'waiting'


def test_presence_errors(flask_app):
    game_id = _new_match('p1', 'p2')
    assert state.handle_disconnect(ev(), game_id, 'p9').error == 'Player not in game'
    assert state.handle_reconnect(ev(), game_id, 'p9').error == 'Player not in game'
    assert state.handle_disconnect(ev(), 'missing', 'p1').error == 'Game not found'
    assert state.handle_reconnect(ev(), 'missing', 'p1').error == 'Game not found'


def test_voluntary_forfeit_declares_other_player_winner(flask_app, sent):
    game_id = _new_match('p1', 'p2')
    result = state.forfeit_game(ev(), game_id, 'p1')
    assert result.success
    game = result.game
    assert game['status'] == 'completed'
    assert game['winner_id'] == 'p2'
    assert game['end_reason'] == 'voluntary'
    assert game['turn_deadline_at'] is None
    assert [uid for uid, _ in sent.of_kind('game_forfeited')] == ['p1', 'p2']


def test_forfeit_errors(flask_app):
    game_id = _new_match('p1', 'p2')
    assert state.forfeit_game(ev(), game_id, 'p9').error == 'Player not in game'
    state.forfeit_game(ev(), game_id, 'p1')
    assert state.forfeit_game(ev(), game_id, 'p2').error == 'Game already completed'
    assert state.forfeit_game(ev(), 'missing', 'p1').error == 'Game not found'
    with pytest.raises(ValueError):
        state.forfeit_game(ev(), game_id, 'p1', reason='bored')


def test_storage_failure_returns_generic_message(flask_app, monkeypatch):
    game_id = _new_match('p1', 'p2')

    def broken(_game_id):
        raise RuntimeError('connection reset')

    monkeypatch.setattr(state, 'lock_game', broken)
    result = state.submit_trick(ev(), game_id, 'p1', 'Ollie')
    assert not result.success
    assert result.error == 'Failed to submit trick'
    assert 'connection reset' not in result.to_dict()['error']


def test_delete_game(flask_app):
    game_id = _new_match('p1')
    assert state.delete_game(game_id)
    assert state.get_game_state(game_id) is None
