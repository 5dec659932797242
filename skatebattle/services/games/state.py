"""Live S.K.A.T.E. match state machine.

Every mutating operation runs through :func:`run_transition`, which locks the
match row (``SELECT ... FOR UPDATE``), re-reads it from the database,
checks the idempotency log against that fresh copy, applies the change and
commits. Notifications go out only after the commit.

Operations never raise; failures come back as ``TransitionResult`` with
``success=False`` and one of the messages in :mod:`.errors`.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from flask import current_app

from skatebattle import db
from skatebattle.models import GameSession
from skatebattle.services import notifications
from . import errors
from .idempotency import already_processed, record_event
from .turns import (
    TurnRotationError,
    active_players,
    advance_after_attempt,
    apply_miss,
    is_eliminated,
    next_active_index,
    player_index,
    remaining_active_players,
)

TERMINAL_STATUSES = ('completed', 'forfeited')
FORFEIT_REASONS = ('voluntary', 'disconnect_timeout', 'turn_timeout')
MIN_MAX_PLAYERS = 2
MAX_MAX_PLAYERS = 8

# Returned by sweep transitions whose candidate changed since it was selected.
STALE_CANDIDATE = 'Stale candidate'

Notification = Tuple[Optional[str], str, Dict[str, Any]]


@dataclass
class TransitionResult:
    success: bool
    game: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    already_processed: bool = False
    letter_gained: Optional[str] = None
    is_eliminated: Optional[bool] = None
    notifications: List[Notification] = field(default_factory=list, repr=False)

    @classmethod
    def fail(cls, error: str) -> 'TransitionResult':
        return cls(success=False, error=error)

    @property
    def applied(self) -> bool:
        return self.success and not self.already_processed

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'success': self.success}
        if self.game is not None:
            data['game'] = self.game
        if self.error is not None:
            data['error'] = self.error
        if self.already_processed:
            data['already_processed'] = True
        if self.letter_gained is not None:
            data['letter_gained'] = self.letter_gained
        if self.is_eliminated is not None:
            data['is_eliminated'] = self.is_eliminated
        return data


# ---- helpers shared with the timeout sweeps ----

def _config_int(key: str, default: int) -> int:
    return int(current_app.config.get(key, default))


def next_turn_deadline(now: Optional[float] = None) -> float:
    return (now or time.time()) + _config_int('TURN_TIMEOUT_SEC', 60)


def lock_game(game_id: str) -> Optional[GameSession]:
    """Fetch the match row with a row lock, bypassing any copy already in the session."""
    return (
        GameSession.query.filter_by(id=game_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def copy_players(game: GameSession) -> List[Dict[str, Any]]:
    return [dict(p) for p in (game.players or [])]


def current_player(game: GameSession) -> Optional[Dict[str, Any]]:
    players = game.players or []
    if 0 <= game.current_turn_index < len(players):
        return players[game.current_turn_index]
    return None


def move_turn(game: GameSession, turn_index: int, action: str) -> None:
    game.current_turn_index = turn_index
    game.current_action = action
    if action == 'set':
        game.current_trick = None
        game.setter_id = None
    game.turn_deadline_at = next_turn_deadline()


def your_turn(game: GameSession) -> List[Notification]:
    player = current_player(game)
    if not player:
        return []
    return [(player.get('id'), 'your_turn', {'game_id': game.id, 'action': game.current_action})]


def to_every_player(game: GameSession, kind: str, payload: Dict[str, Any]) -> List[Notification]:
    return [(p.get('id'), kind, payload) for p in (game.players or [])]


def _pick_forfeit_winner(players: List[Dict[str, Any]], loser_id: Optional[str]) -> Optional[str]:
    candidates = [p for p in players if p.get('id') != loser_id and not is_eliminated(p.get('letters'))]
    connected = [p for p in candidates if p.get('connected', True)]
    chosen = connected or candidates
    return chosen[0].get('id') if chosen else None


def apply_forfeit(game: GameSession, loser_id: Optional[str], reason: str) -> List[Notification]:
    """End the match against ``loser_id``; returns the notifications to send after commit."""
    winner_id = _pick_forfeit_winner(game.players or [], loser_id)
    game.status = 'completed'
    game.winner_id = winner_id
    game.end_reason = reason
    game.turn_deadline_at = None
    game.paused_at = None
    return to_every_player(game, 'game_forfeited', {
        'game_id': game.id,
        'loser_id': loser_id,
        'winner_id': winner_id,
        'reason': reason,
    })


def run_transition(
    operation: str,
    game_id: str,
    actor_id: Optional[str],
    event_id: Union[str, Callable[[GameSession], str]],
    apply: Callable[[GameSession], TransitionResult],
) -> TransitionResult:
    """Apply ``apply`` to a freshly locked match inside one transaction.

    ``event_id`` may be a callable computing the idempotency key from the
    locked row; sweeps use this to derive keys from the current deadline.
    """
    try:
        game = lock_game(game_id)
        if game is None:
            db.session.rollback()
            return TransitionResult.fail(errors.GAME_NOT_FOUND)

        key = event_id(game) if callable(event_id) else event_id
        if already_processed(game.processed_event_ids, key):
            snapshot = game.to_dict()
            db.session.rollback()
            return TransitionResult(success=True, game=snapshot, already_processed=True)

        result = apply(game)
        if not result.success:
            db.session.rollback()
            return result

        game.processed_event_ids = record_event(
            game.processed_event_ids, key, _config_int('MAX_PROCESSED_EVENTS', 100)
        )
        game.updated_at = time.time()
        db.session.commit()
        result.game = game.to_dict()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[game-error] op={operation} game={game_id} player={actor_id}")
        return TransitionResult.fail(errors.failed_to(operation))

    for user_id, kind, payload in result.notifications:
        notifications.notify(user_id, kind, payload)
    return result


# ---- operations ----

def create_game(event_id: str, spot_id: str, creator_id: str, max_players: Optional[int] = None) -> TransitionResult:
    """Open a waiting match with the creator as its only player."""
    if max_players is None:
        max_players = _config_int('DEFAULT_MAX_PLAYERS', 4)
    max_players = max(MIN_MAX_PLAYERS, min(int(max_players), MAX_MAX_PLAYERS))
    try:
        now = time.time()
        game = GameSession(
            spot_id=spot_id,
            creator_id=creator_id,
            players=[{'id': creator_id, 'letters': '', 'connected': True, 'disconnected_at': None}],
            max_players=max_players,
            current_turn_index=0,
            current_action='set',
            status='waiting',
            processed_event_ids=[event_id],
            created_at=now,
            updated_at=now,
        )
        db.session.add(game)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[game-error] op=create game spot={spot_id} player={creator_id}")
        return TransitionResult.fail(errors.failed_to('create game'))

    current_app.logger.info(f"[game-create] game={game.id} creator={creator_id} spot={spot_id} max_players={max_players}")
    return TransitionResult(success=True, game=game.to_dict())


def join_game(event_id: str, game_id: str, player_id: str) -> TransitionResult:
    def apply(game: GameSession) -> TransitionResult:
        players = copy_players(game)
        if player_index(players, player_id) is not None:
            return TransitionResult.fail(errors.ALREADY_IN_GAME)
        if len(players) >= game.max_players:
            return TransitionResult.fail(errors.GAME_FULL)
        if game.status != 'waiting':
            return TransitionResult.fail(errors.GAME_ALREADY_STARTED)

        players.append({'id': player_id, 'letters': '', 'connected': True, 'disconnected_at': None})
        game.players = players

        start_at = max(MIN_MAX_PLAYERS, min(_config_int('MIN_PLAYERS', 2), game.max_players))
        if len(players) < start_at:
            return TransitionResult(success=True)

        game.status = 'active'
        move_turn(game, 0, 'set')
        notes = to_every_player(game, 'game_started', {'game_id': game.id})
        return TransitionResult(success=True, notifications=notes + your_turn(game))

    result = run_transition('join game', game_id, player_id, event_id, apply)
    if result.applied:
        current_app.logger.info(f"[game-join] game={game_id} player={player_id} status={result.game['status']}")
    return result


def submit_trick(event_id: str, game_id: str, player_id: str, trick_name: str) -> TransitionResult:
    """Set a trick (set phase) or land the current one (attempt phase)."""
    def apply(game: GameSession) -> TransitionResult:
        if game.status != 'active':
            return TransitionResult.fail(errors.GAME_NOT_ACTIVE)
        actor = current_player(game)
        if not actor or actor.get('id') != player_id:
            return TransitionResult.fail(errors.NOT_YOUR_TURN)

        players = game.players or []
        if game.current_action == 'set':
            attempter = next_active_index(players, game.current_turn_index)
            if attempter is None:
                raise TurnRotationError(f'no attempter left in game {game.id}')
            move_turn(game, attempter, 'attempt')
            game.current_trick = trick_name
            game.setter_id = player_id
        else:
            turn_index, action = advance_after_attempt(players, game.current_turn_index, game.setter_id)
            move_turn(game, turn_index, action)
        return TransitionResult(success=True, notifications=your_turn(game))

    result = run_transition('submit trick', game_id, player_id, event_id, apply)
    if result.applied:
        current_app.logger.info(f"[game-trick] game={game_id} player={player_id} trick={trick_name!r}")
    return result


def pass_trick(event_id: str, game_id: str, player_id: str) -> TransitionResult:
    """The attempter bails: take a letter, then either end the match or move on."""
    def apply(game: GameSession) -> TransitionResult:
        if game.status != 'active':
            return TransitionResult.fail(errors.GAME_NOT_ACTIVE)
        if game.current_action != 'attempt':
            return TransitionResult.fail(errors.PASS_ONLY_DURING_ATTEMPT)
        actor = current_player(game)
        if not actor or actor.get('id') != player_id:
            return TransitionResult.fail(errors.NOT_YOUR_TURN)

        players = copy_players(game)
        letters = apply_miss(players[game.current_turn_index].get('letters'))
        players[game.current_turn_index]['letters'] = letters
        game.players = players

        if remaining_active_players(players) == 1:
            winner_id = active_players(players)[0].get('id')
            game.status = 'completed'
            game.winner_id = winner_id
            game.end_reason = 'eliminated'
            game.turn_deadline_at = None
            notes = to_every_player(game, 'game_completed', {'game_id': game.id, 'winner_id': winner_id})
        else:
            turn_index, action = advance_after_attempt(players, game.current_turn_index, game.setter_id)
            move_turn(game, turn_index, action)
            notes = your_turn(game)

        return TransitionResult(
            success=True,
            letter_gained=letters,
            is_eliminated=is_eliminated(letters),
            notifications=notes,
        )

    result = run_transition('pass trick', game_id, player_id, event_id, apply)
    if result.applied:
        current_app.logger.info(f"[game-pass] game={game_id} player={player_id} letters={result.letter_gained}")
    return result


def handle_disconnect(event_id: str, game_id: str, player_id: str) -> TransitionResult:
    def apply(game: GameSession) -> TransitionResult:
        players = copy_players(game)
        idx = player_index(players, player_id)
        if idx is None:
            return TransitionResult.fail(errors.PLAYER_NOT_IN_GAME)
        if game.status not in ('active', 'paused'):
            return TransitionResult(success=True)

        now = time.time()
        if players[idx].get('connected', True) or not players[idx].get('disconnected_at'):
            players[idx]['disconnected_at'] = now
        players[idx]['connected'] = False
        game.players = players
        if game.status == 'active':
            game.status = 'paused'
            game.paused_at = now
        return TransitionResult(success=True)

    result = run_transition('handle disconnect', game_id, player_id, event_id, apply)
    if result.applied:
        current_app.logger.info(f"[game-disconnect] game={game_id} player={player_id} status={result.game['status']}")
    return result


def handle_reconnect(event_id: str, game_id: str, player_id: str) -> TransitionResult:
    def apply(game: GameSession) -> TransitionResult:
        players = copy_players(game)
        idx = player_index(players, player_id)
        if idx is None:
            return TransitionResult.fail(errors.PLAYER_NOT_IN_GAME)

        players[idx]['connected'] = True
        players[idx]['disconnected_at'] = None
        game.players = players

        if not all(p.get('connected', True) for p in players):
            return TransitionResult(success=True)
        game.paused_at = None
        if game.status != 'paused':
            return TransitionResult(success=True)
        game.status = 'active'
        game.turn_deadline_at = next_turn_deadline()
        return TransitionResult(success=True, notifications=your_turn(game))

    result = run_transition('handle reconnect', game_id, player_id, event_id, apply)
    if result.applied:
        current_app.logger.info(f"[game-reconnect] game={game_id} player={player_id} status={result.game['status']}")
    return result


def forfeit_game(event_id: str, game_id: str, player_id: str, reason: str = 'voluntary') -> TransitionResult:
    if reason not in FORFEIT_REASONS:
        raise ValueError(f'unknown forfeit reason: {reason}')

    def apply(game: GameSession) -> TransitionResult:
        if game.status in TERMINAL_STATUSES:
            return TransitionResult.fail(errors.GAME_ALREADY_COMPLETED)
        if player_index(game.players or [], player_id) is None:
            return TransitionResult.fail(errors.PLAYER_NOT_IN_GAME)
        return TransitionResult(success=True, notifications=apply_forfeit(game, player_id, reason))

    result = run_transition('forfeit game', game_id, player_id, event_id, apply)
    if result.applied:
        current_app.logger.info(
            f"[game-forfeit] game={game_id} player={player_id} reason={reason} winner={result.game['winner_id']}"
        )
    return result


def get_game_state(game_id: str) -> Optional[Dict[str, Any]]:
    try:
        game = GameSession.query.filter_by(id=game_id).first()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[game-error] op=get game state game={game_id}")
        return None
    return game.to_dict() if game else None


def delete_game(game_id: str) -> bool:
    try:
        GameSession.query.filter_by(id=game_id).delete()
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[game-error] op=delete game game={game_id}")
        return False
    current_app.logger.info(f"[game-delete] game={game_id}")
    return True
