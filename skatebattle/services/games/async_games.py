"""Cron sweeps for two-player by-mail games.

- expired turn deadline: the player on turn loses
- hard cap: a game still open after GAME_HARD_CAP_SEC goes to whoever is
  further from S.K.A.T.E.
- deadline warnings: nudge the player on turn shortly before the deadline
"""

import time
from typing import Callable, Dict, Optional, Tuple

from flask import current_app

from skatebattle import db
from skatebattle.models import AsyncGame
from skatebattle.services import notifications
from .idempotency import already_processed, deadline_key, generate_event_id, record_event

# game id -> epoch seconds of the last warning sent
_deadline_warnings_sent: Dict[str, float] = {}


def _other_player(game: AsyncGame, loser_id: Optional[str]) -> Optional[str]:
    return game.player2_id if loser_id == game.player1_id else game.player1_id


def stalled_game_loser(game: AsyncGame) -> str:
    """Closest to S.K.A.T.E. takes the loss.

    On equal letters the player on turn loses, or player 1 when nobody is on
    turn, so the outcome is always deterministic.
    """
    p1_count = len(game.player1_letters or '')
    p2_count = len(game.player2_letters or '')
    if p1_count > p2_count:
        return game.player1_id
    if p2_count > p1_count:
        return game.player2_id
    return game.current_turn or game.player1_id


def _forfeit_locked(
    operation: str,
    game_id: str,
    still_eligible: Callable[[AsyncGame], bool],
    pick_loser: Callable[[AsyncGame], Optional[str]],
    sequence_key: Callable[[AsyncGame], str],
    now: float,
) -> Optional[Tuple[AsyncGame, Optional[str], Optional[str]]]:
    """Forfeit one game in its own transaction; None when the candidate went stale."""
    try:
        game = (
            AsyncGame.query.filter_by(id=game_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if game is None or game.status != 'active' or not still_eligible(game):
            db.session.rollback()
            return None
        loser_id = pick_loser(game)
        event_id = generate_event_id('forfeit', loser_id, game.id, sequence_key(game))
        if already_processed(game.processed_event_ids, event_id):
            db.session.rollback()
            return None

        winner_id = _other_player(game, loser_id)
        game.status = 'forfeited'
        game.winner_id = winner_id
        game.completed_at = now
        game.updated_at = now
        game.processed_event_ids = record_event(
            game.processed_event_ids, event_id, int(current_app.config.get('MAX_PROCESSED_EVENTS', 100))
        )
        db.session.commit()
        return game, loser_id, winner_id
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[sweep-error] op={operation} game={game_id}")
        return None


def _notify_forfeit(game: AsyncGame, loser_id: Optional[str], winner_id: Optional[str]) -> None:
    payload = {'game_id': game.id, 'loser_id': loser_id, 'winner_id': winner_id}
    notifications.notify_all([game.player1_id, game.player2_id], 'game_forfeited_timeout', payload)


def _candidate_ids(query) -> list:
    ids = [g.id for g in query.all()]
    db.session.rollback()
    return ids


def forfeit_expired_games(now: Optional[float] = None) -> Dict[str, int]:
    now = now or time.time()
    try:
        candidates = _candidate_ids(AsyncGame.query.filter(
            AsyncGame.status == 'active',
            AsyncGame.deadline_at < now,
        ))
    except Exception:
        db.session.rollback()
        current_app.logger.exception("[sweep-error] sweep=expired_games")
        return {'forfeited': 0}

    forfeited = 0
    for game_id in candidates:
        outcome = _forfeit_locked(
            'forfeit expired game',
            game_id,
            lambda g: g.deadline_at is not None and g.deadline_at < now,
            lambda g: g.current_turn,
            lambda g: deadline_key(g.deadline_at),
            now,
        )
        if outcome is None:
            continue
        game, loser_id, winner_id = outcome
        _notify_forfeit(game, loser_id, winner_id)
        current_app.logger.info(f"[async-timeout] game={game_id} loser={loser_id} winner={winner_id}")
        forfeited += 1
    return {'forfeited': forfeited}


def forfeit_stalled_games(now: Optional[float] = None) -> Dict[str, int]:
    now = now or time.time()
    cutoff = now - int(current_app.config.get('GAME_HARD_CAP_SEC', 7 * 24 * 60 * 60))
    try:
        candidates = _candidate_ids(AsyncGame.query.filter(
            AsyncGame.status == 'active',
            AsyncGame.created_at < cutoff,
        ))
    except Exception:
        db.session.rollback()
        current_app.logger.exception("[sweep-error] sweep=stalled_games")
        return {'forfeited': 0}

    forfeited = 0
    for game_id in candidates:
        outcome = _forfeit_locked(
            'forfeit stalled game',
            game_id,
            lambda g: g.created_at < cutoff and bool(g.player1_id) and bool(g.player2_id),
            stalled_game_loser,
            lambda g: f"hard-cap-{g.created_at:.6f}",
            now,
        )
        if outcome is None:
            continue
        game, loser_id, winner_id = outcome
        _notify_forfeit(game, loser_id, winner_id)
        current_app.logger.info(
            f"[async-hard-cap] game={game_id} loser={loser_id} winner={winner_id} "
            f"p1_letters={game.player1_letters!r} p2_letters={game.player2_letters!r}"
        )
        forfeited += 1
    return {'forfeited': forfeited}


def notify_deadline_warnings(now: Optional[float] = None) -> Dict[str, int]:
    """Warn the player on turn when less than the warning window remains."""
    now = now or time.time()
    window = int(current_app.config.get('DEADLINE_WARNING_WINDOW_SEC', 3600))
    cooldown = int(current_app.config.get('DEADLINE_WARNING_COOLDOWN_SEC', 1800))
    try:
        urgent = AsyncGame.query.filter(
            AsyncGame.status == 'active',
            AsyncGame.deadline_at < now + window,
            AsyncGame.deadline_at > now,
        ).all()
        targets = [(g.id, g.current_turn, g.deadline_at) for g in urgent]
        db.session.rollback()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("[sweep-error] sweep=deadline_warnings")
        return {'notified': 0}

    notified = 0
    for game_id, player_id, deadline_at in targets:
        if not player_id:
            continue
        last = _deadline_warnings_sent.get(game_id)
        if last is not None and now - last < cooldown:
            continue
        notifications.notify(player_id, 'deadline_warning', {
            'game_id': game_id,
            'minutes_remaining': round((deadline_at - now) / 60),
        })
        _deadline_warnings_sent[game_id] = now
        notified += 1

    # Forget warnings older than one full turn
    turn_length = int(current_app.config.get('ASYNC_TURN_DEADLINE_SEC', 24 * 60 * 60))
    for game_id, sent_at in list(_deadline_warnings_sent.items()):
        if now - sent_at > turn_length:
            del _deadline_warnings_sent[game_id]
    return {'notified': notified}
