"""Deadline sweeps for live matches.

Candidates are selected outside any transaction and may be stale by the time
they are handled. Each one is pushed through ``run_transition`` on its own,
which re-reads and re-validates the row under lock before writing, so a
failure or a lost race on one match never affects the others.
"""

import time
from typing import Dict, List, Optional, Tuple

from flask import current_app

from skatebattle import db
from skatebattle.models import GameSession
from .idempotency import deadline_key, generate_event_id
from .state import (
    STALE_CANDIDATE,
    TransitionResult,
    apply_forfeit,
    current_player,
    move_turn,
    run_transition,
    your_turn,
)
from .turns import advance_after_attempt


def _expire_turn(game_id: str, now: float) -> TransitionResult:
    def event_for(game: GameSession) -> str:
        player = current_player(game) or {}
        return generate_event_id('timeout', player.get('id'), game.id, deadline_key(game.turn_deadline_at or 0.0))

    def apply(game: GameSession) -> TransitionResult:
        if game.status != 'active' or game.turn_deadline_at is None or game.turn_deadline_at >= now:
            return TransitionResult.fail(STALE_CANDIDATE)
        player = current_player(game)
        if not player:
            return TransitionResult.fail(STALE_CANDIDATE)

        if game.current_action == 'attempt':
            # The attempter loses the chance; no letter.
            turn_index, action = advance_after_attempt(game.players, game.current_turn_index, game.setter_id)
            move_turn(game, turn_index, action)
            return TransitionResult(success=True, notifications=your_turn(game))

        # A setter who never sets forfeits the match.
        return TransitionResult(success=True, notifications=apply_forfeit(game, player.get('id'), 'turn_timeout'))

    return run_transition('process turn timeout', game_id, None, event_for, apply)


def _expire_disconnect(game_id: str, player_id: str, disconnected_at: float) -> TransitionResult:
    event_id = generate_event_id('disconnect_timeout', player_id, game_id, f"disconnected-{disconnected_at:.6f}")

    def apply(game: GameSession) -> TransitionResult:
        if game.status != 'paused':
            return TransitionResult.fail(STALE_CANDIDATE)
        fresh = next((p for p in game.players or [] if p.get('id') == player_id), None)
        if not fresh or fresh.get('connected', True) or fresh.get('disconnected_at') != disconnected_at:
            return TransitionResult.fail(STALE_CANDIDATE)
        return TransitionResult(success=True, notifications=apply_forfeit(game, player_id, 'disconnect_timeout'))

    return run_transition('process disconnect timeout', game_id, player_id, event_id, apply)


def _expired_disconnects(game: GameSession, now: float, window: int) -> List[Tuple[str, float]]:
    expired = []
    for p in game.players or []:
        disconnected_at = p.get('disconnected_at')
        if not p.get('connected', True) and disconnected_at and now - disconnected_at > window:
            expired.append((p.get('id'), disconnected_at))
    return expired


def process_turn_timeouts(now: Optional[float] = None) -> Dict[str, int]:
    now = now or time.time()
    counts = {'turn_rotations': 0, 'turn_forfeits': 0}
    try:
        candidates = [
            g.id for g in GameSession.query.filter(
                GameSession.status == 'active',
                GameSession.turn_deadline_at < now,
            ).all()
        ]
        db.session.rollback()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("[sweep-error] sweep=turn_timeouts")
        return counts

    for game_id in candidates:
        result = _expire_turn(game_id, now)
        if not result.applied:
            continue
        if result.game['status'] == 'completed':
            counts['turn_forfeits'] += 1
            current_app.logger.info(f"[timeout-forfeit] game={game_id} winner={result.game['winner_id']}")
        else:
            counts['turn_rotations'] += 1
            current_app.logger.info(f"[timeout-rotate] game={game_id} turn={result.game['current_turn_index']}")
    return counts


def process_disconnect_timeouts(now: Optional[float] = None) -> Dict[str, int]:
    now = now or time.time()
    window = int(current_app.config.get('RECONNECT_WINDOW_SEC', 120))
    counts = {'disconnect_forfeits': 0}
    try:
        candidates = [
            (g.id, _expired_disconnects(g, now, window))
            for g in GameSession.query.filter(GameSession.status == 'paused').all()
        ]
        db.session.rollback()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("[sweep-error] sweep=disconnect_timeouts")
        return counts

    for game_id, expired in candidates:
        for player_id, disconnected_at in expired:
            result = _expire_disconnect(game_id, player_id, disconnected_at)
            if result.applied:
                counts['disconnect_forfeits'] += 1
                current_app.logger.info(
                    f"[disconnect-forfeit] game={game_id} player={player_id} winner={result.game['winner_id']}"
                )
                break
    return counts


def process_timeouts(now: Optional[float] = None) -> Dict[str, int]:
    """Run both live-match sweeps once and return the aggregate counts."""
    counts = process_turn_timeouts(now)
    counts.update(process_disconnect_timeouts(now))
    return counts
