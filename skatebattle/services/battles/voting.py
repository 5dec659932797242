"""Battle result voting.

Both participants vote on the other's trick. A ``clean`` vote concedes a
point to the opponent; higher score wins and a tie goes to the creator.

Battles created before ``BattleVoteState`` existed have no state row. Their
votes are tallied straight from ``BattleVote`` rows, without a deadline or an
idempotency log, using the same scoring rule.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from skatebattle import db
from skatebattle.models import Battle, BattleVote, BattleVoteState
from skatebattle.services import notifications
from skatebattle.services.games import errors
from skatebattle.services.games.idempotency import (
    already_processed,
    deadline_key,
    generate_event_id,
    record_event,
)

VOTE_CHOICES = ('clean', 'sketch', 'redo')


@dataclass
class VoteResult:
    success: bool
    error: Optional[str] = None
    already_processed: bool = False
    already_initialized: bool = False
    battle_complete: bool = False
    winner_id: Optional[str] = None
    final_score: Optional[Dict[str, int]] = None
    participants: List[Optional[str]] = field(default_factory=list, repr=False)

    @classmethod
    def fail(cls, error: str) -> 'VoteResult':
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'success': self.success}
        if self.error is not None:
            data['error'] = self.error
        if self.already_processed:
            data['already_processed'] = True
        if self.already_initialized:
            data['already_initialized'] = True
        if self.success:
            data['battle_complete'] = self.battle_complete
        if self.winner_id is not None:
            data['winner_id'] = self.winner_id
        if self.final_score is not None:
            data['final_score'] = self.final_score
        return data


def calculate_winner(votes: List[Dict[str, Any]], creator_id: str, opponent_id: str) -> Tuple[str, Dict[str, int]]:
    scores = {creator_id: 0, opponent_id: 0}
    for v in votes:
        if v.get('vote') == 'clean':
            other = opponent_id if v.get('player_id') == creator_id else creator_id
            scores[other] = scores.get(other, 0) + 1

    if scores[opponent_id] > scores[creator_id]:
        return opponent_id, scores
    return creator_id, scores


def _max_events() -> int:
    return int(current_app.config.get('VOTE_MAX_PROCESSED_EVENTS', 50))


def _lock_vote_state(battle_id: str) -> Optional[BattleVoteState]:
    return (
        BattleVoteState.query.filter_by(battle_id=battle_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def _upsert_vote_row(battle_id: str, player_id: str, vote: str, now: float) -> None:
    row = BattleVote.query.filter_by(battle_id=battle_id, player_id=player_id).first()
    if row:
        row.vote = vote
    else:
        db.session.add(BattleVote(battle_id=battle_id, player_id=player_id, vote=vote, created_at=now))


def _complete_battle(battle_id: str, winner_id: str, now: float) -> None:
    battle = Battle.query.filter_by(id=battle_id).with_for_update().first()
    if battle is None:
        return
    battle.status = 'completed'
    battle.winner_id = winner_id
    battle.completed_at = now
    battle.updated_at = now


def initialize_voting(event_id: str, battle_id: str, creator_id: str, opponent_id: str) -> VoteResult:
    """Open the voting window for a battle. Re-initializing is a no-op."""
    now = time.time()
    try:
        existing = _lock_vote_state(battle_id)
        if existing is not None:
            db.session.rollback()
            current_app.logger.info(f"[vote-init] battle={battle_id} already initialized")
            return VoteResult(success=True, already_initialized=True)

        db.session.add(BattleVoteState(
            battle_id=battle_id,
            creator_id=creator_id,
            opponent_id=opponent_id,
            status='voting',
            votes=[],
            voting_started_at=now,
            vote_deadline_at=now + int(current_app.config.get('VOTE_TIMEOUT_SEC', 60)),
            processed_event_ids=[event_id],
            created_at=now,
            updated_at=now,
        ))
        battle = Battle.query.filter_by(id=battle_id).first()
        if battle is not None:
            battle.status = 'voting'
            battle.updated_at = now
        db.session.commit()
    except IntegrityError:
        # A concurrent initializer inserted the row first
        db.session.rollback()
        return VoteResult(success=True, already_initialized=True)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[vote-error] op=initialize voting battle={battle_id}")
        return VoteResult.fail(errors.failed_to('initialize voting'))

    current_app.logger.info(f"[vote-init] battle={battle_id} creator={creator_id} opponent={opponent_id}")
    return VoteResult(success=True)


def _cast_vote_legacy(battle_id: str, player_id: str, vote: str, now: float) -> VoteResult:
    battle = Battle.query.filter_by(id=battle_id).with_for_update().first()
    if battle is None:
        return VoteResult.fail(errors.BATTLE_NOT_FOUND)
    if player_id not in (battle.creator_id, battle.opponent_id):
        return VoteResult.fail(errors.NOT_A_PARTICIPANT)

    _upsert_vote_row(battle_id, player_id, vote, now)
    db.session.flush()

    votes = [{'player_id': v.player_id, 'vote': v.vote} for v in BattleVote.query.filter_by(battle_id=battle_id).all()]
    voters = {v['player_id'] for v in votes}
    if not battle.opponent_id or not {battle.creator_id, battle.opponent_id} <= voters:
        return VoteResult(success=True)

    winner_id, scores = calculate_winner(votes, battle.creator_id, battle.opponent_id)
    battle.status = 'completed'
    battle.winner_id = winner_id
    battle.completed_at = now
    battle.updated_at = now
    return VoteResult(success=True, battle_complete=True, winner_id=winner_id, final_score=scores,
                      participants=[battle.creator_id, battle.opponent_id])


def _cast_vote_on_state(state: BattleVoteState, event_id: str, player_id: str, vote: str, now: float) -> VoteResult:
    if already_processed(state.processed_event_ids, event_id):
        return VoteResult(
            success=True,
            already_processed=True,
            battle_complete=state.status == 'completed',
            winner_id=state.winner_id,
        )
    if player_id not in (state.creator_id, state.opponent_id):
        return VoteResult.fail(errors.NOT_A_PARTICIPANT)
    if state.status != 'voting':
        return VoteResult.fail(errors.VOTING_NOT_ACTIVE)
    if state.vote_deadline_at is not None and now > state.vote_deadline_at:
        return VoteResult.fail(errors.VOTING_DEADLINE_PASSED)

    # A second vote from the same participant replaces the first
    votes = [dict(v) for v in (state.votes or []) if v.get('player_id') != player_id]
    votes.append({'player_id': player_id, 'vote': vote, 'voted_at': now})
    state.votes = votes
    state.processed_event_ids = record_event(state.processed_event_ids, event_id, _max_events())
    state.updated_at = now
    if db.session.get(Battle, state.battle_id) is not None:
        _upsert_vote_row(state.battle_id, player_id, vote, now)

    voters = {v['player_id'] for v in votes}
    if not state.opponent_id or not {state.creator_id, state.opponent_id} <= voters:
        return VoteResult(success=True)

    winner_id, scores = calculate_winner(votes, state.creator_id, state.opponent_id)
    state.status = 'completed'
    state.winner_id = winner_id
    _complete_battle(state.battle_id, winner_id, now)
    return VoteResult(success=True, battle_complete=True, winner_id=winner_id, final_score=scores,
                      participants=[state.creator_id, state.opponent_id])


def cast_vote(event_id: str, battle_id: str, player_id: str, vote: str) -> VoteResult:
    if vote not in VOTE_CHOICES:
        raise ValueError(f'unknown vote: {vote}')
    now = time.time()
    try:
        state = _lock_vote_state(battle_id)
        if state is None:
            result = _cast_vote_legacy(battle_id, player_id, vote, now)
        else:
            result = _cast_vote_on_state(state, event_id, player_id, vote, now)
        if not result.success or result.already_processed:
            db.session.rollback()
            return result
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[vote-error] op=cast vote battle={battle_id} player={player_id}")
        return VoteResult.fail(errors.failed_to('cast vote'))

    current_app.logger.info(f"[vote-cast] battle={battle_id} player={player_id} vote={vote} legacy={state is None}")
    if result.battle_complete:
        current_app.logger.info(f"[battle-complete] battle={battle_id} winner={result.winner_id} scores={result.final_score}")
        notifications.notify_all(result.participants, 'battle_completed', {
            'battle_id': battle_id,
            'winner_id': result.winner_id,
        })
    return result


def _resolve_timeout(battle_id: str, now: float) -> Optional[Dict[str, Any]]:
    try:
        state = _lock_vote_state(battle_id)
        if state is None or state.status != 'voting':
            db.session.rollback()
            return None
        if state.vote_deadline_at is None or state.vote_deadline_at >= now:
            db.session.rollback()
            return None
        event_id = generate_event_id('timeout', battle_id, battle_id, deadline_key(state.vote_deadline_at))
        if already_processed(state.processed_event_ids, event_id):
            db.session.rollback()
            return None

        voters = {v.get('player_id') for v in (state.votes or [])}
        creator_voted = state.creator_id in voters
        opponent_voted = bool(state.opponent_id) and state.opponent_id in voters
        if creator_voted and not opponent_voted:
            winner_id, reason = state.creator_id, 'opponent_timeout'
        elif opponent_voted and not creator_voted:
            winner_id, reason = state.opponent_id, 'creator_timeout'
        else:
            winner_id, reason = state.creator_id, 'both_timeout'

        state.status = 'completed'
        state.winner_id = winner_id
        state.updated_at = now
        state.processed_event_ids = record_event(state.processed_event_ids, event_id, _max_events())
        _complete_battle(battle_id, winner_id, now)
        participants = [state.creator_id, state.opponent_id]
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[vote-error] op=process vote timeout battle={battle_id}")
        return None
    return {'winner_id': winner_id, 'reason': reason, 'participants': participants}


def process_vote_timeouts(now: Optional[float] = None) -> Dict[str, int]:
    """Resolve every voting window whose deadline has passed."""
    now = now or time.time()
    try:
        candidates = [
            s.battle_id for s in BattleVoteState.query.filter(
                BattleVoteState.status == 'voting',
                BattleVoteState.vote_deadline_at < now,
            ).all()
        ]
        db.session.rollback()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("[sweep-error] sweep=vote_timeouts")
        return {'resolved': 0}

    resolved = 0
    for battle_id in candidates:
        outcome = _resolve_timeout(battle_id, now)
        if outcome is None:
            continue
        resolved += 1
        current_app.logger.info(
            f"[vote-timeout] battle={battle_id} winner={outcome['winner_id']} reason={outcome['reason']}"
        )
        notifications.notify_all(outcome['participants'], 'battle_completed', {
            'battle_id': battle_id,
            'winner_id': outcome['winner_id'],
            'reason': outcome['reason'],
        })
    return {'resolved': resolved}


def get_battle_vote_state(battle_id: str) -> Optional[Dict[str, Any]]:
    try:
        state = BattleVoteState.query.filter_by(battle_id=battle_id).first()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[vote-error] op=get vote state battle={battle_id}")
        return None
    return state.to_dict() if state else None
