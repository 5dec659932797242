from skatebattle import db
import time
import uuid


def _new_id():
    return uuid.uuid4().hex


class GameSession(db.Model):
    """A live S.K.A.T.E. match.

    ``players`` is an ordered JSON list of ``{id, letters, connected,
    disconnected_at}`` dicts; its order is the turn rotation and never changes
    after a player joins. Timestamps are epoch seconds.
    """
    __tablename__ = 'game_session'
    id = db.Column(db.String(32), primary_key=True)
    spot_id = db.Column(db.String(255), nullable=False)
    creator_id = db.Column(db.String(255), nullable=False, index=True)
    players = db.Column(db.JSON, nullable=False, default=list)
    max_players = db.Column(db.Integer, nullable=False, default=4)
    current_turn_index = db.Column(db.Integer, nullable=False, default=0)
    current_action = db.Column(db.String(20), nullable=False, default='set')  # set, attempt
    current_trick = db.Column(db.Text, nullable=True)
    setter_id = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='waiting', index=True)  # waiting, active, paused, completed, forfeited
    winner_id = db.Column(db.String(255), nullable=True)
    end_reason = db.Column(db.String(32), nullable=True)
    turn_deadline_at = db.Column(db.Float, nullable=True)
    paused_at = db.Column(db.Float, nullable=True)
    processed_event_ids = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    updated_at = db.Column(db.Float, nullable=False, default=time.time)

    __table_args__ = (
        db.Index('ix_game_session_status_deadline', 'status', 'turn_deadline_at'),
    )

    def __init__(self, **kwargs):
        super(GameSession, self).__init__(**kwargs)
        if not self.id:
            self.id = _new_id()

    def to_dict(self):
        return {
            'id': self.id,
            'spot_id': self.spot_id,
            'creator_id': self.creator_id,
            'players': [dict(p) for p in (self.players or [])],
            'max_players': self.max_players,
            'current_turn_index': self.current_turn_index,
            'current_action': self.current_action,
            'current_trick': self.current_trick,
            'setter_id': self.setter_id,
            'status': self.status,
            'winner_id': self.winner_id,
            'end_reason': self.end_reason,
            'turn_deadline_at': self.turn_deadline_at,
            'paused_at': self.paused_at,
            'processed_event_ids': list(self.processed_event_ids or []),
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


class AsyncGame(db.Model):
    """Two-player by-mail game; only its deadline sweeps live in this service."""
    __tablename__ = 'async_game'
    id = db.Column(db.String(32), primary_key=True)
    player1_id = db.Column(db.String(255), nullable=False)
    player2_id = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='pending', index=True)  # pending, active, completed, declined, forfeited
    current_turn = db.Column(db.String(255), nullable=True)
    player1_letters = db.Column(db.String(5), nullable=True, default='')
    player2_letters = db.Column(db.String(5), nullable=True, default='')
    winner_id = db.Column(db.String(255), nullable=True)
    deadline_at = db.Column(db.Float, nullable=True)
    processed_event_ids = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    updated_at = db.Column(db.Float, nullable=False, default=time.time)
    completed_at = db.Column(db.Float, nullable=True)

    def __init__(self, **kwargs):
        super(AsyncGame, self).__init__(**kwargs)
        if not self.id:
            self.id = _new_id()

    def to_dict(self):
        return {
            'id': self.id,
            'player1_id': self.player1_id,
            'player2_id': self.player2_id,
            'status': self.status,
            'current_turn': self.current_turn,
            'player1_letters': self.player1_letters,
            'player2_letters': self.player2_letters,
            'winner_id': self.winner_id,
            'deadline_at': self.deadline_at,
            'created_at': self.created_at,
            'completed_at': self.completed_at,
        }


class Battle(db.Model):
    __tablename__ = 'battle'
    id = db.Column(db.String(32), primary_key=True)
    creator_id = db.Column(db.String(255), nullable=False)
    opponent_id = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='active')  # active, voting, completed
    winner_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    updated_at = db.Column(db.Float, nullable=False, default=time.time)
    completed_at = db.Column(db.Float, nullable=True)
    votes = db.relationship('BattleVote', back_populates='battle', lazy='dynamic')

    def __init__(self, **kwargs):
        super(Battle, self).__init__(**kwargs)
        if not self.id:
            self.id = _new_id()

    def to_dict(self):
        return {
            'id': self.id,
            'creator_id': self.creator_id,
            'opponent_id': self.opponent_id,
            'status': self.status,
            'winner_id': self.winner_id,
            'completed_at': self.completed_at,
        }


class BattleVote(db.Model):
    """One participant's vote. Predates BattleVoteState; legacy battles only have these rows."""
    __tablename__ = 'battle_vote'
    id = db.Column(db.Integer, primary_key=True)
    battle_id = db.Column(db.String(32), db.ForeignKey('battle.id'), nullable=False)
    player_id = db.Column(db.String(255), nullable=False)
    vote = db.Column(db.String(20), nullable=False)  # clean, sketch, redo
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    battle = db.relationship('Battle', back_populates='votes')

    __table_args__ = (
        db.UniqueConstraint('battle_id', 'player_id', name='uq_battle_vote_player'),
    )


class BattleVoteState(db.Model):
    __tablename__ = 'battle_vote_state'
    battle_id = db.Column(db.String(32), primary_key=True)
    creator_id = db.Column(db.String(255), nullable=False)
    opponent_id = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='voting', index=True)  # voting, completed
    votes = db.Column(db.JSON, nullable=False, default=list)
    voting_started_at = db.Column(db.Float, nullable=True)
    vote_deadline_at = db.Column(db.Float, nullable=True)
    winner_id = db.Column(db.String(255), nullable=True)
    processed_event_ids = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    updated_at = db.Column(db.Float, nullable=False, default=time.time)

    def to_dict(self):
        return {
            'battle_id': self.battle_id,
            'creator_id': self.creator_id,
            'opponent_id': self.opponent_id,
            'status': self.status,
            'votes': [dict(v) for v in (self.votes or [])],
            'voting_started_at': self.voting_started_at,
            'vote_deadline_at': self.vote_deadline_at,
            'winner_id': self.winner_id,
            'processed_event_ids': list(self.processed_event_ids or []),
        }
