from picture_this import db
import json
import time


class ArchivedSession(db.Model):
    """Final snapshot of a session that ended or was evicted for inactivity."""
    __tablename__ = 'archived_session'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), nullable=False, index=True)
    game_code = db.Column(db.String(6), nullable=False, index=True)
    reason = db.Column(db.String(32), nullable=False, default='ended')
    phase = db.Column(db.String(32), nullable=True)
    rounds_played = db.Column(db.Integer, default=0)
    player_count = db.Column(db.Integer, default=0)
    snapshot = db.Column(db.Text, nullable=True)  # JSON
    round_history = db.Column(db.Text, nullable=True)  # JSON list of round summaries
    archived_at = db.Column(db.Float, default=time.time)

    @classmethod
    def from_snapshot(cls, snapshot: dict, reason: str) -> 'ArchivedSession':
        return cls(
            session_id=snapshot.get('id') or '',
            game_code=snapshot.get('game_code') or '',
            reason=reason,
            phase=snapshot.get('phase'),
            rounds_played=int(snapshot.get('current_round') or 0),
            player_count=len(snapshot.get('players') or []),
            snapshot=json.dumps(snapshot),
            round_history=json.dumps(snapshot.get('round_history') or []),
            archived_at=time.time(),
        )

    def to_dict(self):
        try:
            history = json.loads(self.round_history or '[]')
        except Exception:
            history = []
        return {
            'id': self.id,
            'session_id': self.session_id,
            'game_code': self.game_code,
            'reason': self.reason,
            'phase': self.phase,
            'rounds_played': self.rounds_played,
            'player_count': self.player_count,
            'round_history': history,
            'archived_at': self.archived_at,
        }
