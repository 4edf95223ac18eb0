from predictoor import db
import json
import time
import zlib

ROUND_WAITING = 'waiting'
ROUND_ACTIVE = 'active'
ROUND_LOCKED = 'locked'
ROUND_COMPLETED = 'completed'
# Lifecycle order; the index doubles as the event version of a round
ROUND_STATUSES = (ROUND_WAITING, ROUND_ACTIVE, ROUND_LOCKED, ROUND_COMPLETED)
OPEN_STATUSES = (ROUND_WAITING, ROUND_ACTIVE, ROUND_LOCKED)

AVATAR_COLORS = (
    '#7cb342', '#c62828', '#1e88e5', '#fb8c00', '#8e24aa',
    '#00897b', '#f4511e', '#3949ab', '#6d4c41', '#d81b60',
)


def default_display_name(participant_id):
    return f"Player-{participant_id[:4]}"


def default_avatar_color(participant_id):
    """Stable palette colour for a participant token."""
    return AVATAR_COLORS[zlib.crc32(participant_id.encode('utf-8')) % len(AVATAR_COLORS)]


class Participant(db.Model):
    __tablename__ = 'participant'
    id = db.Column(db.String(64), primary_key=True)
    display_name = db.Column(db.String(32), nullable=False)
    avatar_color = db.Column(db.String(7), nullable=False)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    predictions = db.relationship('Prediction', back_populates='participant', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'display_name': self.display_name,
            'avatar_color': self.avatar_color,
        }


class Round(db.Model):
    __tablename__ = 'round'
    id = db.Column(db.Integer, primary_key=True)
    start_time = db.Column(db.Float, nullable=False, index=True)
    lock_time = db.Column(db.Float, nullable=False)
    end_time = db.Column(db.Float, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=ROUND_WAITING, index=True)
    open_price = db.Column(db.Float, nullable=True)
    close_price = db.Column(db.Float, nullable=True)
    activated_at = db.Column(db.Float, nullable=True)
    completed_at = db.Column(db.Float, nullable=True)
    # 1 while the round is open, NULL once completed. UNIQUE, so the store
    # itself refuses a second open round.
    open_slot = db.Column(db.Integer, nullable=True, unique=True)
    predictions = db.relationship('Prediction', back_populates='round', lazy='dynamic')

    @property
    def version(self):
        return ROUND_STATUSES.index(self.status)

    @property
    def is_open(self):
        return self.status in OPEN_STATUSES

    def to_dict(self, now=None):
        data = {
            'id': self.id,
            'status': self.status,
            'version': self.version,
            'start_time': self.start_time,
            'lock_time': self.lock_time,
            'end_time': self.end_time,
            'open_price': self.open_price,
            'close_price': self.close_price,
        }
        if now is not None:
            data['server_time'] = now
            data['seconds_to_start'] = max(0.0, self.start_time - now)
            data['seconds_to_lock'] = max(0.0, self.lock_time - now)
            data['seconds_to_end'] = max(0.0, self.end_time - now)
        return data


class Prediction(db.Model):
    __tablename__ = 'prediction'
    __table_args__ = (
        db.UniqueConstraint('round_id', 'participant_id', name='uq_prediction_round_participant'),
    )
    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(db.Integer, db.ForeignKey('round.id'), nullable=False, index=True)
    participant_id = db.Column(db.String(64), db.ForeignKey('participant.id'), nullable=False, index=True)
    target_value = db.Column(db.Float, nullable=False)
    path = db.Column(db.Text, nullable=True)  # JSON-encoded list of [progress, value]
    submitted_at = db.Column(db.Float, nullable=False)
    version = db.Column(db.Integer, nullable=False, default=1)
    accuracy = db.Column(db.Float, nullable=True)
    rank = db.Column(db.Integer, nullable=True)
    round = db.relationship('Round', back_populates='predictions')
    participant = db.relationship('Participant', back_populates='predictions')

    @property
    def path_points(self):
        if not self.path:
            return None
        return [tuple(p) for p in json.loads(self.path)]

    def to_dict(self, include_participant=False):
        data = {
            'round_id': self.round_id,
            'participant_id': self.participant_id,
            'target_value': self.target_value,
            'path': [list(p) for p in self.path_points] if self.path else None,
            'submitted_at': self.submitted_at,
            'version': self.version,
            'accuracy': self.accuracy,
            'rank': self.rank,
        }
        if include_participant and self.participant:
            data['display_name'] = self.participant.display_name
            data['avatar_color'] = self.participant.avatar_color
        return data


class LeaderboardEntry(db.Model):
    __tablename__ = 'leaderboard_entry'
    participant_id = db.Column(db.String(64), db.ForeignKey('participant.id'), primary_key=True)
    total_predictions = db.Column(db.Integer, nullable=False, default=0)
    average_accuracy = db.Column(db.Float, nullable=False, default=0.0)
    best_accuracy = db.Column(db.Float, nullable=False, default=0.0)
    last_round_id = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(db.Float, nullable=True)
    participant = db.relationship('Participant')

    def to_dict(self):
        data = {
            'participant_id': self.participant_id,
            'total_predictions': self.total_predictions,
            'average_accuracy': self.average_accuracy,
            'best_accuracy': self.best_accuracy,
            'last_round_id': self.last_round_id,
        }
        if self.participant:
            data['display_name'] = self.participant.display_name
            data['avatar_color'] = self.participant.avatar_color
        return data


class AggregatedRound(db.Model):
    """Rounds whose results were already folded into the leaderboard."""
    __tablename__ = 'aggregated_round'
    round_id = db.Column(db.Integer, db.ForeignKey('round.id'), primary_key=True)
    aggregated_at = db.Column(db.Float, nullable=False, default=time.time)
