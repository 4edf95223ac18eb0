import json
import logging
import math
import re
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from predictoor import db
from predictoor.errors import GameError, InvalidValue, RoundNotActive, RoundNotFound, StoreUnavailable
from predictoor.models import (
    Participant, Prediction, Round, ROUND_ACTIVE, ROUND_COMPLETED, ROUND_WAITING,
    default_avatar_color, default_display_name,
)
from .scoring import PredictionInput, interpolate_path

MAX_PATH_SAMPLES = 2000
_COLOR_RE = re.compile(r'^#[0-9a-fA-F]{6}$')


def _finite_float(value) -> Optional[float]:
    """``value`` as a finite float, or None for anything else."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return None
    try:
        value = float(value)
    except OverflowError:
        return None
    return value if math.isfinite(value) else None


def validate_target_value(value) -> float:
    number = _finite_float(value)
    if number is None:
        raise InvalidValue('target_value must be a finite number', field='target_value')
    if number <= 0:
        raise InvalidValue('target_value must be greater than zero', field='target_value')
    return number


def validate_path(path) -> Optional[List[tuple]]:
    """Normalise a trajectory to ``[(progress, value), ...]`` or raise InvalidValue."""
    if path is None:
        return None
    if not isinstance(path, (list, tuple)) or len(path) < 2:
        raise InvalidValue('path must be a list of at least two [progress, value] samples', field='path')
    if len(path) > MAX_PATH_SAMPLES:
        raise InvalidValue(f"path may hold at most {MAX_PATH_SAMPLES} samples", field='path')
    points = []
    last_progress = -1.0
    for sample in path:
        if isinstance(sample, dict):
            sample = (sample.get('progress'), sample.get('value'))
        if not isinstance(sample, (list, tuple)) or len(sample) != 2:
            raise InvalidValue('each path sample must be [progress, value]', field='path')
        progress, value = _finite_float(sample[0]), _finite_float(sample[1])
        if progress is None or not 0.0 <= progress <= 1.0:
            raise InvalidValue('path progress must lie in [0, 1]', field='path')
        if progress < last_progress:
            raise InvalidValue('path progress must be non-decreasing', field='path')
        if value is None or value <= 0:
            raise InvalidValue('path values must be finite and greater than zero', field='path')
        points.append((progress, value))
        last_progress = progress
    return points


def validate_participant_id(participant_id) -> str:
    if not isinstance(participant_id, str) or not participant_id.strip():
        raise InvalidValue('participant_id is required', field='participant_id')
    participant_id = participant_id.strip()
    if len(participant_id) > 64:
        raise InvalidValue('participant_id is too long', field='participant_id')
    return participant_id


class PredictionStore:
    """One prediction per (round, participant), writable only while a round is active."""

    def __init__(self, clock, gateway=None, logger=None):
        self.clock = clock
        self.gateway = gateway
        self.logger = logger or logging.getLogger(__name__)

    def submit(self, round_id, participant_id, target_value=None, path=None,
               display_name=None, avatar_color=None) -> Prediction:
        participant_id = validate_participant_id(participant_id)
        points = validate_path(path)
        if points:
            if target_value is not None:
                validate_target_value(target_value)
            # Trajectories are scored at progress 1.0; store that value as the target
            target_value = interpolate_path(points, 1.0)
        value = validate_target_value(target_value)
        if display_name is not None and (not isinstance(display_name, str) or not 2 <= len(display_name.strip()) <= 32):
            raise InvalidValue('display_name must be 2 to 32 characters', field='display_name')
        if avatar_color is not None and (not isinstance(avatar_color, str) or not _COLOR_RE.match(avatar_color)):
            raise InvalidValue('avatar_color must look like #rrggbb', field='avatar_color')

        try:
            # Row lock on the round: a concurrent lock transition waits for us or we see it
            rnd = Round.query.filter_by(id=round_id).with_for_update().populate_existing().first()
            if rnd is None:
                raise RoundNotFound(f"Round {round_id} does not exist")
            now = self.clock.now()
            self._check_accepting(rnd, now)

            self._ensure_participant(participant_id, display_name, avatar_color)
            prediction = Prediction.query.filter_by(round_id=rnd.id, participant_id=participant_id).first()
            if prediction is None:
                prediction = Prediction(round_id=rnd.id, participant_id=participant_id, version=1)
                db.session.add(prediction)
            else:
                prediction.version = (prediction.version or 0) + 1
            prediction.target_value = value
            prediction.path = json.dumps(points) if points else None
            prediction.submitted_at = now
            db.session.commit()
        except GameError as exc:
            db.session.rollback()
            self.logger.info(f"[submit-reject] round={round_id} participant={participant_id} code={exc.code} reason={exc.extra.get('reason')}")
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            self.logger.warning(f"[submit-error] round={round_id} participant={participant_id} error={exc}")
            raise StoreUnavailable('Could not store the prediction, try again') from exc

        self.logger.info(
            f"[submit] round={prediction.round_id} participant={participant_id} value={value} version={prediction.version}"
        )
        if self.gateway is not None:
            self.gateway.publish_prediction(prediction.to_dict(include_participant=True))
        return prediction

    def _check_accepting(self, rnd: Round, now: float) -> None:
        if rnd.status == ROUND_WAITING or (rnd.status == ROUND_ACTIVE and now < rnd.start_time):
            raise RoundNotActive(f"Round {rnd.id} has not started yet", reason='not_started')
        if rnd.status == ROUND_COMPLETED:
            raise RoundNotActive(f"Round {rnd.id} is already completed", reason='completed')
        if rnd.status != ROUND_ACTIVE or now >= rnd.lock_time:
            raise RoundNotActive(f"Too late: round {rnd.id} is locked", reason='locked')

    def _ensure_participant(self, participant_id, display_name=None, avatar_color=None) -> Participant:
        participant = db.session.get(Participant, participant_id)
        if participant is None:
            participant = Participant(
                id=participant_id,
                display_name=(display_name or default_display_name(participant_id)).strip(),
                avatar_color=avatar_color or default_avatar_color(participant_id),
                created_at=self.clock.now(),
            )
            db.session.add(participant)
            db.session.flush()
            return participant
        if display_name:
            participant.display_name = display_name.strip()
        if avatar_color:
            participant.avatar_color = avatar_color
        return participant

    def get(self, round_id: int, participant_id: str) -> Optional[Prediction]:
        return Prediction.query.filter_by(round_id=round_id, participant_id=participant_id).first()

    def for_round(self, round_id: int) -> List[Prediction]:
        return Prediction.query.filter_by(round_id=round_id).order_by(Prediction.id).all()

    def scoring_inputs(self, round_id: int) -> List[PredictionInput]:
        return [
            PredictionInput(
                participant_id=p.participant_id,
                target_value=p.target_value,
                submitted_at=p.submitted_at,
                path=p.path_points,
            )
            for p in self.for_round(round_id)
        ]

    def ghosts(self, round_id: int, exclude_participant_id=None) -> List[Prediction]:
        query = Prediction.query.filter_by(round_id=round_id)
        if exclude_participant_id:
            query = query.filter(Prediction.participant_id != exclude_participant_id)
        return query.order_by(Prediction.submitted_at).all()

    def player_count(self, round_id: int) -> int:
        return Prediction.query.filter_by(round_id=round_id).count()

    def ranked(self, round_id: int, limit: Optional[int] = None) -> List[Prediction]:
        query = (
            Prediction.query.filter(Prediction.round_id == round_id, Prediction.rank.isnot(None))
            .order_by(Prediction.rank)
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def record_scores(self, round_id: int, scored) -> None:
        """Write accuracy and rank; the caller commits."""
        by_participant = {p.participant_id: p for p in self.for_round(round_id)}
        for result in scored:
            prediction = by_participant[result.participant_id]
            prediction.accuracy = result.accuracy
            prediction.rank = result.rank
        db.session.flush()
