"""Pure scoring: accuracy per forecast and a deterministic ranking.

Nothing here reads the clock or touches the database, so scoring the same
inputs always yields the same output regardless of input order.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from predictoor.errors import InvalidValue

DEFAULT_SENSITIVITY = 10.0

PathPoint = Tuple[float, float]


@dataclass(frozen=True)
class PredictionInput:
    participant_id: str
    target_value: float
    submitted_at: float
    path: Optional[Sequence[PathPoint]] = None


@dataclass(frozen=True)
class ScoredPrediction:
    participant_id: str
    predicted_value: float
    accuracy: float
    rank: int
    submitted_at: float


def interpolate_path(path: Sequence[PathPoint], progress: float) -> float:
    """Piecewise-linear value of a trajectory at ``progress``.

    Clamped to the first sample before it starts and to the last sample
    beyond its end.
    """
    if not path:
        raise InvalidValue('Trajectory has no samples', field='path')
    first_t, first_v = path[0]
    if progress <= first_t:
        return float(first_v)
    for (t0, v0), (t1, v1) in zip(path, path[1:]):
        if t1 >= progress:
            if t1 == t0:
                return float(v1)
            frac = (progress - t0) / (t1 - t0)
            return float(v0 + frac * (v1 - v0))
    return float(path[-1][1])


def predicted_value(prediction: PredictionInput) -> float:
    if prediction.path:
        return interpolate_path(prediction.path, 1.0)
    return float(prediction.target_value)


def accuracy_for(value: float, close_price: float, sensitivity: float = DEFAULT_SENSITIVITY) -> float:
    error = abs(value - close_price) / close_price
    return max(0.0, min(100.0, 100.0 * (1.0 - error * sensitivity)))


def score(predictions: Iterable[PredictionInput], close_price: float,
          sensitivity: float = DEFAULT_SENSITIVITY) -> List[ScoredPrediction]:
    """Score and rank predictions against the close price.

    Ranking is by accuracy descending; equal accuracy goes to the earlier
    submission, then to the lower participant id.
    """
    if not isinstance(close_price, (int, float)) or not math.isfinite(close_price) or close_price <= 0:
        raise InvalidValue(f"Close price must be a positive number, got {close_price!r}", field='close_price')

    measured = []
    for p in predictions:
        value = predicted_value(p)
        measured.append((accuracy_for(value, close_price, sensitivity), value, p))

    measured.sort(key=lambda item: (-item[0], item[2].submitted_at, item[2].participant_id))
    return [
        ScoredPrediction(
            participant_id=p.participant_id,
            predicted_value=value,
            accuracy=acc,
            rank=idx,
            submitted_at=p.submitted_at,
        )
        for idx, (acc, value, p) in enumerate(measured, start=1)
    ]


def provisional_accuracy(prediction: PredictionInput, price: float, progress: float,
                         sensitivity: float = DEFAULT_SENSITIVITY) -> float:
    """Accuracy so far: the forecast at ``progress`` against a live price."""
    if not isinstance(price, (int, float)) or not math.isfinite(price) or price <= 0:
        raise InvalidValue(f"Price must be a positive number, got {price!r}", field='price')
    progress = max(0.0, min(1.0, progress))
    value = interpolate_path(prediction.path, progress) if prediction.path else float(prediction.target_value)
    return accuracy_for(value, price, sensitivity)
