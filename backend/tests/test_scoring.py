import math
import pytest

from predictoor.errors import InvalidValue
from predictoor.services.rounds.scoring import PredictionInput, interpolate_path, provisional_accuracy, score


def _example_predictions():
    return [
        PredictionInput('A', 100000.0, submitted_at=0.0),
        PredictionInput('B', 99000.0, submitted_at=1.0),
        PredictionInput('C', 100000.0, submitted_at=2.0),
    ]


def test_example_round_ranks_earlier_submission_first():
    results = {r.participant_id: r for r in score(_example_predictions(), 100000.0, sensitivity=10)}
    assert results['A'].accuracy == 100.0
    assert results['A'].rank == 1
    assert results['C'].accuracy == 100.0
    assert results['C'].rank == 2
    # 1% off with K=10 keeps 90% accuracy
    assert results['B'].accuracy == pytest.approx(90.0)
    assert results['B'].rank == 3


def test_higher_sensitivity_floors_accuracy_at_zero():
    results = {r.participant_id: r for r in score(_example_predictions(), 100000.0, sensitivity=100)}
    assert results['B'].accuracy == 0.0
    assert results['B'].rank == 3


def test_score_is_deterministic_and_order_independent():
    preds = _example_predictions() + [
        PredictionInput('D', 101500.0, submitted_at=3.0),
        PredictionInput('E', 98500.0, submitted_at=3.0),
    ]
    first = score(preds, 100000.0)
    again = score(list(preds), 100000.0)
    reversed_input = score(list(reversed(preds)), 100000.0)
    assert first == again == reversed_input
    assert [r.rank for r in first] == [1, 2, 3, 4, 5]
    # D and E tie on accuracy and submission time; participant id settles it
    tail = [r.participant_id for r in first][-2:]
    assert tail == ['D', 'E']


def test_zero_predictions_yield_empty_results():
    assert score([], 100000.0) == []


def test_wild_miss_scores_zero():
    (result,) = score([PredictionInput('A', 50000.0, submitted_at=0.0)], 100000.0)
    assert result.accuracy == 0.0
    assert result.rank == 1


@pytest.mark.parametrize('close_price', [0, -1.0, math.nan, math.inf])
def test_invalid_close_price_rejected(close_price):
    with pytest.raises(InvalidValue):
        score(_example_predictions(), close_price)


def test_interpolate_path_linear_between_samples():
    path = [(0.0, 100.0), (0.5, 110.0), (1.0, 120.0)]
    assert interpolate_path(path, 1.0) == 120.0
    assert interpolate_path(path, 0.75) == pytest.approx(115.0)
    assert interpolate_path(path, 0.25) == pytest.approx(105.0)


def test_interpolate_path_clamps_outside_samples():
    path = [(0.2, 100.0), (0.8, 130.0)]
    assert interpolate_path(path, 1.0) == 130.0
    assert interpolate_path(path, 0.0) == 100.0


def test_interpolate_path_handles_vertical_segments():
    path = [(0.0, 100.0), (1.0, 105.0), (1.0, 110.0)]
    assert interpolate_path(path, 1.0) == 105.0


def test_trajectory_scored_at_its_end_not_target_value():
    trajectory = PredictionInput(
        'T', 1.0, submitted_at=5.0,
        path=[(0.0, 99000.0), (0.5, 99500.0), (1.0, 100000.0)],
    )
    point = PredictionInput('P', 99500.0, submitted_at=0.0)
    results = score([point, trajectory], 100000.0)
    assert results[0].participant_id == 'T'
    assert results[0].accuracy == 100.0
    assert results[0].predicted_value == 100000.0
    assert results[1].accuracy == pytest.approx(95.0)


def test_provisional_accuracy_follows_the_trajectory():
    forecast = PredictionInput('A', 110000.0, submitted_at=0.0, path=[(0.0, 100000.0), (1.0, 110000.0)])
    assert provisional_accuracy(forecast, 100000.0, 0.0) == 100.0
    assert provisional_accuracy(forecast, 100000.0, 0.5) == pytest.approx(50.0)
    assert provisional_accuracy(forecast, 100000.0, 2.0) == pytest.approx(0.0)
    flat = PredictionInput('B', 101000.0, submitted_at=0.0)
    assert provisional_accuracy(flat, 100000.0, 0.3) == pytest.approx(90.0)
    with pytest.raises(InvalidValue):
        provisional_accuracy(flat, 0.0, 0.3)
