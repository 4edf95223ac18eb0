from flask import Blueprint, jsonify, request, current_app
from predictoor.engine import get_engine
from predictoor.errors import GameError, InvalidValue, ParticipantNotFound, RoundNotFound
from predictoor.models import ROUND_COMPLETED
from predictoor.services.rounds.scoring import PredictionInput, provisional_accuracy


rounds = Blueprint('rounds', __name__)


@rounds.errorhandler(GameError)
def handle_game_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


def _limit_arg(name, default, maximum=100):
    raw = request.args.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise InvalidValue(f'{name} must be an integer', field=name)
    return max(1, min(value, maximum))


def _get_round_or_404(round_id):
    rnd = get_engine().store.get(round_id)
    if rnd is None:
        raise RoundNotFound(f'Round {round_id} does not exist')
    return rnd


@rounds.route('/current', methods=['GET'])
def get_current_round():
    snapshot = get_engine().gateway.current_round_snapshot()
    # Include durations so clients can show countdowns
    cfg = current_app.config
    return jsonify({
        'round': snapshot,
        'durations': {
            'round': int(cfg.get('ROUND_DURATION_SEC', 60)),
            'lock_window': int(cfg.get('LOCK_WINDOW_SEC', 5)),
        },
    })


@rounds.route('/recent', methods=['GET'])
def get_recent_rounds():
    limit = _limit_arg('limit', 10)
    engine = get_engine()
    return jsonify([r.to_dict() for r in engine.store.recent_completed(limit)])


@rounds.route('/<int:round_id>', methods=['GET'])
def get_round(round_id):
    engine = get_engine()
    rnd = _get_round_or_404(round_id)
    payload = rnd.to_dict(now=engine.clock.now())
    payload['player_count'] = engine.predictions.player_count(rnd.id)
    return jsonify(payload)


@rounds.route('/<int:round_id>/predictions', methods=['POST'])
def submit_prediction(round_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidValue('A JSON object body is required')
    prediction = get_engine().predictions.submit(
        round_id,
        data.get('participant_id'),
        target_value=data.get('target_value'),
        path=data.get('path'),
        display_name=data.get('display_name'),
        avatar_color=data.get('avatar_color'),
    )
    return jsonify(prediction.to_dict(include_participant=True)), 201


@rounds.route('/<int:round_id>/predictions', methods=['GET'])
def get_ghost_predictions(round_id):
    _get_round_or_404(round_id)
    exclude = request.args.get('exclude')
    ghosts = get_engine().predictions.ghosts(round_id, exclude_participant_id=exclude)
    return jsonify([p.to_dict(include_participant=True) for p in ghosts])


@rounds.route('/<int:round_id>/predictions/<string:participant_id>', methods=['GET'])
def get_own_prediction(round_id, participant_id):
    engine = get_engine()
    rnd = _get_round_or_404(round_id)
    prediction = engine.predictions.get(rnd.id, participant_id)
    if prediction is None:
        raise ParticipantNotFound(f'No prediction from {participant_id} in round {round_id}')
    payload = prediction.to_dict(include_participant=True)
    if rnd.status == ROUND_COMPLETED:
        payload['provisional_accuracy'] = prediction.accuracy
        payload['reference_price'] = rnd.close_price
        return jsonify(payload)

    # Live readout while the round runs: forecast at elapsed progress vs current price
    price = engine.oracle.current_value()
    now = engine.clock.now()
    progress = (now - rnd.start_time) / (rnd.end_time - rnd.start_time)
    forecast = PredictionInput(
        participant_id=prediction.participant_id,
        target_value=prediction.target_value,
        submitted_at=prediction.submitted_at,
        path=prediction.path_points,
    )
    payload['provisional_accuracy'] = provisional_accuracy(forecast, price, progress, engine.scheduler.sensitivity)
    payload['reference_price'] = price
    return jsonify(payload)


@rounds.route('/<int:round_id>/results', methods=['GET'])
def get_results(round_id):
    rnd = _get_round_or_404(round_id)
    limit = _limit_arg('limit', int(current_app.config.get('RESULTS_LIMIT', 20)))
    ranked = get_engine().predictions.ranked(rnd.id, limit=limit)
    return jsonify({
        'round': rnd.to_dict(),
        'predictions': [p.to_dict(include_participant=True) for p in ranked],
    })


@rounds.route('/tick', methods=['POST'])
def tick():
    report = get_engine().scheduler.tick()
    return jsonify(report.to_dict())
