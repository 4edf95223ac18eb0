from dataclasses import dataclass

from flask import current_app

from predictoor.services.leaderboard import LeaderboardAggregator
from predictoor.services.prices import PriceOracle, build_price_oracle
from predictoor.services.rounds.clock import SystemClock
from predictoor.services.rounds.predictions import PredictionStore
from predictoor.services.rounds.scheduler import RoundScheduler
from predictoor.services.rounds.store import RoundStore
from predictoor.services.sync import SyncGateway

EXTENSION_KEY = 'round_engine'


@dataclass
class RoundEngine:
    clock: object
    oracle: PriceOracle
    store: RoundStore
    gateway: SyncGateway
    predictions: PredictionStore
    leaderboard: LeaderboardAggregator
    scheduler: RoundScheduler


def init_engine(app, socketio=None, clock=None, oracle=None) -> RoundEngine:
    """Wire the round engine for ``app`` and park it in ``app.extensions``.

    Local and multiplayer deployments share this wiring; they differ only in
    the oracle and in how many tickers run.
    """
    config = app.config
    clock = clock or SystemClock()
    oracle = oracle or build_price_oracle(config)
    store = RoundStore()
    gateway = SyncGateway(
        store, clock, socketio=socketio, logger=app.logger,
        queue_size=int(config.get('SUBSCRIPTION_QUEUE_SIZE', 1000)),
    )
    predictions = PredictionStore(clock, gateway=gateway, logger=app.logger)
    leaderboard = LeaderboardAggregator(clock, logger=app.logger)
    scheduler = RoundScheduler(
        store, predictions, leaderboard, oracle, clock,
        gateway=gateway,
        round_duration=int(config.get('ROUND_DURATION_SEC', 60)),
        lock_window=int(config.get('LOCK_WINDOW_SEC', 5)),
        sensitivity=float(config.get('SCORING_SENSITIVITY', 10)),
        leaderboard_limit=int(config.get('LEADERBOARD_LIMIT', 10)),
        logger=app.logger,
    )
    engine = RoundEngine(clock, oracle, store, gateway, predictions, leaderboard, scheduler)
    app.extensions[EXTENSION_KEY] = engine
    return engine


def get_engine(app=None) -> RoundEngine:
    return (app or current_app).extensions[EXTENSION_KEY]
