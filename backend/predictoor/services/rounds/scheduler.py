import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from predictoor import db
from predictoor.errors import ConcurrentTransitionLost, GameError, OracleUnavailable, StoreUnavailable
from predictoor.models import ROUND_ACTIVE, ROUND_COMPLETED, ROUND_LOCKED, ROUND_WAITING
from .scoring import DEFAULT_SENSITIVITY, score
from .store import next_round_window


@dataclass
class TickReport:
    now: float
    activated: List[int] = field(default_factory=list)
    locked: List[int] = field(default_factory=list)
    completed: List[int] = field(default_factory=list)
    created: List[int] = field(default_factory=list)
    lost: int = 0
    errors: List[dict] = field(default_factory=list)
    failures: List[Exception] = field(default_factory=list, repr=False)

    def add_error(self, round_id, step, exc):
        self.failures.append(exc)
        self.errors.append({
            'round_id': round_id,
            'step': step,
            'kind': getattr(exc, 'code', type(exc).__name__),
            'message': str(exc),
        })

    def to_dict(self):
        return {
            'now': self.now,
            'activated': self.activated,
            'locked': self.locked,
            'completed': self.completed,
            'created': self.created,
            'lost': self.lost,
            'errors': self.errors,
        }


class RoundScheduler:
    """Drives rounds through waiting -> active -> locked -> completed.

    Holds no state between ticks. Every transition is a compare-and-swap in
    the store, so any number of callers may tick at once; losers no-op.
    """

    def __init__(self, store, predictions, leaderboard, oracle, clock, gateway=None,
                 round_duration=60, lock_window=5, sensitivity=DEFAULT_SENSITIVITY,
                 leaderboard_limit=10, logger=None):
        self.store = store
        self.predictions = predictions
        self.leaderboard = leaderboard
        self.oracle = oracle
        self.clock = clock
        self.gateway = gateway
        self.round_duration = round_duration
        self.lock_window = lock_window
        self.sensitivity = sensitivity
        self.leaderboard_limit = leaderboard_limit
        self.logger = logger or logging.getLogger(__name__)

    def tick(self) -> TickReport:
        report = TickReport(now=self.clock.now())
        self._activate_due(report)
        self._lock_due(report)
        self._complete_due(report)
        self._replenish(report)
        if report.errors:
            self.logger.warning(f"[tick] now={report.now} errors={len(report.errors)}")
        return report

    # ---- steps ----

    def _activate_due(self, report: TickReport) -> None:
        for round_id in self._due_ids(report, ROUND_WAITING, 'activate'):
            if self._attempt(report, 'activate', round_id, lambda rid=round_id: self._activate(rid, report.now)):
                report.activated.append(round_id)
                self._publish_round(round_id)

    def _lock_due(self, report: TickReport) -> None:
        for round_id in self._due_ids(report, ROUND_ACTIVE, 'lock'):
            if self._attempt(report, 'lock', round_id, lambda rid=round_id: self._lock(rid)):
                report.locked.append(round_id)
                self._publish_round(round_id)

    def _complete_due(self, report: TickReport) -> None:
        for round_id in self._due_ids(report, ROUND_LOCKED, 'complete'):
            if self._attempt(report, 'complete', round_id, lambda rid=round_id: self._complete(rid, report.now)):
                report.completed.append(round_id)
                self._publish_completion(round_id)

    def _replenish(self, report: TickReport) -> None:
        created = []

        def create():
            if self.store.open_round() is not None:
                return False
            start, lock, end = next_round_window(report.now, self.round_duration, self.lock_window)
            new_round = self.store.create_if_absent(start, lock, end)
            created.append(new_round.id)
            self.logger.info(f"[round-create] round={new_round.id} start={start} lock={lock} end={end}")
            return True

        if self._attempt(report, 'replenish', None, create) and created:
            report.created.extend(created)
            self._publish_round(created[0])

    # ---- transitions ----

    def _activate(self, round_id: int, now: float) -> None:
        open_price = self.oracle.current_value()
        self.store.compare_and_set(round_id, ROUND_WAITING, ROUND_ACTIVE, open_price=open_price, activated_at=now)
        self.logger.info(f"[round-activate] round={round_id} open_price={open_price}")

    def _lock(self, round_id: int) -> None:
        self.store.compare_and_set(round_id, ROUND_ACTIVE, ROUND_LOCKED)
        self.logger.info(f"[round-lock] round={round_id}")

    def _complete(self, round_id: int, now: float) -> None:
        # Never score with a stale price: an oracle failure leaves the round locked
        close_price = self.oracle.snapshot_value()
        scored = score(self.predictions.scoring_inputs(round_id), close_price, self.sensitivity)
        # Transition, results and leaderboard commit together or not at all
        self.store.compare_and_set(
            round_id, ROUND_LOCKED, ROUND_COMPLETED, close_price=close_price, completed_at=now,
        )
        self.predictions.record_scores(round_id, scored)
        self.leaderboard.apply_round_results(round_id, scored)
        self.logger.info(f"[round-complete] round={round_id} close_price={close_price} predictions={len(scored)}")

    def complete_round(self, round_id: int) -> bool:
        """Complete one locked round now. False if another caller already did.

        Raises the failure that stopped it, e.g. OracleUnavailable when no
        close price can be fetched.
        """
        report = TickReport(now=self.clock.now())
        rnd = self.store.get(round_id)
        if rnd is None or rnd.status != ROUND_LOCKED or rnd.end_time > report.now:
            return False
        done = self._attempt(report, 'complete', round_id, lambda: self._complete(round_id, report.now))
        if report.failures:
            raise report.failures[0]
        if done:
            self._publish_completion(round_id)
        return done

    # ---- helpers ----

    def _due_ids(self, report: TickReport, status: str, step: str) -> List[int]:
        try:
            return [r.id for r in self.store.due(status, report.now)]
        except SQLAlchemyError as exc:
            db.session.rollback()
            report.add_error(None, step, StoreUnavailable(f"Could not list {status} rounds: {exc}"))
            return []

    def _attempt(self, report: TickReport, step: str, round_id: Optional[int], action: Callable) -> bool:
        """Run one transition in its own transaction, isolating its failure."""
        try:
            result = action()
            db.session.commit()
        except ConcurrentTransitionLost as exc:
            db.session.rollback()
            report.lost += 1
            self.logger.info(f"[round-skip] step={step} round={round_id} {exc.message}")
            return False
        except OracleUnavailable as exc:
            db.session.rollback()
            report.add_error(round_id, step, exc)
            self.logger.warning(f"[round-retry] step={step} round={round_id} oracle unavailable: {exc.message}")
            return False
        except SQLAlchemyError as exc:
            db.session.rollback()
            report.add_error(round_id, step, StoreUnavailable(str(exc)))
            self.logger.warning(f"[round-error] step={step} round={round_id} store error: {exc}")
            return False
        except GameError as exc:
            db.session.rollback()
            report.add_error(round_id, step, exc)
            self.logger.warning(f"[round-error] step={step} round={round_id} {exc.code}: {exc.message}")
            return False
        except Exception as exc:
            db.session.rollback()
            report.add_error(round_id, step, exc)
            self.logger.exception(f"[round-error] step={step} round={round_id} unexpected failure")
            return False
        return result is not False

    def _publish_round(self, round_id: int) -> None:
        if self.gateway is None:
            return
        rnd = self.store.get(round_id)
        if rnd is not None:
            self.gateway.publish_round(rnd.to_dict(now=self.clock.now()))

    def _publish_completion(self, round_id: int) -> None:
        if self.gateway is None:
            return
        rnd = self.store.get(round_id)
        if rnd is None:
            return
        round_data = rnd.to_dict(now=self.clock.now())
        self.gateway.publish_round(round_data)
        results = [p.to_dict(include_participant=True) for p in self.predictions.ranked(round_id)]
        self.gateway.publish_results(round_data, results)
        self.gateway.publish_leaderboard(self.leaderboard.top(self.leaderboard_limit), round_id)
