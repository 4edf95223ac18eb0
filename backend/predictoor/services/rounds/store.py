import math
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from predictoor import db
from predictoor.errors import ConcurrentTransitionLost
from predictoor.models import Round, OPEN_STATUSES, ROUND_COMPLETED, ROUND_STATUSES, ROUND_WAITING


def next_round_window(now: float, duration: float, lock_window: float):
    """(start, lock, end) of the round starting at the next boundary after ``now``."""
    if lock_window <= 0 or lock_window >= duration:
        raise ValueError('lock window must be shorter than the round and positive')
    start = (math.floor(now / duration) + 1) * duration
    end = start + duration
    return start, end - lock_window, end


class RoundStore:
    """Durable rounds with atomic create-if-absent and compare-and-swap.

    Methods never commit; the caller owns the transaction so a transition can
    be combined with other writes.
    """

    def get(self, round_id: int) -> Optional[Round]:
        return db.session.get(Round, round_id)

    def open_round(self) -> Optional[Round]:
        return Round.query.filter(Round.status.in_(OPEN_STATUSES)).order_by(Round.id).first()

    def due(self, status: str, now: float) -> List[Round]:
        """Rounds in ``status`` whose next deadline has passed."""
        deadline = {
            'waiting': Round.start_time,
            'active': Round.lock_time,
            'locked': Round.end_time,
        }[status]
        return Round.query.filter(Round.status == status, deadline <= now).order_by(Round.id).all()

    def current(self, now: float) -> Optional[Round]:
        """Round whose window contains ``now``, else the nearest upcoming one.

        Falls back to the open round when it is past its end and still
        waiting on a close price.
        """
        containing = (
            Round.query.filter(Round.start_time <= now, Round.end_time > now)
            .order_by(Round.start_time.desc()).first()
        )
        if containing:
            return containing
        upcoming = Round.query.filter(Round.start_time > now).order_by(Round.start_time).first()
        return upcoming or self.open_round()

    def recent_completed(self, limit: int = 10) -> List[Round]:
        return (
            Round.query.filter_by(status=ROUND_COMPLETED)
            .order_by(Round.end_time.desc()).limit(limit).all()
        )

    def create_if_absent(self, start: float, lock: float, end: float) -> Round:
        """Insert a waiting round unless an open round already exists.

        The UNIQUE ``open_slot`` column settles races between processes that
        both saw no open round.
        """
        if not start < lock < end:
            raise ValueError(f"invalid round window start={start} lock={lock} end={end}")
        if self.open_round() is not None:
            raise ConcurrentTransitionLost('An open round already exists')
        new_round = Round(start_time=start, lock_time=lock, end_time=end, status=ROUND_WAITING, open_slot=1)
        db.session.add(new_round)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConcurrentTransitionLost('Another caller created the open round') from exc
        return new_round

    def compare_and_set(self, round_id: int, expected: str, new: str, **values) -> None:
        """Move ``round_id`` from ``expected`` to ``new`` or raise ConcurrentTransitionLost."""
        if ROUND_STATUSES.index(new) != ROUND_STATUSES.index(expected) + 1:
            raise ValueError(f"illegal transition {expected} -> {new}")
        values['status'] = new
        if new == ROUND_COMPLETED:
            values['open_slot'] = None
        updated = (
            Round.query.filter_by(id=round_id, status=expected)
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            raise ConcurrentTransitionLost(f"Round {round_id} is no longer {expected}")
