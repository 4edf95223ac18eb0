"""Rolling per-participant accuracy built from completed rounds."""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError

from predictoor import db
from predictoor.errors import ConcurrentTransitionLost
from predictoor.models import AggregatedRound, LeaderboardEntry


class LeaderboardAggregator:

    def __init__(self, clock, logger=None):
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    def apply_round_results(self, round_id: int, results: Iterable) -> bool:
        """Fold one round's scored predictions into the running means.

        Returns False when the round was already aggregated. Does not commit;
        the completion transaction owns the write.
        """
        if db.session.get(AggregatedRound, round_id) is not None:
            self.logger.info(f"[leaderboard-skip] round={round_id} already aggregated")
            return False
        db.session.add(AggregatedRound(round_id=round_id, aggregated_at=self.clock.now()))
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConcurrentTransitionLost(f"Round {round_id} was aggregated concurrently") from exc

        now = self.clock.now()
        count = 0
        for result in results:
            self._apply_one(result.participant_id, float(result.accuracy), round_id, now)
            count += 1
        self.logger.info(f"[leaderboard-apply] round={round_id} entries={count}")
        return True

    def _apply_one(self, participant_id: str, accuracy: float, round_id: int, now: float) -> None:
        # Single UPDATE so concurrent writers never lose an increment
        entry = LeaderboardEntry
        updated = entry.query.filter_by(participant_id=participant_id).update({
            entry.average_accuracy: entry.average_accuracy
            + (accuracy - entry.average_accuracy) / (entry.total_predictions + 1),
            entry.total_predictions: entry.total_predictions + 1,
            entry.best_accuracy: case((entry.best_accuracy < accuracy, accuracy), else_=entry.best_accuracy),
            entry.last_round_id: round_id,
            entry.updated_at: now,
        }, synchronize_session=False)
        if updated == 0:
            db.session.add(LeaderboardEntry(
                participant_id=participant_id,
                total_predictions=1,
                average_accuracy=accuracy,
                best_accuracy=accuracy,
                last_round_id=round_id,
                updated_at=now,
            ))
            db.session.flush()

    def top(self, n: int = 10) -> List[dict]:
        entries = (
            LeaderboardEntry.query
            .filter(LeaderboardEntry.total_predictions > 0)
            .order_by(
                LeaderboardEntry.average_accuracy.desc(),
                LeaderboardEntry.total_predictions.desc(),
                LeaderboardEntry.participant_id,
            )
            .limit(max(0, int(n)))
            .all()
        )
        ranked = []
        for position, entry in enumerate(entries, start=1):
            data = entry.to_dict()
            data['position'] = position
            ranked.append(data)
        return ranked

    def entry_for(self, participant_id: str) -> Optional[LeaderboardEntry]:
        return db.session.get(LeaderboardEntry, participant_id)
