"""Fan-out of round, ghost prediction and leaderboard changes.

Events go to in-process subscribers (used by local mode and tests) and to
Socket.IO rooms on the ``/ws`` namespace. Every event carries an ``id`` and a
``version`` so consumers can drop duplicates; delivery is at-least-once.
"""

import logging
import queue
import threading
from typing import Callable, Dict, Optional, Set

from predictoor.models import Prediction

ROUND_TOPIC = 'round_update'
GHOST_TOPIC = 'ghost_prediction'
RESULTS_TOPIC = 'round_results'
LEADERBOARD_TOPIC = 'leaderboard_update'
ROUNDS_ROOM = 'rounds'
DEFAULT_QUEUE_SIZE = 1000


def round_room(round_id) -> str:
    return f"round:{round_id}"


class Subscription:
    """A bounded queue of events for one subscriber. Close it when done.

    When full, the oldest pending event is dropped and counted in
    ``dropped``; newer events carry the latest version anyway.
    """

    def __init__(self, gateway, topic: str, accept: Optional[Callable[[dict], bool]] = None,
                 maxsize: int = DEFAULT_QUEUE_SIZE):
        self._gateway = gateway
        self.topic = topic
        self._accept = accept
        self._queue: 'queue.Queue[dict]' = queue.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def offer(self, event: dict) -> None:
        if self.closed:
            return
        if self._accept is not None and not self._accept(event):
            return
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    # Drained by the consumer meanwhile; retry the put
                    continue

    def get(self, timeout: Optional[float] = None) -> dict:
        """Next event; raises ``queue.Empty`` on timeout."""
        return self._queue.get(timeout=timeout)

    def drain(self) -> list:
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        self.closed = True
        self._gateway._unsubscribe(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class SyncGateway:

    def __init__(self, store, clock, socketio=None, namespace='/ws', logger=None, queue_size=DEFAULT_QUEUE_SIZE):
        self.store = store
        self.queue_size = queue_size
        self.clock = clock
        self.socketio = socketio
        self.namespace = namespace
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, Set[Subscription]] = {}
        self._participant_sids: Dict[str, Set[str]] = {}

    # ---- queries ----

    def current_round_snapshot(self) -> Optional[dict]:
        now = self.clock.now()
        rnd = self.store.current(now)
        if rnd is None:
            return None
        snapshot = rnd.to_dict(now=now)
        snapshot['player_count'] = Prediction.query.filter_by(round_id=rnd.id).count()
        return snapshot

    # ---- subscriptions ----

    def subscribe_round_updates(self) -> Subscription:
        return self._subscribe(Subscription(self, ROUND_TOPIC, maxsize=self.queue_size))

    def subscribe_ghost_predictions(self, round_id: int, participant_id: Optional[str] = None) -> Subscription:
        def accept(event):
            data = event['prediction']
            return data['round_id'] == round_id and data['participant_id'] != participant_id
        return self._subscribe(Subscription(self, GHOST_TOPIC, accept, maxsize=self.queue_size))

    def subscribe_results(self) -> Subscription:
        return self._subscribe(Subscription(self, RESULTS_TOPIC, maxsize=self.queue_size))

    def subscribe_leaderboard(self) -> Subscription:
        return self._subscribe(Subscription(self, LEADERBOARD_TOPIC, maxsize=self.queue_size))

    def _subscribe(self, subscription: Subscription) -> Subscription:
        with self._lock:
            self._subscriptions.setdefault(subscription.topic, set()).add(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions.get(subscription.topic, set()).discard(subscription)

    # ---- socket bookkeeping ----

    def register_socket(self, sid: str, participant_id: Optional[str]) -> None:
        if not participant_id:
            return
        with self._lock:
            self._participant_sids.setdefault(participant_id, set()).add(sid)

    def unregister_socket(self, sid: str, participant_id: Optional[str]) -> None:
        if not participant_id:
            return
        with self._lock:
            sids = self._participant_sids.get(participant_id)
            if sids is not None:
                sids.discard(sid)
                if not sids:
                    self._participant_sids.pop(participant_id, None)

    def sids_for(self, participant_id: str) -> list:
        with self._lock:
            return sorted(self._participant_sids.get(participant_id, ()))

    # ---- publishing ----

    def publish_round(self, round_data: dict) -> None:
        event = {'id': round_data['id'], 'version': round_data['version'], 'round': round_data}
        self._deliver(ROUND_TOPIC, event)
        self._emit(ROUND_TOPIC, event, to=ROUNDS_ROOM)

    def publish_prediction(self, prediction_data: dict) -> None:
        event = {
            'id': f"{prediction_data['round_id']}:{prediction_data['participant_id']}",
            'version': prediction_data['version'],
            'prediction': prediction_data,
        }
        self._deliver(GHOST_TOPIC, event)
        self._emit(
            GHOST_TOPIC, event,
            to=round_room(prediction_data['round_id']),
            skip_sid=self.sids_for(prediction_data['participant_id']) or None,
        )

    def publish_results(self, round_data: dict, results: list) -> None:
        event = {'id': round_data['id'], 'version': round_data['version'], 'round': round_data, 'results': results}
        self._deliver(RESULTS_TOPIC, event)
        self._emit(RESULTS_TOPIC, event, to=ROUNDS_ROOM)

    def publish_leaderboard(self, entries: list, round_id: int) -> None:
        event = {'id': 'leaderboard', 'version': round_id, 'entries': entries}
        self._deliver(LEADERBOARD_TOPIC, event)
        self._emit(LEADERBOARD_TOPIC, event, to=ROUNDS_ROOM)

    def _deliver(self, topic: str, event: dict) -> None:
        with self._lock:
            subscribers = list(self._subscriptions.get(topic, ()))
        for subscription in subscribers:
            subscription.offer(event)

    def _emit(self, name: str, payload: dict, to: str, skip_sid=None) -> None:
        if self.socketio is None:
            return
        try:
            self.socketio.emit(name, payload, to=to, namespace=self.namespace, skip_sid=skip_sid)
        except Exception as exc:
            # Fire-and-forget
            self.logger.warning(f"[emit-error] event={name} room={to} error={exc}")
