import threading
import time
from typing import Callable, Optional

from predictoor import socketio

_started_apps = set()
_started_lock = threading.Lock()


def run_tick(app):
    """One scheduler tick inside an application context."""
    from predictoor.engine import get_engine

    with app.app_context():
        return get_engine(app).scheduler.tick()


def ticker_loop(app, max_ticks: Optional[int] = None, sleep: Optional[Callable[[float], None]] = None) -> int:
    """Tick every TICK_INTERVAL_SEC until ``max_ticks`` (forever when None).

    A failing tick is logged and the loop carries on.
    """
    sleep = sleep or socketio.sleep
    interval = float(app.config.get('TICK_INTERVAL_SEC', 1))
    try:
        heartbeat = int(app.config.get('TICKER_HEARTBEAT_SEC', 0))
    except (TypeError, ValueError):
        heartbeat = 0
    ticks = 0
    last_beat = time.time()
    while max_ticks is None or ticks < max_ticks:
        try:
            report = run_tick(app)
            if report.activated or report.locked or report.completed or report.created:
                app.logger.info(f"[tick] {report.to_dict()}")
        except Exception:
            app.logger.exception('[tick-error] scheduler tick failed')
        ticks += 1
        if heartbeat > 0 and time.time() - last_beat >= heartbeat:
            last_beat = time.time()
            app.logger.info(f"[ticker-heartbeat] ticks={ticks} interval={interval}s")
        if max_ticks is None or ticks < max_ticks:
            sleep(interval)
    return ticks


def start_ticker(app) -> bool:
    """Start the in-process ticker once per app.

    No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set.
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return False
    with _started_lock:
        if id(app) in _started_apps:
            app.logger.info('[ticker-skip] already running')
            return False
        _started_apps.add(id(app))
    app.logger.info(f"[ticker-start] interval={app.config.get('TICK_INTERVAL_SEC', 1)}s")
    socketio.start_background_task(ticker_loop, app)
    return True
