import time
from typing import Callable, Dict, List, Tuple

from skatebattle import socketio
from skatebattle.services.battles.voting import process_vote_timeouts
from skatebattle.services.games.async_games import (
    forfeit_expired_games,
    forfeit_stalled_games,
    notify_deadline_warnings,
)
from skatebattle.services.games.timeouts import process_timeouts


SWEEPS: List[Tuple[str, Callable[[], Dict[str, int]]]] = [
    ('timeouts', process_timeouts),
    ('expired_games', forfeit_expired_games),
    ('stalled_games', forfeit_stalled_games),
    ('deadline_warnings', notify_deadline_warnings),
    ('vote_timeouts', process_vote_timeouts),
]

_scheduler_started = False


def run_sweeps(app) -> Dict[str, int]:
    """Run every sweep once and return their counts, prefixed by sweep name.

    A failing sweep is logged and skipped; the others still run.
    """
    totals: Dict[str, int] = {}
    with app.app_context():
        for name, sweep in SWEEPS:
            try:
                counts = sweep()
            except Exception:
                app.logger.exception(f"[sweep-error] sweep={name}")
                continue
            for key, value in counts.items():
                totals[f"{name}.{key}"] = value
        app.logger.info("[sweep-done] " + " ".join(f"{k}={v}" for k, v in totals.items()))
    return totals


def start_sweep_scheduler(app) -> None:
    """Start the periodic sweep loop as a Socket.IO background task.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Starts at most one loop per process
    """
    global _scheduler_started
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return
    if _scheduler_started:
        app.logger.info("[sweep-skip] scheduler already running")
        return
    _scheduler_started = True

    interval = max(1, int(app.config.get('SWEEP_INTERVAL_SEC', 10)))
    app.logger.info(f"[sweep-start] interval={interval}s")

    def _worker():
        hb = int(app.config.get('SWEEP_HEARTBEAT_SEC', 0))
        last_beat = time.time()
        while True:
            socketio.sleep(interval)
            run_sweeps(app)
            if hb > 0 and time.time() - last_beat >= hb:
                last_beat = time.time()
                app.logger.info(f"[sweep-heartbeat] interval={interval}s")

    socketio.start_background_task(_worker)
