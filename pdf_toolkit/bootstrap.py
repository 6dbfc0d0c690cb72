"""Runtime bootstrap for the cleanup scheduler."""

from __future__ import annotations

import atexit
import logging
import threading

logger = logging.getLogger(__name__)

_bootstrap_lock = threading.Lock()
_bootstrapped_schedulers: set = set()


def bootstrap_runtime(runtime) -> None:
    """Start background services once per scheduler.

    Sweeps artifacts left behind by a previous process, starts the cleanup
    worker and drains pending removals at interpreter exit. Every app built
    in the process gets its own drain.
    """
    scheduler = runtime.pipeline.scheduler
    with _bootstrap_lock:
        if scheduler in _bootstrapped_schedulers:
            return

        scheduler.sweep_stale(runtime.config.stale_file_max_age_seconds)
        scheduler.start()
        atexit.register(scheduler.shutdown, drain=True)
        _bootstrapped_schedulers.add(scheduler)
        logger.info(f"[bootstrap] Cleanup scheduler running ({len(_bootstrapped_schedulers)} in process)")


def is_bootstrapped() -> bool:
    """Expose runtime bootstrap state for diagnostics/tests."""
    return bool(_bootstrapped_schedulers)
