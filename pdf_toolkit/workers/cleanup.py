"""Deferred artifact cleanup.

Operations hand every path they touched to ``CleanupScheduler.schedule`` and
return immediately; a single daemon thread removes each path once its delay
has elapsed. Removal is idempotent: a path that is already gone is skipped,
and removal errors are logged, never raised.
"""

import heapq
import itertools
import logging
import shutil
import threading
import time
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


def remove_path(path: Path) -> bool:
    """Remove a file or directory tree if it still exists.

    Returns:
        True if something was removed.
    """
    path = Path(path)
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink(missing_ok=True)
        else:
            return False
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.error(f"[cleanup] Failed to cleanup {path}: {e}")
        return False
    logger.info(f"[cleanup] Cleaned up: {path.name}")
    return True


class CleanupScheduler:
    """Timer queue of paths to remove, drained by one background thread."""

    def __init__(self, root: Path, default_delay: float = 1800.0) -> None:
        self.root = Path(root)
        self.default_delay = default_delay
        self._entries: List[Tuple[float, int, Path]] = []
        self._counter = itertools.count()
        self._condition = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._stopping = False

    @property
    def pending(self) -> int:
        with self._condition:
            return len(self._entries)

    def schedule(self, paths: Iterable[Path], delay: Optional[float] = None) -> None:
        """Register paths for removal after ``delay`` seconds. Returns immediately."""
        delay = self.default_delay if delay is None else max(0.0, float(delay))
        due = time.monotonic() + delay
        unique = {Path(p) for p in paths if p}
        if not unique:
            return

        with self._condition:
            for path in sorted(unique):
                heapq.heappush(self._entries, (due, next(self._counter), path))
            self._condition.notify()

        logger.info(f"[cleanup] Scheduled {len(unique)} paths for removal in {delay:.0f}s")
        if self._thread is None:
            self.start()

    def _pop_due(self, now: float) -> List[Path]:
        due = []
        while self._entries and self._entries[0][0] <= now:
            due.append(heapq.heappop(self._entries)[2])
        return due

    def run_pending(self, now: Optional[float] = None) -> int:
        """Remove every entry whose time has come. Returns how many paths were removed."""
        with self._condition:
            due = self._pop_due(time.monotonic() if now is None else now)
        return sum(1 for path in due if remove_path(path))

    def _worker(self) -> None:
        logger.info("[cleanup] Cleanup scheduler started")
        while True:
            with self._condition:
                while not self._stopping:
                    if self._entries:
                        wait = self._entries[0][0] - time.monotonic()
                        if wait <= 0:
                            break
                        self._condition.wait(timeout=wait)
                    else:
                        self._condition.wait()
                if self._stopping:
                    return
                due = self._pop_due(time.monotonic())

            for path in due:
                try:
                    remove_path(path)
                except Exception as e:
                    logger.exception(f"[cleanup] Cleanup error: {e}")

    def start(self) -> None:
        """Start the background thread once."""
        with self._condition:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stopping = False
            self._thread = threading.Thread(target=self._worker, daemon=True, name="cleanup-scheduler")
            self._thread.start()

    def shutdown(self, drain: bool = True, timeout: float = 5.0) -> int:
        """Stop the worker. With ``drain`` every pending path is removed now."""
        with self._condition:
            self._stopping = True
            self._condition.notify_all()
            thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
        self._thread = None

        if not drain:
            return 0
        with self._condition:
            remaining = [entry[2] for entry in self._entries]
            self._entries.clear()
        removed = sum(1 for path in remaining if remove_path(path))
        logger.info(f"[cleanup] Drained {len(remaining)} pending entries on shutdown ({removed} removed)")
        return removed

    def sweep_stale(self, max_age: float) -> int:
        """Remove entries in the root older than ``max_age`` seconds (mtime based).

        Catches artifacts whose timers were lost with a previous process.
        """
        if not self.root.exists():
            return 0
        cutoff = time.time() - max_age
        removed = 0
        try:
            children = list(self.root.iterdir())
        except OSError as e:
            logger.error(f"[cleanup] Cleanup scan error: {e}")
            return 0
        for child in children:
            if child.name.startswith("."):
                continue
            try:
                mtime = child.stat().st_mtime
            except OSError:
                continue
            if mtime < cutoff and remove_path(child):
                removed += 1
        if removed:
            logger.info(f"[cleanup] Startup sweep removed {removed} stale entries")
        return removed
