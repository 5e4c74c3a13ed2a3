"""
core/background.py -- Fire-and-forget execution for best-effort side effects.

Audit writes and welcome emails must never slow down or fail the request that
triggered them. Engines hand such work to a runner instead of calling it
inline:

    runner.submit(audit_store.log_event, event, description="audit:login_success")

BackgroundRunner schedules the call on a small ThreadPoolExecutor. Failures
are reported through a done-callback on the "authgate.background" logger and
then discarded -- nothing ever awaits the returned future for correctness.
The callback is attached after the lock is released, because a task that has
already finished runs its callback synchronously in the submitting thread.

InlineRunner has the same interface but runs the call immediately, still
swallowing (and logging) any exception. The CLI and most unit tests use it so
assertions do not race the pool.

Lifecycle: the API lifespan builds one BackgroundRunner at startup and calls
shutdown(wait=True) on the way out so queued audit rows are flushed before
the process exits.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

logger = logging.getLogger("authgate.background")


def _run_isolated(fn: Callable[..., Any], args: tuple, description: str) -> None:
    try:
        fn(*args)
    except Exception:
        logger.exception("Background task failed: %s", description)


class InlineRunner:
    """Runs submitted work immediately in the caller's thread, errors discarded."""

    def submit(self, fn: Callable[..., Any], *args: Any, description: str = "task") -> None:
        _run_isolated(fn, args, description)

    def drain(self, timeout: float | None = None) -> bool:
        return True

    def shutdown(self, wait: bool = True) -> None:
        return None


class BackgroundRunner:
    """Bounded thread pool for best-effort side effects.

    Usage:
        runner = BackgroundRunner(max_workers=4)
        runner.submit(send_welcome, user, description="welcome-email")
        runner.shutdown()
    """

    MAX_WORKERS = 32

    def __init__(self, max_workers: int = 4) -> None:
        workers = min(max(1, max_workers), self.MAX_WORKERS)
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="authgate-bg")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self._shutdown = False

    def submit(self, fn: Callable[..., Any], *args: Any, description: str = "task") -> None:
        """Schedule fn(*args). Never raises, never blocks on the work itself.

        After shutdown() the call runs inline so late submissions during
        teardown are not silently dropped.
        """
        future: Future | None = None
        with self._lock:
            if not self._shutdown:
                future = self._executor.submit(fn, *args)
                self._pending.add(future)
        if future is None:
            _run_isolated(fn, args, description)
            return
        # Outside the lock: an already-finished future runs the callback
        # right here, and _on_done takes the lock itself.
        future.add_done_callback(lambda f: self._on_done(f, description))

    def _on_done(self, future: Future, description: str) -> None:
        with self._lock:
            self._pending.discard(future)
        if future.cancelled():
            logger.warning("Background task cancelled: %s", description)
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Background task failed: %s", description, exc_info=exc)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for currently pending work. Returns True if everything finished."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _done, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting pool work. Idempotent.

        wait=True flushes queued tasks; wait=False cancels anything not yet
        started.
        """
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
        logger.info("Background runner shut down (wait=%s)", wait)
