#!/usr/bin/env python3
"""
Main Loop Dispatcher
Runs blocking work (Drive calls, image downloads) on a small worker pool and
hands every completion back to the main loop, so slideshow state is only ever
touched from one thread
"""

import logging
import queue
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class MainLoopDispatcher:
    """Worker pool plus a completion queue drained by run_pending()"""

    def __init__(self, max_workers: int = 2):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="gframe-worker")
        self._completions: "queue.Queue[tuple]" = queue.Queue()
        self._closed = False

    def call_soon(self, fn: Callable[..., Any], *args: Any) -> None:
        """Queue fn(*args) to run on the main loop. Safe from any thread."""
        self._completions.put((fn, args))

    def submit(self, fn: Callable[..., Any], *args: Any,
               on_success: Optional[Callable[[Any], None]] = None,
               on_failure: Optional[Callable[[Exception], None]] = None) -> Optional[Future]:
        """Run fn(*args) on a worker; its result or exception is delivered on the main loop"""
        if self._closed:
            logger.debug(f"Dispatcher closed, dropping {getattr(fn, '__name__', fn)}")
            return None

        def _done(future: Future):
            try:
                result = future.result()
            except Exception as e:
                if on_failure is not None:
                    self.call_soon(on_failure, e)
                else:
                    logger.error(f"Background task failed: {e}", exc_info=e)
                return
            if on_success is not None:
                self.call_soon(on_success, result)

        future = self._executor.submit(fn, *args)
        future.add_done_callback(_done)
        return future

    def run_pending(self, limit: Optional[int] = None) -> int:
        """Run queued completions on the calling (main) thread. Returns how many ran."""
        count = 0
        while limit is None or count < limit:
            try:
                fn, args = self._completions.get_nowait()
            except queue.Empty:
                break
            count += 1
            try:
                fn(*args)
            except Exception as e:
                logger.error(f"Error in main loop callback {getattr(fn, '__name__', fn)}: {e}", exc_info=True)
        return count

    def shutdown(self, wait: bool = False) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=True)
