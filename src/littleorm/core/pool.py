"""
Pool of reusable builder contexts.

Contexts are handed out reset and exclusively owned by one caller until the
terminal operation puts them back. The free-list is a thread-safe LIFO queue,
so two concurrent acquisitions never observe the same context.
"""

import threading
from queue import LifoQueue, Empty, Full
from typing import Any, Callable, Dict, Optional, Union
import logging

from ..config.logging_config import OrmLoggerAdapter


class ContextPool:
    """
    Thread-safe free-list of builder contexts.

    Idle contexts beyond `max_idle` are dropped on release and left to the
    garbage collector; acquisition never blocks and allocates when the
    free-list is empty.
    """

    def __init__(self, factory: Callable[[], Any], max_idle: int = 64,
                 logger: Optional[Union[logging.Logger, OrmLoggerAdapter]] = None):
        """
        Args:
            factory: Allocates a new context
            max_idle: Idle contexts kept for reuse; 0 disables reuse
            logger: Plain loggers are wrapped in an OrmLoggerAdapter
        """
        self._factory = factory
        self.max_idle = max_idle
        if logger is None:
            logger = logging.getLogger('littleorm.pool')
        if not isinstance(logger, OrmLoggerAdapter):
            logger = OrmLoggerAdapter(logger)
        self.logger: OrmLoggerAdapter = logger

        self._idle = LifoQueue(maxsize=max_idle) if max_idle > 0 else None
        self._lock = threading.Lock()
        self._checked_out = 0

        # Statistics
        self.stats = {
            'contexts_created': 0,
            'contexts_acquired': 0,
            'contexts_released': 0,
            'contexts_discarded': 0,
        }

    def _create(self) -> Any:
        ctx = self._factory()
        with self._lock:
            self.stats['contexts_created'] += 1
        self.logger.pool_event('created', f"total created: {self.stats['contexts_created']}")
        return ctx

    def acquire(self) -> Any:
        """
        Take an idle context, or allocate one, and reset it.

        Returns:
            A context exclusively owned by the caller
        """
        ctx = None
        if self._idle is not None:
            try:
                ctx = self._idle.get_nowait()
            except Empty:
                pass
        if ctx is None:
            ctx = self._create()

        ctx._reset()
        ctx._checked_out = True
        with self._lock:
            self._checked_out += 1
            self.stats['contexts_acquired'] += 1
        return ctx

    def release(self, ctx: Any) -> None:
        """
        Return a context after its terminal operation.

        A context that is not checked out is ignored with a warning.
        """
        with self._lock:
            if not ctx._checked_out:
                self.logger.warning("Ignoring release of a context that is not checked out")
                return
            ctx._checked_out = False
            self._checked_out -= 1
            self.stats['contexts_released'] += 1

        ctx._reset()
        if self._idle is None:
            self._discard()
            return
        try:
            self._idle.put_nowait(ctx)
            self.logger.pool_event('released')
        except Full:
            self._discard()

    def _discard(self) -> None:
        with self._lock:
            self.stats['contexts_discarded'] += 1
        self.logger.pool_event('discarded', f"free-list holds {self.max_idle}")

    def get_stats(self) -> Dict[str, Any]:
        """Get context pool statistics."""
        with self._lock:
            return {
                'max_idle': self.max_idle,
                'idle_contexts': self._idle.qsize() if self._idle is not None else 0,
                'checked_out_contexts': self._checked_out,
                'stats': self.stats.copy(),
            }
