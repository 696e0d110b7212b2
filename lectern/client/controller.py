"""
Client-side guard against duplicate generation work.

For every ``(kind, subtopic_id)`` pair the controller keeps

* a reservation: set while some caller is generating for that pair
* a run token: issued per attempt; only the latest one is current
* a handle: the asyncio task doing the work, so it can be cancelled or joined

All check-then-set operations happen under one lock.
"""
from __future__ import annotations

import asyncio
import enum
import itertools
import logging
import threading
from typing import Dict, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class GenerationKind(str, enum.Enum):
    EXPLANATION = "explanation"
    QUIZ = "quiz"


Key = Tuple[GenerationKind, int]


class GenerationController:
    """Reservations, run tokens and cancellation handles per subtopic and kind."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reserved: Dict[GenerationKind, Set[int]] = {kind: set() for kind in GenerationKind}
        self._tokens: Dict[Key, int] = {}
        self._handles: Dict[Key, asyncio.Task] = {}
        self._counter = itertools.count(1)

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    def reserve(self, kind: GenerationKind, subtopic_id: int) -> bool:
        """Reserve the pair; False if someone already holds it."""
        with self._lock:
            reserved = self._reserved[kind]
            if subtopic_id in reserved:
                return False
            reserved.add(subtopic_id)
            return True

    def release(self, kind: GenerationKind, subtopic_id: int) -> None:
        with self._lock:
            self._reserved[kind].discard(subtopic_id)

    def is_reserved(self, kind: GenerationKind, subtopic_id: int) -> bool:
        with self._lock:
            return subtopic_id in self._reserved[kind]

    def preempt(self, kind: GenerationKind, subtopic_id: int) -> bool:
        """
        Take over a reservation whose holder has no live handle.

        Returns True when the caller now holds the reservation.  A reservation
        backed by a running task is never taken over.
        """
        with self._lock:
            task = self._handles.get((kind, subtopic_id))
            if task is not None and not task.done():
                return False
            # Release and re-reserve in one step
            self._reserved[kind].add(subtopic_id)
            logger.debug("Preempted %s reservation for subtopic %d", kind.value, subtopic_id)
            return True

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def begin_run(self, kind: GenerationKind, subtopic_id: int) -> int:
        """Cancel any previous handle for the pair and issue a fresh token."""
        key = (kind, subtopic_id)
        with self._lock:
            previous = self._handles.pop(key, None)
            token = next(self._counter)
            self._tokens[key] = token
        if previous is not None and not previous.done():
            previous.cancel()
        return token

    def attach(self, kind: GenerationKind, subtopic_id: int, token: int, task: asyncio.Task) -> bool:
        """Register *task* as the cancellation handle of run *token*."""
        key = (kind, subtopic_id)
        with self._lock:
            if self._tokens.get(key) != token:
                return False
            self._handles[key] = task
            return True

    def handle(self, kind: GenerationKind, subtopic_id: int) -> Optional[asyncio.Task]:
        with self._lock:
            return self._handles.get((kind, subtopic_id))

    def has_live_handle(self, kind: GenerationKind, subtopic_id: int) -> bool:
        task = self.handle(kind, subtopic_id)
        return task is not None and not task.done()

    def current_token(self, kind: GenerationKind, subtopic_id: int) -> Optional[int]:
        with self._lock:
            return self._tokens.get((kind, subtopic_id))

    def is_current(self, kind: GenerationKind, subtopic_id: int, token: int) -> bool:
        return self.current_token(kind, subtopic_id) == token

    def finish(self, kind: GenerationKind, subtopic_id: int, token: int) -> bool:
        """
        End run *token*: drop its handle and release the reservation.

        A stale token (superseded or cancelled) changes nothing.
        """
        key = (kind, subtopic_id)
        with self._lock:
            if self._tokens.get(key) != token:
                return False
            self._handles.pop(key, None)
            self._reserved[kind].discard(subtopic_id)
            return True

    def cancel(self, kind: GenerationKind, subtopic_id: int) -> bool:
        """
        Cancel the in-flight run for the pair, if any.

        The current token is invalidated so late events from the cancelled
        run are dropped, and the reservation is released.
        """
        key = (kind, subtopic_id)
        with self._lock:
            task = self._handles.pop(key, None)
            self._tokens[key] = next(self._counter)
            self._reserved[kind].discard(subtopic_id)
        if task is not None and not task.done():
            task.cancel()
            logger.info("Cancelled %s run for subtopic %d", kind.value, subtopic_id)
            return True
        return False
