"""
A learner's session over one lecture: which subtopic is on screen, which
explanations and quizzes are loading, and what to prefetch next.

Explanation state machine per subtopic::

    idle → streaming → done
                     → cancelled   (user navigated away or pressed stop)
                     → failed      (upstream error or truncated stream)

Cancelled and failed runs can be retried; a done explanation is only
replaced by an explicit retry.
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
from contextlib import aclosing
from typing import Any, Dict, List, Optional, Set

from lectern.client.api import LectureClient
from lectern.client.controller import GenerationController, GenerationKind
from lectern.client.merge import merge_chunks
from lectern.exceptions import ModelUnavailableError, StreamAbortedError

logger = logging.getLogger(__name__)


class ExplanationStatus(str, enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclasses.dataclass
class ExplanationState:
    subtopic_id: int
    status: ExplanationStatus = ExplanationStatus.IDLE
    text: str = ""
    run_token: Optional[int] = None
    done_token: Optional[int] = None
    error: Optional[str] = None

    @property
    def can_retry(self) -> bool:
        return self.status in (ExplanationStatus.CANCELLED, ExplanationStatus.FAILED)


class LearnSession:
    """Drives explanation and quiz requests for the subtopics of one lecture."""

    def __init__(
        self,
        client: LectureClient,
        subtopic_ids: Optional[List[int]] = None,
        controller: Optional[GenerationController] = None,
        style: Optional[str] = None,
        model: Optional[str] = None,
    ) -> None:
        self.client = client
        self.subtopic_ids: List[int] = list(subtopic_ids or [])
        self.controller = controller or GenerationController()
        self.style = style
        self.model = model
        self.active: Optional[int] = None
        self.explanations: Dict[int, ExplanationState] = {}
        self.quizzes: Dict[int, List[Dict[str, Any]]] = {}
        self._background: Set[asyncio.Task] = set()

    def state(self, subtopic_id: int) -> ExplanationState:
        if subtopic_id not in self.explanations:
            self.explanations[subtopic_id] = ExplanationState(subtopic_id)
        return self.explanations[subtopic_id]

    def add_subtopic(self, subtopic: Dict[str, Any]) -> None:
        """Record a subtopic from the lecture stream; keeps stored explanations."""
        sid = subtopic["id"]
        if sid not in self.subtopic_ids:
            self.subtopic_ids.append(sid)
        if subtopic.get("explanation"):
            state = self.state(sid)
            if state.status != ExplanationStatus.STREAMING:
                state.text = subtopic["explanation"]
                state.status = ExplanationStatus.DONE

    # ------------------------------------------------------------------
    # Explanations
    # ------------------------------------------------------------------

    async def request_explanation(
        self,
        subtopic_id: int,
        active: bool = False,
        retry: bool = False,
    ) -> ExplanationState:
        """
        Stream the explanation for *subtopic_id* unless it is already done.

        If another caller already holds the reservation this call joins that
        run and returns once it settles.  The active subtopic takes over a
        reservation nobody is working on.
        """
        kind = GenerationKind.EXPLANATION
        state = self.state(subtopic_id)
        if state.status == ExplanationStatus.DONE and not retry:
            return state

        if not self.controller.reserve(kind, subtopic_id):
            if not (active and self.controller.preempt(kind, subtopic_id)):
                await self._join(kind, subtopic_id)
                return state

        token = self.controller.begin_run(kind, subtopic_id)
        task = asyncio.create_task(self._run_explanation(subtopic_id, token))
        self.controller.attach(kind, subtopic_id, token, task)
        await asyncio.wait([task])
        return state

    async def _run_explanation(self, subtopic_id: int, token: int) -> None:
        kind = GenerationKind.EXPLANATION
        state = self.state(subtopic_id)
        state.status = ExplanationStatus.STREAMING
        state.run_token = token
        state.text = ""
        state.error = None
        try:
            events = self.client.stream_explanation(
                subtopic_id, style=self.style, model=self.model
            )
            async with aclosing(events):
                async for event in events:
                    if not self.controller.is_current(kind, subtopic_id, token):
                        return
                    etype = event.get("type")
                    if etype == "chunk":
                        state.text = merge_chunks(state.text, event.get("delta", ""))
                    elif etype == "done":
                        await self._reconcile(state, event)
                        state.status = ExplanationStatus.DONE
                        state.done_token = token
                        return
                    elif etype == "error":
                        state.status = ExplanationStatus.FAILED
                        state.error = event.get("error") or "stream failed"
                        return

            if self.controller.is_current(kind, subtopic_id, token):
                state.status = ExplanationStatus.FAILED
                state.error = "stream ended before completion"
        except asyncio.CancelledError:
            if state.run_token == token and state.status == ExplanationStatus.STREAMING:
                state.status = ExplanationStatus.CANCELLED
            raise
        except Exception as exc:
            logger.warning("Explanation stream for subtopic %d failed: %s", subtopic_id, exc)
            if self.controller.is_current(kind, subtopic_id, token):
                state.status = ExplanationStatus.FAILED
                state.error = str(exc) or "stream failed"
        finally:
            self.controller.finish(kind, subtopic_id, token)

    async def _reconcile(self, state: ExplanationState, event: Dict[str, Any]) -> None:
        """Replace merged chunks with the stored, sanitized explanation."""
        final = event.get("explanation")
        if final is None:
            subtopic = await self.client.get_subtopic(state.subtopic_id)
            final = subtopic.get("explanation")
        if final:
            state.text = final

    async def explanation_text(self, subtopic_id: int, active: bool = True) -> str:
        """
        Finished explanation text for *subtopic_id*.

        Raises:
            StreamAbortedError: the run was cancelled before it finished.
            ModelUnavailableError: the stream failed or ended early.
        """
        state = await self.request_explanation(subtopic_id, active=active)
        if state.status == ExplanationStatus.CANCELLED:
            raise StreamAbortedError(f"explanation for subtopic {subtopic_id} was cancelled")
        if state.status != ExplanationStatus.DONE:
            raise ModelUnavailableError(state.error or "explanation stream failed")
        return state.text

    def cancel(self, subtopic_id: int) -> bool:
        """Stop an in-flight explanation; its state becomes ``cancelled``."""
        state = self.state(subtopic_id)
        cancelled = self.controller.cancel(GenerationKind.EXPLANATION, subtopic_id)
        if state.status == ExplanationStatus.STREAMING:
            state.status = ExplanationStatus.CANCELLED
        return cancelled

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def navigate(self, subtopic_id: int) -> asyncio.Task:
        """
        Make *subtopic_id* the active subtopic.

        Cancels the previous active subtopic's stream (other in-flight
        streams may be prefetches and keep running), starts the active
        explanation and prefetches the next subtopic.  Returns the task for
        the active request.
        """
        previous = self.active
        self.active = subtopic_id
        if previous is not None and previous != subtopic_id:
            if self.state(previous).status == ExplanationStatus.STREAMING:
                self.cancel(previous)

        task = asyncio.create_task(self.request_explanation(subtopic_id, active=True))

        next_id = self._next_subtopic(subtopic_id)
        if next_id is not None:
            prefetch = asyncio.create_task(self.request_explanation(next_id, active=False))
            self._background.add(prefetch)
            prefetch.add_done_callback(self._background.discard)
        return task

    def _next_subtopic(self, subtopic_id: int) -> Optional[int]:
        try:
            idx = self.subtopic_ids.index(subtopic_id)
        except ValueError:
            return None
        if idx + 1 < len(self.subtopic_ids):
            return self.subtopic_ids[idx + 1]
        return None

    # ------------------------------------------------------------------
    # Quizzes
    # ------------------------------------------------------------------

    async def request_quiz(self, subtopic_id: int, active: bool = False) -> List[Dict[str, Any]]:
        """Questions for *subtopic_id*, sharing one request among concurrent callers."""
        kind = GenerationKind.QUIZ
        if subtopic_id in self.quizzes:
            return self.quizzes[subtopic_id]

        if not self.controller.reserve(kind, subtopic_id):
            if not (active and self.controller.preempt(kind, subtopic_id)):
                await self._join(kind, subtopic_id)
                return self.quizzes.get(subtopic_id, [])

        token = self.controller.begin_run(kind, subtopic_id)
        task = asyncio.create_task(self._run_quiz(subtopic_id, token))
        self.controller.attach(kind, subtopic_id, token, task)
        await asyncio.wait([task])
        return self.quizzes.get(subtopic_id, [])

    async def _run_quiz(self, subtopic_id: int, token: int) -> None:
        kind = GenerationKind.QUIZ
        try:
            result = await self.client.ensure_quiz(subtopic_id, model=self.model)
            if self.controller.is_current(kind, subtopic_id, token):
                self.quizzes[subtopic_id] = result.get("questions", [])
        except Exception as exc:
            logger.warning("Quiz request for subtopic %d failed: %s", subtopic_id, exc)
        finally:
            self.controller.finish(kind, subtopic_id, token)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _join(self, kind: GenerationKind, subtopic_id: int) -> None:
        """Wait for the in-flight run of another caller without cancelling it."""
        task = self.controller.handle(kind, subtopic_id)
        if task is not None and not task.done():
            await asyncio.wait([task])
