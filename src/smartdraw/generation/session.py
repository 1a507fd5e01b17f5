"""Generation sessions: one model stream driven through the snapshot pipeline.

A ``GenerationSession`` owns the raw buffer of a single request. Its loop
suspends only while waiting for the next chunk, and that wait is raced
against the session's cancellation token, so a user stop takes effect
immediately and never triggers the post-stream optimizer.

``SessionManager`` keeps at most one session active: starting a new one
cancels the previous one first, so two sessions never race to produce
snapshots for the same canvas.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

from smartdraw import config
from smartdraw.elements.identity import IdentityStabilizer
from smartdraw.generation.prompts import SYSTEM_PROMPT, build_user_prompt
from smartdraw.generation.provider import GenerationProvider, ImageInput, ProviderError
from smartdraw.storage.history_store import HistoryStore
from smartdraw.stream.pipeline import Snapshot, StreamPipeline

logger = logging.getLogger(__name__)

TERMINAL_EVENTS = ("done", "cancelled", "error")

# Finished sessions kept for status lookups and late subscribers
FINISHED_SESSION_RETENTION = 20


@dataclass
class GenerationRequest:
    """What the operator asked for, plus the config descriptor recorded in history."""

    user_input: str = ""
    chart_type: str = "auto"
    files: list[dict] = field(default_factory=list)
    image: ImageInput | None = None
    config_name: str | None = None
    model: str | None = None

    @property
    def prompt(self) -> str:
        return build_user_prompt(self.user_input, self.chart_type, self.files)


class CancellationToken:
    """Cooperative stop signal checked at the session's suspension point."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str = "Cancelled by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class GenerationSession:
    def __init__(
        self,
        provider: GenerationProvider,
        request: GenerationRequest,
        on_event: Callable[[dict], None] | None = None,
        history: HistoryStore | None = None,
        stabilizer: IdentityStabilizer | None = None,
        session_id: str | None = None,
    ) -> None:
        self.id = session_id or str(uuid.uuid4())
        self.request = request
        self.status = "pending"
        self.error: str | None = None
        self.code: str | None = None
        self.history_id: int | None = None
        self.last_event: dict | None = None
        self._provider = provider
        self._on_event = on_event
        self._history = history
        self._token = CancellationToken()
        self._pipeline = StreamPipeline(stabilizer or IdentityStabilizer(config.IDENTITY_STRATEGY))

    @property
    def snapshot(self) -> Snapshot | None:
        """The last applied snapshot (the visible state)."""
        return self._pipeline.last_snapshot

    @property
    def buffer(self) -> str:
        return self._pipeline.buffer

    @property
    def finished(self) -> bool:
        return self.status in ("completed", "cancelled", "failed")

    def cancel(self, reason: str = "Cancelled by user") -> None:
        self._token.cancel(reason)

    def to_dict(self) -> dict:
        snapshot = self.snapshot
        return {
            "id": self.id,
            "status": self.status,
            "error": self.error,
            "history_id": self.history_id,
            "sequence": snapshot.sequence if snapshot else 0,
            "element_count": len(snapshot.elements) if snapshot else 0,
        }

    def _emit(self, event: dict) -> None:
        self.last_event = event
        if self._on_event is not None:
            self._on_event(event)

    async def _next_chunk(self, chunks: AsyncIterator[str]) -> str | None:
        """Wait for the next chunk or for cancellation, whichever comes first.

        Returns None at end of stream or on cancellation.
        """
        if self._token.cancelled:
            return None
        next_chunk = asyncio.ensure_future(chunks.__anext__())
        stop = asyncio.ensure_future(self._token.wait())
        try:
            await asyncio.wait({next_chunk, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not next_chunk.done():
                next_chunk.cancel()
                await asyncio.gather(next_chunk, return_exceptions=True)
        if next_chunk.cancelled():
            return None
        try:
            return next_chunk.result()
        except StopAsyncIteration:
            return None

    async def _close(self, chunks: AsyncIterator[str]) -> None:
        aclose = getattr(chunks, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except RuntimeError as e:
            logger.debug("Session %s: stream close skipped: %s", self.id, e)

    async def run(self) -> None:
        """Consume the model stream to completion, error or cancellation."""
        self.status = "running"
        request = self.request
        t0 = time.perf_counter()
        logger.info(
            "Session %s started: chart_type=%s, %d file(s), image=%s, input=%r",
            self.id, request.chart_type, len(request.files), request.image is not None,
            request.user_input[:120],
        )
        chunks = self._provider.stream(request.prompt, system=SYSTEM_PROMPT, image=request.image).__aiter__()
        try:
            while True:
                chunk = await self._next_chunk(chunks)
                if self._token.cancelled:
                    self._finish_cancelled(time.perf_counter() - t0)
                    return
                if chunk is None:
                    break
                snapshot = self._pipeline.feed(chunk)
                if snapshot is not None:
                    self._emit({"type": "snapshot", **snapshot.to_dict()})
        except asyncio.CancelledError:
            self.status = "cancelled"
            self._pipeline.reset()
            raise
        except ProviderError as e:
            self._finish_failed(str(e), time.perf_counter() - t0)
            return
        except Exception as e:
            logger.exception("Session %s: stream failed", self.id)
            self._finish_failed(f"Stream failed: {e}", time.perf_counter() - t0)
            return
        finally:
            await self._close(chunks)

        try:
            self._finish_completed(time.perf_counter() - t0)
        except Exception as e:
            logger.exception("Session %s: finalize failed", self.id)
            self._finish_failed(f"Finalize failed: {e}", time.perf_counter() - t0)

    def _finish_completed(self, elapsed: float) -> None:
        final = self._pipeline.finalize()
        chars = len(self._pipeline.buffer)
        self._pipeline.reset()
        if final is None:
            self._finish_failed("The model response contained no diagram elements", elapsed)
            return

        self.code = json.dumps(final.elements, indent=2, ensure_ascii=False)
        self.history_id = self._persist(self.code)
        self.status = "completed"
        logger.info(
            "Session %s complete: %d element(s), %d snapshot(s), %d chars, %.2fs",
            self.id, len(final.elements), final.sequence, chars, elapsed,
        )
        self._emit({**final.to_dict(), "type": "done", "code": self.code, "history_id": self.history_id})

    def _finish_cancelled(self, elapsed: float) -> None:
        self._pipeline.reset()
        self.status = "cancelled"
        logger.info("Session %s cancelled after %.2fs: %s", self.id, elapsed, self._token.reason)
        snapshot = self.snapshot
        self._emit({
            **(snapshot.to_dict() if snapshot else {"sequence": 0, "final": False, "elements": []}),
            "type": "cancelled",
            "reason": self._token.reason,
        })

    def _finish_failed(self, message: str, elapsed: float) -> None:
        self._pipeline.reset()
        self.status = "failed"
        self.error = message
        logger.error("Session %s failed after %.2fs: %s", self.id, elapsed, message)
        self._emit({"type": "error", "error": message})

    def _persist(self, code: str) -> int | None:
        request = self.request
        if self._history is None or not request.user_input.strip():
            return None
        try:
            history_id = self._history.insert_history(
                user_input=request.user_input,
                generated_code=code,
                chart_type=request.chart_type,
                config_name=request.config_name,
                model=request.model,
            )
            self._history.prune(config.HISTORY_LIMIT)
            return history_id
        except sqlite3.Error:
            logger.exception("Session %s: failed to save history", self.id)
            return None


class SessionManager:
    """Runs generation sessions and streams their events to subscribers.

    Only one session is active at a time; starting another cancels it.
    """

    def __init__(self, retain: int = FINISHED_SESSION_RETENTION) -> None:
        self._retain = retain
        self._sessions: dict[str, GenerationSession] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._subscribers: dict[str, list[asyncio.Queue]] = {}
        self._active_id: str | None = None
        self._lock = asyncio.Lock()

    @property
    def active(self) -> GenerationSession | None:
        if self._active_id is None:
            return None
        return self._sessions.get(self._active_id)

    async def start(
        self,
        provider: GenerationProvider,
        request: GenerationRequest,
        history: HistoryStore | None = None,
    ) -> GenerationSession:
        """Cancel any in-flight session, then start a new one in the background."""
        async with self._lock:
            previous = self.active
            if previous is not None and not previous.finished:
                logger.info("Cancelling session %s for a new request", previous.id)
                previous.cancel("Superseded by a new request")
                await self.wait(previous.id)

            session_id = str(uuid.uuid4())
            session = GenerationSession(
                provider, request,
                on_event=lambda event: self._broadcast(session_id, event),
                history=history,
                session_id=session_id,
            )
            self._sessions[session_id] = session
            self._subscribers[session_id] = []
            self._active_id = session_id
            self._tasks[session_id] = asyncio.create_task(self._run(session))
        return session

    async def _run(self, session: GenerationSession) -> None:
        try:
            await session.run()
        except asyncio.CancelledError:
            logger.info("Session %s task cancelled", session.id)
            raise
        finally:
            if self._active_id == session.id:
                self._active_id = None
            self._evict()

    def _evict(self) -> None:
        """Forget the oldest finished sessions beyond the retention limit."""
        finished = [sid for sid, s in self._sessions.items() if s.finished and sid != self._active_id]
        for sid in finished[:max(len(finished) - self._retain, 0)]:
            del self._sessions[sid]
            self._tasks.pop(sid, None)
            self._subscribers.pop(sid, None)
        if len(finished) > self._retain:
            logger.debug("Evicted %d finished session(s)", len(finished) - self._retain)

    def cancel(self, session_id: str | None = None, reason: str = "Cancelled by user") -> bool:
        """Cancel the given (or the active) session. Returns False if nothing was running."""
        session = self._sessions.get(session_id) if session_id else self.active
        if session is None or session.finished:
            return False
        session.cancel(reason)
        return True

    async def wait(self, session_id: str) -> None:
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def get_status(self, session_id: str) -> dict | None:
        session = self._sessions.get(session_id)
        return session.to_dict() if session else None

    def subscribe(self, session_id: str) -> asyncio.Queue | None:
        """Subscribe to a session's events.

        The latest event is replayed first; snapshots replace each other, so a
        late subscriber loses nothing it needs.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return None
        q: asyncio.Queue = asyncio.Queue()
        if session.last_event is not None:
            q.put_nowait(session.last_event)
        self._subscribers[session_id].append(q)
        return q

    def unsubscribe(self, session_id: str, q: asyncio.Queue) -> None:
        subs = self._subscribers.get(session_id, [])
        if q in subs:
            subs.remove(q)

    def _broadcast(self, session_id: str, event: dict) -> None:
        for q in list(self._subscribers.get(session_id, [])):
            q.put_nowait(event)
