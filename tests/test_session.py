"""Tests for generation sessions, cancellation and the session manager."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import patch

import pytest

from smartdraw.generation.prompts import SYSTEM_PROMPT
from smartdraw.generation.provider import ImageInput, ProviderError
from smartdraw.generation.session import (
    CancellationToken,
    GenerationRequest,
    GenerationSession,
    SessionManager,
)
from tests.helpers import FakeStreamProvider, split_chunks

DOC = json.dumps([
    {"id": "a", "type": "rectangle", "x": 0, "y": 0, "width": 100, "height": 100},
    {"id": "b", "type": "rectangle", "x": 300, "y": 0, "width": 100, "height": 100},
    {"type": "arrow", "x": 0, "y": 0, "start": {"id": "a"}, "end": {"id": "b"}},
])


def _session(provider, history=None, user_input="draw two boxes", **kw):
    events: list[dict] = []
    request = GenerationRequest(user_input=user_input, config_name="test", model="fake-model", **kw)
    session = GenerationSession(provider, request, on_event=events.append, history=history)
    return session, events


class TestCancellationToken:
    def test_first_reason_wins(self):
        token = CancellationToken()
        assert not token.cancelled
        token.cancel("first")
        token.cancel("second")
        assert token.cancelled
        assert token.reason == "first"


class TestGenerationSession:
    @pytest.mark.asyncio
    async def test_completes_and_persists(self, history):
        provider = FakeStreamProvider(split_chunks(DOC, 15))
        session, events = _session(provider, history=history)
        await session.run()

        assert session.status == "completed"
        assert [e["type"] for e in events[:-1]] == ["snapshot"] * (len(events) - 1)
        done = events[-1]
        assert done["type"] == "done"
        assert done["final"] is True
        arrow = done["elements"][2]
        assert (arrow["x"], arrow["y"]) == (100, 50)
        assert json.loads(done["code"]) == done["elements"]

        entry = history.get_history(done["history_id"])
        assert entry.user_input == "draw two boxes"
        assert entry.config_name == "test"
        assert entry.model == "fake-model"
        assert json.loads(entry.generated_code) == done["elements"]
        assert provider.closed

    @pytest.mark.asyncio
    async def test_prompt_and_system_passed(self):
        provider = FakeStreamProvider([DOC])
        image = ImageInput(data=b"png", mime_type="image/png")
        session, _ = _session(provider, chart_type="flowchart", image=image)
        await session.run()
        call = provider.calls[0]
        assert call["system"] == SYSTEM_PROMPT
        assert call["image"] is image
        assert "Flowchart" in call["prompt"]
        assert call["prompt"].endswith("Request:\ndraw two boxes")

    @pytest.mark.asyncio
    async def test_cancel_keeps_last_snapshot(self, history):
        provider = FakeStreamProvider(split_chunks(DOC, 15), pause_after=5)
        session, events = _session(provider, history=history)
        with patch("smartdraw.stream.pipeline.optimize_elements") as mock_opt:
            task = asyncio.create_task(session.run())
            await provider.paused.wait()
            visible = session.snapshot
            session.cancel()
            await asyncio.wait_for(task, timeout=5)
            mock_opt.assert_not_called()

        assert session.status == "cancelled"
        assert session.snapshot is visible
        assert visible is not None
        assert session.buffer == ""
        cancelled = events[-1]
        assert cancelled["type"] == "cancelled"
        assert cancelled["elements"] == visible.elements
        assert cancelled["reason"] == "Cancelled by user"
        assert history.count() == 0
        assert provider.closed

    @pytest.mark.asyncio
    async def test_cancel_before_run(self):
        provider = FakeStreamProvider([DOC])
        session, events = _session(provider)
        session.cancel("stop")
        await session.run()
        assert session.status == "cancelled"
        assert events == [{"sequence": 0, "final": False, "elements": [], "type": "cancelled", "reason": "stop"}]

    @pytest.mark.asyncio
    async def test_provider_error(self, history):
        provider = FakeStreamProvider(split_chunks(DOC, 15)[:6], error=ProviderError("Model request failed: 503"))
        session, events = _session(provider, history=history)
        await session.run()
        assert session.status == "failed"
        assert session.error == "Model request failed: 503"
        assert events[-1] == {"type": "error", "error": "Model request failed: 503"}
        assert session.snapshot is not None
        assert history.count() == 0

    @pytest.mark.asyncio
    async def test_unexpected_error(self):
        provider = FakeStreamProvider(["[{"], error=ConnectionResetError("reset"))
        session, events = _session(provider)
        await session.run()
        assert session.status == "failed"
        assert events[-1]["error"] == "Stream failed: reset"

    @pytest.mark.asyncio
    async def test_finalize_error_ends_with_error_event(self, history):
        provider = FakeStreamProvider(split_chunks(DOC, 40))
        session, events = _session(provider, history=history)
        with patch("smartdraw.stream.pipeline.optimize_elements", side_effect=RuntimeError("boom")):
            await session.run()
        assert session.status == "failed"
        assert session.error == "Finalize failed: boom"
        assert events[-1] == {"type": "error", "error": "Finalize failed: boom"}
        assert [e["type"] for e in events].count("error") == 1
        assert history.count() == 0

    @pytest.mark.asyncio
    async def test_no_elements(self):
        provider = FakeStreamProvider(["I cannot draw that."])
        session, events = _session(provider)
        await session.run()
        assert session.status == "failed"
        assert events == [{"type": "error", "error": "The model response contained no diagram elements"}]

    @pytest.mark.asyncio
    async def test_image_only_request_not_persisted(self, history):
        provider = FakeStreamProvider([DOC])
        image = ImageInput(data=b"png")
        session, events = _session(provider, history=history, user_input="", image=image)
        await session.run()
        assert session.status == "completed"
        assert events[-1]["history_id"] is None
        assert history.count() == 0

    @pytest.mark.asyncio
    async def test_history_pruned(self, history):
        with patch("smartdraw.generation.session.config") as mock_config:
            mock_config.HISTORY_LIMIT = 2
            mock_config.IDENTITY_STRATEGY = "positional"
            for i in range(3):
                session, _ = _session(FakeStreamProvider([DOC]), history=history, user_input=f"req {i}")
                await session.run()
        assert history.count() == 2
        assert [h["user_input"] for h in history.list_history()] == ["req 2", "req 1"]


class TestSessionManager:
    @pytest.mark.asyncio
    async def test_single_active_session(self):
        manager = SessionManager()
        slow = FakeStreamProvider(split_chunks(DOC, 15), pause_after=3)
        first = await manager.start(slow, GenerationRequest(user_input="one"))
        await slow.paused.wait()
        assert manager.active is first

        second = await manager.start(FakeStreamProvider([DOC]), GenerationRequest(user_input="two"))
        assert first.status == "cancelled"
        assert first.last_event["reason"] == "Superseded by a new request"
        assert manager.active is second

        await manager.wait(second.id)
        assert second.status == "completed"
        assert manager.active is None

    @pytest.mark.asyncio
    async def test_subscribe_receives_events(self):
        manager = SessionManager()
        session = await manager.start(FakeStreamProvider(split_chunks(DOC, 40)), GenerationRequest(user_input="x"))
        q = manager.subscribe(session.id)
        events = []
        while True:
            event = await asyncio.wait_for(q.get(), timeout=5)
            events.append(event)
            if event["type"] == "done":
                break
        assert events[0]["type"] == "snapshot"
        assert manager.get_status(session.id)["status"] == "completed"

    @pytest.mark.asyncio
    async def test_late_subscriber_gets_last_event(self):
        manager = SessionManager()
        session = await manager.start(FakeStreamProvider([DOC]), GenerationRequest(user_input="x"))
        await manager.wait(session.id)
        q = manager.subscribe(session.id)
        assert q.get_nowait()["type"] == "done"

    @pytest.mark.asyncio
    async def test_cancel(self):
        manager = SessionManager()
        assert manager.cancel() is False
        slow = FakeStreamProvider(split_chunks(DOC, 15), pause_after=2)
        session = await manager.start(slow, GenerationRequest(user_input="x"))
        await slow.paused.wait()
        assert manager.cancel() is True
        await manager.wait(session.id)
        assert session.status == "cancelled"
        assert manager.cancel(session.id) is False

    def test_unknown_session(self):
        manager = SessionManager()
        assert manager.get_status("nope") is None
        assert manager.subscribe("nope") is None

    @pytest.mark.asyncio
    async def test_finished_sessions_evicted(self):
        manager = SessionManager(retain=2)
        sessions = []
        for i in range(4):
            session = await manager.start(FakeStreamProvider([DOC]), GenerationRequest(user_input=f"req {i}"))
            await manager.wait(session.id)
            sessions.append(session)
        assert all(s.status == "completed" for s in sessions)
        assert manager.get_status(sessions[0].id) is None
        assert manager.get_status(sessions[1].id) is None
        assert manager.subscribe(sessions[1].id) is None
        assert manager.get_status(sessions[3].id)["status"] == "completed"
        assert len(manager._sessions) == len(manager._tasks) == len(manager._subscribers) == 2
