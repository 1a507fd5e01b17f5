"""API router: health, chart types, generation (SSE), code tools, history."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict

from fastapi import APIRouter, Header, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from smartdraw import config
from smartdraw.elements.optimize import optimize_code
from smartdraw.generation.prompts import CHART_TYPE_NAMES
from smartdraw.generation.provider import GeminiProvider, ImageInput
from smartdraw.generation.session import TERMINAL_EVENTS, GenerationRequest, SessionManager
from smartdraw.storage.history_store import HistoryStore
from smartdraw.stream.repair import CodeParseError, parse_code

logger = logging.getLogger(__name__)

router = APIRouter()
_session_manager = SessionManager()

MAX_FILE_BYTES = 1 * 1024 * 1024
MAX_IMAGE_BYTES = 5 * 1024 * 1024
KEEPALIVE_SECONDS = 30.0

# events that carry a full element list and so make an earlier snapshot redundant
_SUPERSEDING_EVENTS = ("snapshot", "done", "cancelled")


class AccessDenied(Exception):
    """Raised when a request carries neither a valid password nor its own model config."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def _get_history_store() -> HistoryStore:
    store = HistoryStore(config.SQLITE_PATH)
    store.init_db()
    return store


def _make_provider(model_config: dict) -> GeminiProvider:
    return GeminiProvider(api_key=model_config["api_key"], generation_model=model_config.get("model"))


# ── Health ──


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/chart-types")
def chart_types():
    return {"chart_types": [{"key": k, "name": v} for k, v in CHART_TYPE_NAMES.items()]}


# ── Generation ──


class ModelConfig(BaseModel):
    name: str = "custom"
    api_key: str = ""
    model: str | None = None


class AttachedFile(BaseModel):
    name: str = "untitled"
    content: str = ""


class GenerateRequest(BaseModel):
    user_input: str = ""
    chart_type: str = "auto"
    files: list[AttachedFile] = []
    image: str | None = None  # data URL
    config: ModelConfig | None = None


class CancelRequest(BaseModel):
    session_id: str | None = None


def resolve_model_config(access_password: str | None, requested: ModelConfig | None) -> dict:
    """Pick the model config for a request.

    A password unlocks the server-side config; otherwise the caller must bring
    its own API key.

    Raises:
        AccessDenied: with the HTTP status to report.
    """
    if access_password:
        if not config.ACCESS_PASSWORD:
            raise AccessDenied(400, "Access password is not configured on the server")
        if access_password != config.ACCESS_PASSWORD:
            raise AccessDenied(401, "Invalid access password")
        try:
            return config.server_model_config()
        except RuntimeError as e:
            raise AccessDenied(500, str(e)) from e

    if requested is None or not requested.api_key:
        raise AccessDenied(400, "Missing model config: provide an access password or an api_key")
    return {
        "name": requested.name,
        "api_key": requested.api_key,
        "model": requested.model or config.GEMINI_MODEL,
    }


def _decode_image(data_url: str) -> ImageInput:
    try:
        image = ImageInput.from_data_url(data_url)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if len(image.data) > MAX_IMAGE_BYTES:
        raise HTTPException(status_code=413, detail="Image exceeds the 5 MB limit")
    return image


def _check_files(files: list[AttachedFile]) -> None:
    for f in files:
        if len(f.content.encode("utf-8")) > MAX_FILE_BYTES:
            raise HTTPException(status_code=413, detail=f"File {f.name!r} exceeds the 1 MB limit")


def _drain(q: asyncio.Queue, first: dict) -> list[dict]:
    """Take everything already queued, dropping snapshots a later event supersedes."""
    events = [first]
    while not q.empty():
        events.append(q.get_nowait())
    kept = []
    for event, nxt in zip(events, events[1:] + [None]):
        if event["type"] == "snapshot" and nxt is not None and nxt["type"] in _SUPERSEDING_EVENTS:
            continue
        kept.append(event)
    return kept


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


@router.post("/generate")
async def generate(req: GenerateRequest, x_access_password: str | None = Header(default=None)):
    """Start a generation session and stream its events as SSE.

    Closing the connection cancels the session.
    """
    try:
        model_config = resolve_model_config(x_access_password, req.config)
    except AccessDenied as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    if not (req.user_input.strip() or req.files or req.image):
        raise HTTPException(status_code=400, detail="Provide a request text, files or an image")
    _check_files(req.files)
    image = _decode_image(req.image) if req.image else None

    logger.info(
        "POST /generate chart_type=%s config=%s input=%r",
        req.chart_type, model_config["name"], req.user_input[:120],
    )
    provider = _make_provider(model_config)
    session = await _session_manager.start(
        provider,
        GenerationRequest(
            user_input=req.user_input,
            chart_type=req.chart_type,
            files=[f.model_dump() for f in req.files],
            image=image,
            config_name=model_config["name"],
            model=model_config.get("model"),
        ),
        history=_get_history_store(),
    )
    sub_queue = _session_manager.subscribe(session.id)

    async def event_generator():
        try:
            yield _sse({"type": "session", "id": session.id})
            while True:
                try:
                    first = await asyncio.wait_for(sub_queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                for event in _drain(sub_queue, first):
                    yield _sse(event)
                    if event["type"] in TERMINAL_EVENTS:
                        return
        finally:
            _session_manager.unsubscribe(session.id, sub_queue)
            if not session.finished:
                logger.info("Client left session %s; cancelling", session.id)
                _session_manager.cancel(session.id, "Client disconnected")

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/generate/cancel")
def cancel_generation(req: CancelRequest = CancelRequest()):
    cancelled = _session_manager.cancel(req.session_id)
    return {"cancelled": cancelled}


@router.get("/generate/{session_id}")
def generation_status(session_id: str):
    status = _session_manager.get_status(session_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return status


# ── Code tools ──


class CodeRequest(BaseModel):
    code: str


@router.post("/code/parse")
def parse_code_endpoint(req: CodeRequest):
    """Repair and sanitize pasted code into renderable elements."""
    try:
        elements = parse_code(req.code)
    except CodeParseError as e:
        return {"elements": [], "error": str(e)}
    return {"elements": elements, "error": None}


@router.post("/code/optimize")
def optimize_code_endpoint(req: CodeRequest):
    return {"code": optimize_code(req.code)}


# ── History ──


@router.get("/history")
def list_history(limit: int = Query(default=50, ge=1, le=500)):
    store = _get_history_store()
    return store.list_history(limit=limit)


@router.get("/history/{history_id}")
def get_history(history_id: int):
    store = _get_history_store()
    entry = store.get_history(history_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="History entry not found")
    return asdict(entry)


@router.delete("/history/{history_id}")
def delete_history(history_id: int):
    store = _get_history_store()
    if not store.delete_history(history_id):
        raise HTTPException(status_code=404, detail="History entry not found")
    return {"deleted": history_id}


@router.delete("/history")
def clear_history():
    store = _get_history_store()
    removed = store.clear_history()
    logger.info("Cleared %d history entr%s", removed, "y" if removed == 1 else "ies")
    return {"deleted": removed}
