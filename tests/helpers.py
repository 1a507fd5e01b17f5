"""Shared test helpers: fake streaming providers and mock Gemini chunk factories."""

import asyncio
from unittest.mock import MagicMock


def _make_chunk(text: str | None):
    """Create a mock streamed Gemini response chunk."""
    chunk = MagicMock()
    chunk.text = text
    return chunk


class _AsyncChunks:
    """Async iterator over mock chunks, as returned by generate_content_stream."""

    def __init__(self, chunks, error: Exception | None = None):
        self._chunks = list(chunks)
        self._error = error

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._chunks:
            return self._chunks.pop(0)
        if self._error is not None:
            raise self._error
        raise StopAsyncIteration


def split_chunks(text: str, size: int) -> list[str]:
    return [text[i:i + size] for i in range(0, len(text), size)]


class FakeStreamProvider:
    """Provider yielding scripted text fragments.

    ``pause_after`` blocks the stream after that many fragments until
    ``release`` is set, so tests can cancel mid-stream deterministically.
    """

    def __init__(self, chunks, error: Exception | None = None, pause_after: int | None = None):
        self.chunks = list(chunks)
        self.error = error
        self.pause_after = pause_after
        self.paused = asyncio.Event()
        self.release = asyncio.Event()
        self.closed = False
        self.calls: list[dict] = []

    async def stream(self, prompt, system=None, image=None):
        self.calls.append({"prompt": prompt, "system": system, "image": image})
        try:
            for i, chunk in enumerate(self.chunks):
                if self.pause_after is not None and i == self.pause_after:
                    self.paused.set()
                    await self.release.wait()
                yield chunk
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True
