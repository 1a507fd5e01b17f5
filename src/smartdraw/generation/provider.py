"""LLM provider interface and Gemini streaming implementation."""

from __future__ import annotations

import base64
import binascii
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from smartdraw import config

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised when the model request or its stream fails."""


@dataclass
class ImageInput:
    data: bytes
    mime_type: str = "image/png"

    @classmethod
    def from_data_url(cls, url: str) -> ImageInput:
        """Parse ``data:image/png;base64,....`` (a bare base64 payload is accepted too)."""
        header, _, payload = url.partition(",")
        if not payload:
            header, payload = "", url
        mime_type = "image/png"
        if header.startswith("data:"):
            mime_type = header[5:].split(";", 1)[0] or mime_type
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 image data: {e}") from e
        return cls(data=data, mime_type=mime_type)


class GenerationProvider(Protocol):
    """Protocol for streaming text generation providers."""

    def stream(
        self, prompt: str, system: str | None = None, image: ImageInput | None = None,
    ) -> AsyncIterator[str]:
        """Yield response text fragments in arrival order."""
        ...


class GeminiProvider:
    """Gemini implementation of streaming generation."""

    def __init__(
        self,
        api_key: str | None = None,
        generation_model: str | None = None,
    ) -> None:
        self._client = genai.Client(api_key=api_key or config.GEMINI_API_KEY)
        self._generation_model = generation_model or config.GEMINI_MODEL

    @property
    def model(self) -> str:
        return self._generation_model

    async def stream(
        self, prompt: str, system: str | None = None, image: ImageInput | None = None,
    ) -> AsyncIterator[str]:
        """Stream text from Gemini.

        Args:
            prompt: The user prompt.
            system: Optional system instruction.
            image: Optional image attached to the prompt.

        Yields:
            Non-empty text fragments.

        Raises:
            ProviderError: if the request is rejected or the stream breaks.
        """
        logger.debug("Stream via %s (%d char prompt, image=%s)",
                     self._generation_model, len(prompt), image is not None)
        t0 = time.perf_counter()
        contents: list = [prompt]
        if image is not None:
            contents.append(types.Part.from_bytes(data=image.data, mime_type=image.mime_type))
        gen_config = None
        if system:
            gen_config = types.GenerateContentConfig(system_instruction=system)

        chars = 0
        try:
            response = await self._client.aio.models.generate_content_stream(
                model=self._generation_model,
                contents=contents,
                config=gen_config,
            )
            async for chunk in response:
                text = chunk.text
                if text:
                    chars += len(text)
                    yield text
        except genai_errors.APIError as e:
            logger.error("Gemini stream failed after %d chars: %s", chars, e)
            raise ProviderError(f"Model request failed: {e}") from e
        logger.debug("Stream complete: %d chars, %.0fms", chars, (time.perf_counter() - t0) * 1000)
