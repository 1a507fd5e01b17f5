#!/usr/bin/env python3
"""CLI: Generate one Excalidraw diagram from a prompt, streaming progress to stderr."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
import time
from pathlib import Path

# Ensure the package is importable when running as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from smartdraw import config
from smartdraw.generation.prompts import CHART_TYPE_NAMES
from smartdraw.generation.provider import GeminiProvider, ImageInput
from smartdraw.generation.session import GenerationRequest, GenerationSession
from smartdraw.storage.history_store import HistoryStore

_IMAGE_TYPES = {".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg",
                ".webp": "image/webp", ".gif": "image/gif"}


def _print_event(event: dict) -> None:
    kind = event["type"]
    if kind == "snapshot":
        print(f"  snapshot {event['sequence']}: {len(event['elements'])} element(s)", file=sys.stderr)
    elif kind == "done":
        print(f"Done: {len(event['elements'])} element(s)", file=sys.stderr)
    elif kind == "cancelled":
        print(f"Cancelled: {event['reason']} ({len(event['elements'])} element(s) kept)", file=sys.stderr)
    elif kind == "error":
        print(f"Error: {event['error']}", file=sys.stderr)


async def _run(args: argparse.Namespace) -> int:
    files = [{"name": p.name, "content": p.read_text(encoding="utf-8")} for p in args.file]
    image = None
    if args.image:
        mime_type = _IMAGE_TYPES.get(args.image.suffix.lower(), "image/png")
        image = ImageInput(data=args.image.read_bytes(), mime_type=mime_type)

    history = None
    if not args.no_history:
        history = HistoryStore(config.SQLITE_PATH)
        history.init_db()

    provider = GeminiProvider()
    session = GenerationSession(
        provider,
        GenerationRequest(
            user_input=args.prompt,
            chart_type=args.chart_type,
            files=files,
            image=image,
            config_name="cli",
            model=provider.model,
        ),
        on_event=_print_event,
        history=history,
    )

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, session.cancel)
    t0 = time.perf_counter()
    try:
        await session.run()
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        if history is not None:
            history.close()
    print(f"({time.perf_counter() - t0:.1f}s)", file=sys.stderr)

    if session.status != "completed":
        return 1
    if args.output:
        args.output.write_text(session.code + "\n", encoding="utf-8")
        print(f"Wrote {args.output}", file=sys.stderr)
    else:
        print(session.code)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate an Excalidraw diagram")
    parser.add_argument("prompt", type=str, help="What to draw")
    parser.add_argument(
        "--chart-type",
        choices=sorted(CHART_TYPE_NAMES),
        default="auto",
        help="Diagram type (default: auto)",
    )
    parser.add_argument(
        "--file",
        type=Path,
        action="append",
        default=[],
        help="Attach a text file as reference material (repeatable)",
    )
    parser.add_argument("--image", type=Path, default=None, help="Attach an image to convert")
    parser.add_argument("--output", "-o", type=Path, default=None, help="Write the final JSON here")
    parser.add_argument("--no-history", action="store_true", help="Do not save to the history store")
    args = parser.parse_args()

    if not config.GEMINI_API_KEY:
        print("Error: GEMINI_API_KEY is not set.", file=sys.stderr)
        sys.exit(1)

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
