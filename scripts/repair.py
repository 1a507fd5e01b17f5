#!/usr/bin/env python3
"""CLI: Repair and sanitize a saved (possibly truncated) model response."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Ensure the package is importable when running as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from smartdraw.elements.optimize import optimize_elements
from smartdraw.stream.repair import CodeParseError, parse_code


def main() -> None:
    parser = argparse.ArgumentParser(description="Repair a raw model response into Excalidraw elements")
    parser.add_argument("path", type=Path, help="File holding the raw response text ('-' for stdin)")
    parser.add_argument(
        "--optimize",
        action="store_true",
        help="Also run the post-stream optimizer (overlaps, arrow anchors)",
    )
    args = parser.parse_args()

    raw = sys.stdin.read() if str(args.path) == "-" else args.path.read_text(encoding="utf-8")
    try:
        elements = parse_code(raw)
    except CodeParseError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.optimize:
        elements = optimize_elements(elements)
    print(f"{len(elements)} element(s) recovered from {len(raw)} chars", file=sys.stderr)
    print(json.dumps(elements, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
