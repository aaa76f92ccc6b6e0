"""Validate a narrative content pack: JSON shape, then cross references.

Usage examples:
    python -m narrative.infrastructure.content_validator
    python -m narrative.infrastructure.content_validator --path data/content/station_content.json --warnings
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Sequence

from narrative.domain.errors import ContentValidationError
from narrative.infrastructure.content.content_loader import (
    default_content_path,
    parse_content,
    validate_content_pack,
)
from narrative.infrastructure.content.graph_registry import GraphRegistry


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Validate narrative content JSON and its references")
    parser.add_argument("--path", default=None, help="Path to the content pack JSON file")
    parser.add_argument("--warnings", action="store_true", help="Also list soft findings such as unreachable nodes")
    return parser


def validate_content_file(path: str | Path) -> tuple[list[str], list[str]]:
    source = Path(path)
    if not source.exists():
        return [f"File not found: {source}"], []

    try:
        payload = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        return [f"Invalid JSON: {exc}"], []

    try:
        pack = parse_content(payload)
    except ContentValidationError as exc:
        return exc.errors, []

    return validate_content_pack(pack), GraphRegistry(pack.graphs).integrity_warnings()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    errors, warnings = validate_content_file(args.path or default_content_path())
    if args.warnings and warnings:
        print(f"Narrative content warnings ({len(warnings)}):")
        for message in warnings:
            print(f"- {message}")
    if errors:
        print(f"Narrative content invalid ({len(errors)} errors):")
        for message in errors:
            print(f"- {message}")
        return 1

    print("Narrative content valid.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
