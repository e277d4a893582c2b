#!/usr/bin/env python3
"""Resolve ZIP codes in bulk and print one JSON document per line."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from civic_resolver.api.routes.jurisdictions import bundle_out
from civic_resolver.core.config import get_settings
from civic_resolver.services.aggregator import BatchItem, ResolutionEngine, build_engine
from civic_resolver.services.errors import JurisdictionUnresolved


def render_item(item: BatchItem, engine: ResolutionEngine) -> str:
    if item.bundle is not None:
        payload = {
            "zip_code": item.zip_code,
            "ok": True,
            "bundle": bundle_out(item.bundle, engine).model_dump(mode="json"),
        }
    else:
        violations = item.error.violations if isinstance(item.error, JurisdictionUnresolved) else []
        payload = {
            "zip_code": item.zip_code,
            "ok": False,
            "error": str(item.error),
            "violations": [{"field": row.field, "rule": row.rule} for row in violations],
        }
    return json.dumps(payload, sort_keys=True)


async def run(zip_codes: list[str], *, deadline_ms: int | None) -> tuple[list[str], int]:
    engine = build_engine(get_settings())
    try:
        deadline = deadline_ms / 1000.0 if deadline_ms else None
        items = await engine.resolve_many(zip_codes, deadline=deadline)
    finally:
        await engine.close()
    failures = sum(1 for item in items if item.bundle is None)
    return [render_item(item, engine) for item in items], failures


def read_zip_codes(args: argparse.Namespace) -> list[str]:
    zip_codes = list(args.zip_codes)
    if args.file:
        lines = Path(args.file).read_text(encoding="utf-8").splitlines()
        zip_codes.extend(line.strip() for line in lines if line.strip() and not line.startswith("#"))
    return zip_codes


def main() -> int:
    parser = argparse.ArgumentParser(description="Resolve ZIP codes to jurisdictions and representatives.")
    parser.add_argument("zip_codes", nargs="*", help="ZIP codes (5-digit or ZIP+4)")
    parser.add_argument("--file", help="File with one ZIP code per line")
    parser.add_argument("--deadline-ms", type=int, default=None, help="Per-ZIP deadline in milliseconds")
    args = parser.parse_args()

    zip_codes = read_zip_codes(args)
    if not zip_codes:
        parser.error("no ZIP codes given")

    lines, failures = asyncio.run(run(zip_codes, deadline_ms=args.deadline_ms))
    for line in lines:
        print(line)
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
