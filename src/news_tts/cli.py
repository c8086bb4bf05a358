"""
Command-Line Interface for news-tts.

Runs a batch without the HTTP server, or starts the server.

Usage Examples:
    # Start the API server
    news-tts serve --host 0.0.0.0 --port 8000

    # Voice a bulletin; items.json is a list of {"id", "text", "language"?}
    news-tts batch --items items.json --out bulletin.mp3

    # Reuse clips already on disk for items 3 and 4
    news-tts batch --items items.json --saved 3 --saved 4

    # Show what would be synthesized and loaded, without calling anything
    news-tts batch --items items.json --saved 3 --dry-run --json

A single-item batch writes its audio to --out. A multi-item batch waits for
the background merge and reports the merged file path.

Environment Variables:
    NEWS_TTS_SETTINGS: Settings file (default config/settings.yaml)
    NEWS_TTS_PROVIDER_API_KEY: Provider API key
    NEWS_TTS_LOG_LEVEL: Log level (1-4)
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from news_tts.core.config import Settings, load_settings_or_default
from news_tts.core.errors import NewsTTSError
from news_tts.core.logging import configure_logging, get_logger, info
from news_tts.tts.worker import ContentItem


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="news-tts", description="news-tts batch synthesis and merge")
    parser.add_argument("--config", default=os.getenv("NEWS_TTS_SETTINGS", "config/settings.yaml"),
                        help="Settings YAML file")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    batch = sub.add_parser("batch", help="Voice a batch of items")
    batch.add_argument("--items", required=True, help="JSON file: list of {id, text, language}")
    batch.add_argument("--saved", action="append", default=[], metavar="ID",
                       help="Item id loaded from storage instead of synthesized (repeatable)")
    batch.add_argument("--language", help="Language override for every synthesized item")
    batch.add_argument("--format", default=None, help="mp3, m4a or aac (default from settings)")
    batch.add_argument("--out", help="Output path for a single-item result")
    batch.add_argument("--dry-run", action="store_true", help="Print the plan without synthesis")
    batch.add_argument("--json", action="store_true", help="Print a JSON summary")

    return parser.parse_args(argv)


def _load_items(path: str, default_language: str) -> List[ContentItem]:
    """
    Read items from a JSON file.

    Raises:
        SystemExit: File missing, malformed or empty.
    """
    p = Path(path)
    if not p.exists():
        raise SystemExit(f"Items file not found: {p}")
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise SystemExit(f"Items file is not valid JSON: {exc}")
    if not isinstance(raw, list) or not raw:
        raise SystemExit("Items file must contain a non-empty JSON list.")

    items = []
    for entry in raw:
        if not isinstance(entry, dict) or not str(entry.get("id", "")).strip():
            raise SystemExit(f"Every item needs an id: {entry!r}")
        items.append(ContentItem(
            id=str(entry["id"]),
            text=str(entry.get("text", "")),
            language=str(entry.get("language") or default_language),
        ))
    return items


def _emit(payload: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, ensure_ascii=False))
    else:
        for key, value in payload.items():
            print(f"{key}: {value}")


async def _run_batch(args: argparse.Namespace, settings: Settings) -> Dict[str, Any]:
    from news_tts.services.batch_service import build_orchestrator

    log = get_logger("news-tts.cli")
    items = _load_items(args.items, settings.default_language)
    saved = set(args.saved)
    needed = [item for item in items if item.id not in saved]
    fmt = args.format or settings.audio_format

    orchestrator = build_orchestrator(settings)
    try:
        result = await orchestrator.process_batch(
            [item.id for item in items], needed, list(args.saved), language=args.language, fmt=fmt
        )
        payload: Dict[str, Any] = {"ok": True, "kind": result.kind, "correlation_id": result.correlation_id}

        if result.kind == "single":
            out = Path(args.out or f"{result.correlation_id}.{fmt}")
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_bytes(result.buffer.data)
            payload.update({"item_id": result.item_id, "out": str(out), "bytes": result.buffer.size})
        elif result.kind == "merge":
            info(log, "waiting_for_merge", correlation_id=result.correlation_id)
            status = await orchestrator.supervisor.wait(result.correlation_id)
            payload.update({
                "ok": status.state.value == "succeeded",
                "state": status.state.value,
                "out": status.output_path,
                "attempts": status.attempts,
                "error": status.error,
            })
        return payload
    finally:
        await orchestrator.shutdown()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code (0 for success, 1 for batch or merge failure).
    """
    args = _parse_args(argv)

    if args.command == "serve":
        import uvicorn

        os.environ["NEWS_TTS_SETTINGS"] = args.config
        uvicorn.run("news_tts.main:app", host=args.host, port=args.port)
        return 0

    configure_logging()
    settings = load_settings_or_default(args.config)

    if args.dry_run:
        items = _load_items(args.items, settings.default_language)
        saved = set(args.saved)
        payload = {
            "ok": True,
            "dry_run": True,
            "synthesize": [item.id for item in items if item.id not in saved],
            "load": [item.id for item in items if item.id in saved],
            "format": args.format or settings.audio_format,
            "languages": sorted({args.language or item.language for item in items if item.id not in saved}),
        }
        _emit(payload, args.json)
        return 0

    try:
        payload = asyncio.run(_run_batch(args, settings))
    except NewsTTSError as exc:
        _emit(exc.to_dict(), args.json)
        return 1

    _emit(payload, args.json)
    return 0 if payload["ok"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
