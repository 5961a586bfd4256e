"""Command-line entry points for SiteRAG."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Sequence, TextIO

import httpx

from siterag.config import get_settings
from siterag.ingestion import NormalizerConfig, normalize_path
from siterag.metrics.observability import configure_logging
from siterag.streaming import CompleteEvent, ContentEvent, ErrorEvent, StreamClient, StreamClientError


def run_normalize(path: Path, *, media_type: str | None = None, as_json: bool = False, out: TextIO = sys.stdout) -> int:
    settings = get_settings()
    config = NormalizerConfig(
        section_size=settings.text_section_size,
        single_chunk_max_lines=settings.text_single_chunk_max_lines,
        currency_symbol=settings.currency_symbol,
    )
    chunks = normalize_path(path, media_type, config=config)
    if as_json:
        payload = [{"label": chunk.label, "text": chunk.text, "diagnostic": chunk.diagnostic} for chunk in chunks]
        print(json.dumps(payload, indent=2, ensure_ascii=False), file=out)
    else:
        for chunk in chunks:
            marker = " (diagnostic)" if chunk.diagnostic else ""
            print(f"== {chunk.label}{marker}", file=out)
            print(chunk.text, file=out)
            print(file=out)
    return 1 if chunks and all(chunk.diagnostic for chunk in chunks) else 0


async def run_ask(
    conversation_id: str,
    message: str,
    *,
    base_url: str,
    api_key: str | None = None,
    out: TextIO = sys.stdout,
) -> int:
    async with StreamClient(base_url, api_key=api_key) as client:
        try:
            async for event in client.events(conversation_id, message):
                if isinstance(event, ContentEvent):
                    out.write(event.text)
                    out.flush()
                elif isinstance(event, CompleteEvent):
                    out.write("\n")
                    if event.message_id:
                        print(f"[message {event.message_id}]", file=sys.stderr)
                    return 0
                elif isinstance(event, ErrorEvent):
                    out.write("\n")
                    print(f"Stream error: {event.reason}", file=sys.stderr)
                    return 1
        except (httpx.HTTPError, StreamClientError) as exc:
            print(f"Request failed: {exc}", file=sys.stderr)
            return 1
    print("Stream ended without a completion frame", file=sys.stderr)
    return 1


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SiteRAG utilities.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    normalize = subparsers.add_parser("normalize", help="Print the chunks extracted from a document")
    normalize.add_argument("path", type=Path, help="Document to normalize")
    normalize.add_argument("--media-type", default=None, help="Declared media type; defaults to the extension")
    normalize.add_argument("--json", action="store_true", help="Emit chunks as JSON")

    ask = subparsers.add_parser("ask", help="Stream an answer from a running API")
    ask.add_argument("conversation_id", help="Conversation to ask in")
    ask.add_argument("message", help="Question text")
    ask.add_argument(
        "--url",
        default=os.getenv("SITERAG_API_URL", "http://localhost:8000"),
        help="API base URL",
    )
    ask.add_argument("--api-key", default=os.getenv("SITERAG_API_KEY"), help="Value for the X-API-Key header")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging()
    if args.command == "normalize":
        return run_normalize(args.path, media_type=args.media_type, as_json=args.json)
    return asyncio.run(run_ask(args.conversation_id, args.message, base_url=args.url, api_key=args.api_key))


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
