from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import httpx

from .client.transport import HttpTransport, StaticTokenProvider
from .config.loader import load_settings
from .config.settings import Settings
from .domain.document import Document, DocumentEncoder
from .domain.errors import DomainError, EncodingError, ok
from .domain.ratelimit import RateLimiter
from .domain.submission import SubmissionService
from .observability.logging import configure_logging, get_logger


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="crpt-api")

    p.add_argument("--config", type=Path, default=None, help="YAML config path (default: ./config.yaml or ./config/config.yaml)")
    p.add_argument("--endpoint", default=None, help="Document creation URL")
    p.add_argument("--token", default=None, help="Bearer token for the API")
    p.add_argument("--timeout", type=float, default=None, help="HTTP timeout in seconds")

    p.add_argument("--request-limit", type=int, default=None, help="Max calls per window")
    p.add_argument("--time-unit", choices=["MILLISECONDS", "SECONDS", "MINUTES", "HOURS", "DAYS"], default=None)
    p.add_argument("--window-amount", type=int, default=None, help="Window length in --time-unit units")

    p.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default=None)

    sub = p.add_subparsers(dest="command", required=True)

    submit = sub.add_parser("submit", help="Submit one document")
    submit.add_argument("--document", type=Path, required=True, help="Path to the document JSON")
    submit.add_argument("--signature", required=True, help="Detached signature, or @path to read it from a file")
    submit.add_argument("--product-group", required=True, help="Product group (sent as ?pg=)")

    return p


def _cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    o: dict[str, Any] = {}

    if args.endpoint is not None:
        o.setdefault("api", {})["endpoint"] = args.endpoint
    if args.token is not None:
        o.setdefault("api", {})["token"] = args.token
    if args.timeout is not None:
        o.setdefault("api", {})["timeout_s"] = args.timeout

    if args.request_limit is not None:
        o.setdefault("rate_limit", {})["request_limit"] = args.request_limit
    if args.time_unit is not None:
        o.setdefault("rate_limit", {})["time_unit"] = args.time_unit
    if args.window_amount is not None:
        o.setdefault("rate_limit", {})["window_amount"] = args.window_amount

    if args.log_level is not None:
        o.setdefault("logging", {})["level"] = args.log_level

    return o


def _read_signature(raw: str) -> str:
    if raw.startswith("@"):
        path = Path(raw[1:])
        try:
            return path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as e:
            raise EncodingError("cannot read signature file.", details={"path": str(path), "error": str(e)}) from e
    return raw


def build_service(settings: Settings, *, client: httpx.Client | None = None) -> SubmissionService:
    """Wire limiter, encoder and HTTP transport from settings."""

    rate_limiter = RateLimiter.from_settings(
        settings.rate_limit,
        logger=get_logger().bind(component="rate-limiter"),
    )
    encoder = DocumentEncoder(
        document_format=settings.api.document_format,
        document_type=settings.api.document_type,
    )
    transport = HttpTransport(
        endpoint=settings.api.endpoint,
        token_provider=StaticTokenProvider(settings.api.token),
        timeout_s=settings.api.timeout_s,
        client=client,
        logger=get_logger().bind(component="http"),
    )
    return SubmissionService(
        rate_limiter=rate_limiter,
        encoder=encoder,
        transport=transport,
        logger=get_logger().bind(component="submission"),
    )


def _submit(settings: Settings, args: argparse.Namespace, *, client: httpx.Client | None) -> dict[str, Any]:
    logger = get_logger().bind(component="app")
    with build_service(settings, client=client) as service:
        try:
            document = Document.from_path(args.document)
        except OSError as e:
            raise EncodingError("cannot read document file.", details={"path": str(args.document), "error": str(e)}) from e

        logger.info(
            "submission.start",
            endpoint=settings.api.endpoint,
            product_group=args.product_group,
            request_limit=settings.rate_limit.request_limit,
            window_ms=settings.rate_limit.window_ms,
        )
        result = service.submit(document, _read_signature(args.signature), args.product_group)

    return ok({"status_code": result.status_code, "body": result.body, "elapsed_ms": result.elapsed_ms})


def main(argv: list[str] | None = None, *, client: httpx.Client | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    project_root = Path.cwd()
    try:
        loaded = load_settings(project_root=project_root, config_path=args.config, cli_overrides=_cli_overrides(args))
        settings = loaded.settings
        configure_logging(level=settings.logging.level, json_logs=settings.logging.json_logs)

        out = _submit(settings, args, client=client)
    except DomainError as e:
        print(json.dumps(e.to_dict(), ensure_ascii=False))
        return 1

    print(json.dumps(out, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
