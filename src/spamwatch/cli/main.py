"""Command-line entry point: serve the API or run one-off checks."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Any, Sequence

from spamwatch.errors import RequestTimeoutError, RequestValidationError
from spamwatch.observability import configure_logging
from spamwatch.services.factories import build_chain_registry, build_service_container
from spamwatch.settings import ENV_VAR_NAME, get_settings, reload_settings


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Return parsed CLI arguments.

    Args:
        argv: Optional list of CLI arguments. When ``None``, defaults to ``sys.argv``.
    """

    parser = argparse.ArgumentParser(prog="spamwatch", description="Contract spam detection service")
    parser.add_argument("--env", default=None, help="Settings environment (defaults to $SPAMWATCH_ENV or 'local')")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default=None, help="Bind address (defaults to api.host)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (defaults to api.port)")
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    check = subparsers.add_parser("check", help="Classify contract addresses and print JSON results")
    check.add_argument("--chain", required=True, help="Chain ID, name or alias (e.g. 137, polygon, MATIC)")
    check.add_argument("addresses", nargs="+", help="Contract addresses (0x-prefixed)")

    subparsers.add_parser("health", help="Check every enabled dependency and print a JSON snapshot")
    subparsers.add_parser("chains", help="List enabled chains")
    return parser.parse_args(argv)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


async def _run_check(chain: str, addresses: Sequence[str]) -> int:
    container = build_service_container(get_settings())
    try:
        chain_id = container.registry.parse(chain).chain_id
        results = await container.contract_status.handle(chain_id, list(addresses))
    except (RequestValidationError, RequestTimeoutError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    finally:
        await container.aclose()
    _print_json({address: result.to_dict() for address, result in results.items()})
    return 0


async def _run_health() -> int:
    container = build_service_container(get_settings())
    try:
        snapshot = await container.health.snapshot()
    finally:
        await container.aclose()
    _print_json(snapshot.to_dict())
    return 0 if snapshot.status == "up" else 1


def _run_chains() -> int:
    registry = build_chain_registry(get_settings())
    _print_json(
        [
            {"chain_id": chain.chain_id, "name": chain.name, "aliases": list(chain.aliases)}
            for chain in registry.supported()
        ]
    )
    return 0


def _run_serve(host: str | None, port: int | None, reload: bool) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "spamwatch.api.app:create_app",
        factory=True,
        host=host or settings.api.host,
        port=port or settings.api.port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    if args.env:
        os.environ[ENV_VAR_NAME] = args.env
        settings = reload_settings()
    else:
        settings = get_settings()
    configure_logging(settings)
    if args.command == "serve":
        return _run_serve(args.host, args.port, args.reload)
    if args.command == "check":
        return asyncio.run(_run_check(args.chain, args.addresses))
    if args.command == "health":
        return asyncio.run(_run_health())
    if args.command == "chains":
        return _run_chains()
    raise SystemExit(f"unknown command: {args.command}")  # pragma: no cover - argparse enforces choices


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
