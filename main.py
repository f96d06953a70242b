"""CLI entrypoint for the listing factory: web server and maintenance jobs."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging

from config import get_settings
from marketplace import generate_code_challenge, generate_code_verifier, generate_state
from utils import FactoryError, configure_app_logging
from webapp.runtime import get_runtime


logger = logging.getLogger("listing_factory")


async def _sync_sales() -> dict:
    runtime = get_runtime()
    try:
        result = await runtime.orchestrator.reconcile_sales()
    finally:
        await runtime.aclose()
    return result.model_dump()


async def _sweep_stale() -> dict:
    count = await get_runtime().orchestrator.sweep_stale_runs()
    return {"marked_failed": count}


def main() -> None:
    parser = argparse.ArgumentParser(description="Listing factory CLI")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the FastAPI app with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")

    sub.add_parser("sync-sales", help="Reconcile shop receipts once")
    sub.add_parser("sweep-stale", help="Mark stale running runs failed")

    auth = sub.add_parser("auth-url", help="Print a shop authorization URL with its PKCE verifier")
    auth.add_argument("--redirect-uri", required=True)

    args = parser.parse_args()
    settings = get_settings()
    level_name = str(args.log_level or settings.logging.level).upper()
    configure_app_logging(
        level=getattr(logging, level_name, logging.INFO),
        log_file=settings.logging.file,
        use_rich=settings.logging.use_rich,
    )

    if args.command == "serve":
        import uvicorn

        uvicorn.run("webapp.app:app", host=args.host, port=int(args.port), reload=bool(args.reload))
        return

    try:
        if args.command == "sync-sales":
            payload = asyncio.run(_sync_sales())
        elif args.command == "sweep-stale":
            payload = asyncio.run(_sweep_stale())
        else:
            state = generate_state()
            verifier = generate_code_verifier()
            url = get_runtime().oauth.build_authorization_url(
                state=state,
                code_challenge=generate_code_challenge(verifier),
                redirect_uri=args.redirect_uri,
            )
            payload = {"url": url, "state": state, "code_verifier": verifier}
    except FactoryError as exc:
        logger.error(str(exc))
        raise SystemExit(1) from exc

    print(json.dumps(payload, ensure_ascii=False))


if __name__ == "__main__":
    main()
