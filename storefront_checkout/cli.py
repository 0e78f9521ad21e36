"""Command line entry point: run the API or create the orders table."""
import argparse
import asyncio
from typing import List, Optional

import structlog

from storefront_checkout.config import get_settings
from storefront_checkout.database.connection import Database
from storefront_checkout.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def init_db(url: str) -> None:
    database = Database(url)
    try:
        await database.init_db()
        logger.info("database_initialized", url=url.split("@")[-1])
    finally:
        await database.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Storefront checkout service")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None, help="Bind address (default: CHECKOUT_API_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: CHECKOUT_API_PORT)")

    subparsers.add_parser("init-db", help="Create the orders table in CHECKOUT_DATABASE_URL")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings)

    if args.command == "init-db":
        if not settings.database_url:
            parser.error("CHECKOUT_DATABASE_URL is not set")
        asyncio.run(init_db(settings.database_url))
        return 0

    import uvicorn

    uvicorn.run(
        "storefront_checkout.api.main:create_app",
        factory=True,
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
