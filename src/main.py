from __future__ import annotations

import argparse
import logging
from typing import Sequence

import uvicorn

from config import config
from domain.errors import RateServiceError
from services.rate_cache import build_rate_cache

logger = logging.getLogger(__name__)


def serve(host: str, port: int) -> None:
    logger.info("Starting conversion service on %s:%d", host, port)
    uvicorn.run("api.api:app", host=host, port=port, reload=False)


def lookup(base: str, quote: str, *, amount: float) -> int:
    cache = build_rate_cache(config())
    try:
        converted = cache.convert(amount, base, quote)
    except RateServiceError as exc:
        logger.error("Failed to convert %s to %s: %s", base, quote, exc)
        return 1
    finally:
        cache.close()
    print(f"{amount} {base} = {converted} {quote}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    settings = config()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    parser = argparse.ArgumentParser(description="Currency conversion service.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API.")
    serve_parser.add_argument("--host", default=settings.host)
    serve_parser.add_argument("--port", type=int, default=settings.port)

    rate_parser = subparsers.add_parser("rate", help="Look up a single exchange rate.")
    rate_parser.add_argument("base", help="Base currency symbol or contract address.")
    rate_parser.add_argument("quote", help="Quote currency symbol or contract address.")
    rate_parser.add_argument("--amount", type=float, default=1.0)

    args = parser.parse_args(argv)
    if args.command == "serve":
        serve(args.host, args.port)
        return 0
    return lookup(args.base, args.quote, amount=args.amount)


if __name__ == "__main__":
    raise SystemExit(main())
