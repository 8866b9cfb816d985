# flake8: noqa E402
# Run via uv so project deps are loaded, e.g.:
# uv run scripts/rate_cache_probe.py --base 0xdac17f958d2ee523a2206206994597c13d831ec7 --quote eth --repeat 3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from time import perf_counter
from typing import Any

# Ensure the src directory is importable when the script is invoked via uv/python directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from config import config
from services.rate_cache import build_rate_cache


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Probe RateCache against the live CoinGecko API.")
    parser.add_argument("--base", default="cny", help="Base currency symbol or contract address.")
    parser.add_argument("--quote", default="eth", help="Quote currency symbol or contract address.")
    parser.add_argument("--repeat", type=int, default=2, help="Number of lookups to run (default: 2).")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    cache = build_rate_cache(config())

    for attempt in range(1, args.repeat + 1):
        started = perf_counter()
        rate = cache.get_rate(args.base, args.quote)
        elapsed = perf_counter() - started
        print(f"[{attempt}] {args.base} -> {args.quote}: {rate} ({elapsed:.3f}s)")

    payload: dict[str, Any] = {
        key: {"value": entry.value, "timestamp": entry.timestamp, "refreshing": entry.refreshing}
        for key, entry in cache.snapshot().items()
    }
    print(json.dumps(payload, indent=2))
    cache.close()


if __name__ == "__main__":
    main()
