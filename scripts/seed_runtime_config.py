#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path
from typing import Any

import redis.asyncio as redis
from dotenv import load_dotenv

DEFAULT_CONFIG: dict[str, Any] = {
    "schema_version": 1,
    "trade_enabled": False,
    "slippage_bps": 50,
    "trade_cooldown_seconds": 60,
}


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(float(raw.strip()))
    except ValueError:
        return default


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Seed the runtime config hash in Redis for the HyperSwap market maker.",
    )
    parser.add_argument(
        "--redis-url",
        default=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        help="Redis connection URL. Defaults to REDIS_URL from env.",
    )
    parser.add_argument(
        "--config-key",
        default=os.getenv("REDIS_CONFIG_KEY", "config"),
        help="Hash key holding the runtime config. Defaults to REDIS_CONFIG_KEY from env.",
    )
    parser.add_argument(
        "--replace",
        action="store_true",
        help="Delete the existing hash before writing instead of merging fields.",
    )
    parser.add_argument(
        "--print-only",
        action="store_true",
        help="Print resolved key and payload without writing to Redis.",
    )

    parser.add_argument(
        "--schema-version",
        type=int,
        default=max(1, env_int("CONFIG_SCHEMA_VERSION", DEFAULT_CONFIG["schema_version"])),
    )
    parser.add_argument(
        "--slippage-bps",
        type=int,
        default=env_int("SLIPPAGE_BPS", DEFAULT_CONFIG["slippage_bps"]),
    )
    parser.add_argument(
        "--trade-cooldown-seconds",
        type=float,
        default=DEFAULT_CONFIG["trade_cooldown_seconds"],
    )
    parser.add_argument(
        "--trade-enabled",
        action="store_true",
        help="Set trade_enabled=true. Omit to keep false by default.",
    )

    return parser.parse_args()


def build_payload(args: argparse.Namespace) -> dict[str, str]:
    payload = {
        "schema_version": max(1, int(args.schema_version)),
        "trade_enabled": bool(args.trade_enabled),
        "slippage_bps": min(10_000, max(1, int(args.slippage_bps))),
        "trade_cooldown_seconds": max(0.0, float(args.trade_cooldown_seconds)),
    }
    return {key: (str(value).lower() if isinstance(value, bool) else str(value)) for key, value in payload.items()}


async def write_payload(redis_url: str, config_key: str, payload: dict[str, str], *, replace: bool) -> None:
    client = redis.from_url(redis_url, decode_responses=True)
    try:
        pipeline = client.pipeline(transaction=True)
        if replace:
            pipeline.delete(config_key)
        pipeline.hset(config_key, mapping=payload)
        await pipeline.execute()
    finally:
        await client.aclose()


def main() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    load_dotenv(repo_root / ".env")

    args = parse_args()
    config_key = args.config_key.strip()
    if not config_key:
        raise ValueError("REDIS_CONFIG_KEY is empty.")

    payload = build_payload(args)

    print(f"[info] config_key={config_key}")
    print(f"[info] merge={not args.replace}")
    print("[info] payload=")
    print(json.dumps(payload, ensure_ascii=False, indent=2))

    if args.print_only:
        print("[info] print-only mode: skipped Redis write")
        return

    asyncio.run(write_payload(args.redis_url, config_key, payload, replace=args.replace))
    print("[ok] Redis runtime config seeded successfully")


if __name__ == "__main__":
    main()
