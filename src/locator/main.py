# src/locator/main.py
import asyncio
import os
import sys

import structlog
from dotenv import load_dotenv

from locator.config import config_from_env, lookup_config_from_env
from locator.display.flags import country_flag
from locator.remote.client import HttpLookupClient
from locator.service import ResolverService
from locator.storage.redis_store import RedisStorage

load_dotenv()
log = structlog.get_logger()


def keys_from_args(argv: list[str]) -> list[str]:
    """Keys from argv, else comma-separated LOCATOR_KEYS. Leading '@' is dropped."""
    raw = argv or os.getenv("LOCATOR_KEYS", "").split(",")
    return [k.strip().lstrip("@") for k in raw if k.strip().lstrip("@")]


def print_summary(svc: ResolverService) -> None:
    summary = svc.statistics()
    if not summary.counts:
        print("No profiles tracked yet")
        return
    print(f"Total: {summary.total} unique profile{'s' if summary.total != 1 else ''}")
    for value, count in summary.counts:
        flag = country_flag(value)
        print(f"  {flag} {value}: {count}" if flag else f"  ({value}): {count}")


async def main(argv: list[str] | None = None):
    keys = keys_from_args(sys.argv[1:] if argv is None else argv)

    cfg = config_from_env()
    lookup_cfg = lookup_config_from_env()   # raises if LOCATOR_LOOKUP_URL missing

    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    storage = RedisStorage.from_url(REDIS_URL, prefix=os.getenv("LOCATOR_REDIS_PREFIX", "locator"))

    client = HttpLookupClient(lookup_cfg)
    await client.start()
    svc = ResolverService(client.request, storage, cfg)

    try:
        await svc.start()
        if not keys:
            log.info("no_keys_given")
        results = await svc.resolve_many(keys)
        for key, info in results.items():
            print(f"@{key}: {info.display if info.found else '-'}")
        print_summary(svc)
    finally:
        # graceful shutdown: final flush, then close sessions
        await svc.stop()
        await client.stop()
        await storage.close()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
