from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from dataclasses import asdict


def _poll_once(database_url: str | None) -> int:
    from pagefeed.core.config import settings
    from pagefeed.core.db import init_db, make_engine, make_sessionmaker
    from pagefeed.core.log import configure_logging
    from pagefeed.core.scheduler import build_poller

    configure_logging(settings.log_level)

    async def _run():
        engine = make_engine(database_url or settings.database_url)
        try:
            await init_db(engine)
            poller = build_poller(make_sessionmaker(engine), settings)
            return await poller.run_cycle()
        finally:
            await engine.dispose()

    stats = asyncio.run(_run())
    print(json.dumps(asdict(stats), indent=2))
    return 0 if not stats.store_errors else 1


def _serve(database_url: str | None, host: str, port: int) -> int:
    import uvicorn

    if database_url:
        # settings are read at import time of the app
        os.environ["DATABASE_URL"] = database_url
    uvicorn.run("pagefeed.main:app", host=host, port=port)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="pagefeed", description="Watch web pages and publish their changes as feeds")
    parser.add_argument("--database-url", default=None, help="store connection URL (default: $DATABASE_URL)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("poll", help="run one poll cycle and exit")

    serve = sub.add_parser("serve", help="serve feeds and poll in the background")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)
    if args.command == "poll":
        return _poll_once(args.database_url)
    return _serve(args.database_url, args.host, args.port)


if __name__ == "__main__":
    sys.exit(main())
