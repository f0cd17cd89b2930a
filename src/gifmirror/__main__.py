"""CLI entrypoint for gifmirror."""

import argparse
import asyncio
import logging
import os
import sys

import uvicorn

from gifmirror.db.engine import database_url_from_env


def _serve(args: argparse.Namespace) -> None:
    os.environ["GIFMIRROR_DATABASE_URL"] = args.database_url

    uvicorn.run(
        "gifmirror.api.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


async def _open_db(database_url: str) -> None:
    from gifmirror.config import load_config
    from gifmirror.db.engine import create_tables, get_session_factory, init_engine

    init_engine(database_url)
    await create_tables()
    async with get_session_factory()() as db:
        await load_config(db)


async def _warm(args: argparse.Namespace) -> int:
    """Pre-fill the item and query caches for a list of queries."""
    import httpx

    from gifmirror.db.engine import dispose_engine, get_session_factory
    from gifmirror.search import build_service
    from gifmirror.store import create_store

    await _open_db(args.database_url)
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            service = build_service(client, create_store(session_factory=get_session_factory()))

            def report(query, items):
                print(f"{query}: {len(items)} GIF(s)")

            results = await service.search_many(args.queries, args.limit, on_result=report, timeout=args.timeout)
    finally:
        await dispose_engine()
    empty = [q for q, items in results.items() if not items]
    if empty:
        print(f"No GIFs for: {', '.join(empty)}", file=sys.stderr)
    return 1 if len(empty) == len(results) else 0


async def _set_config(args: argparse.Namespace) -> int:
    from gifmirror.config import known_keys, save_config_value
    from gifmirror.db.engine import dispose_engine, get_session_factory

    await _open_db(args.database_url)
    try:
        async with get_session_factory()() as db:
            try:
                await save_config_value(db, args.key, args.value)
            except KeyError:
                print(f"Unknown config key {args.key!r}. Known keys: {', '.join(known_keys())}", file=sys.stderr)
                return 2
            await db.commit()
    finally:
        await dispose_engine()
    print(f"{args.key} = {args.value}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gifmirror", description="Deduplicating, CDN-mirrored GIF search")
    parser.add_argument(
        "--database-url",
        default=database_url_from_env(),
        help="SQLAlchemy async database URL",
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument(
        "--host", default=os.environ.get("GIFMIRROR_HOST", "127.0.0.1"), help="Bind address"
    )
    serve.add_argument(
        "--port", type=int, default=int(os.environ.get("GIFMIRROR_PORT", "8000")), help="Bind port"
    )
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    warm = sub.add_parser("warm", help="Fill the caches for the given queries")
    warm.add_argument("queries", nargs="+")
    warm.add_argument("--limit", type=int, default=None, help="GIFs per query")
    warm.add_argument("--timeout", type=float, default=None, help="Overall budget in seconds")

    set_config = sub.add_parser("set-config", help="Persist a config override in the database")
    set_config.add_argument("key")
    set_config.add_argument("value")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command in (None, "serve"):
        if args.command is None:
            args = parser.parse_args([*(sys.argv[1:] if argv is None else argv), "serve"])
        _serve(args)
        return 0

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if args.command == "warm":
        return asyncio.run(_warm(args))
    return asyncio.run(_set_config(args))


if __name__ == "__main__":
    sys.exit(main())
