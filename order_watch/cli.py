from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import signal
import sys
from typing import List, Optional

from order_watch.config import Config, ConfigError, load_config
from order_watch.json_logger import JsonLogger, get_logger, log_event
from order_watch.models import OrderBatch, OrderCallback
from order_watch.monitoring import MonitoringSession, StopReason
from order_watch.scraper import scrape_orders


def _print_orders(batch: OrderBatch) -> None:
    payload = {"orders": [order.as_dict() for order in batch]}
    print(json.dumps(payload, ensure_ascii=False), flush=True)


def _credentials(args: argparse.Namespace, config: Config, logger: JsonLogger) -> tuple[str, str] | None:
    email = args.email or config.portal_email
    password = args.password or config.portal_password
    if not email or not password:
        log_event(
            logger=logger,
            phase="prereq",
            status="error",
            message="Portal credentials missing; pass --email/--password or set PORTAL_EMAIL/PORTAL_PASSWORD",
        )
        return None
    return email, password


def _consumer(args: argparse.Namespace, config: Config, logger: JsonLogger) -> OrderCallback:
    if args.no_db:
        return _print_orders
    from order_watch.store import OrderSink

    return OrderSink(config.database_url, logger=logger)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Some environments (e.g. Windows) do not support custom signal handlers.
            pass


async def _dispose_store(args: argparse.Namespace) -> None:
    if args.no_db:
        return
    from order_watch.store.db import dispose_engines

    await dispose_engines()


async def _monitor_async(args: argparse.Namespace, config: Config) -> int:
    logger = get_logger()
    try:
        credentials = _credentials(args, config, logger)
        if credentials is None:
            return 2
        email, password = credentials

        session = MonitoringSession(config=config, logger=logger)
        result = await session.start(
            email, password, _consumer(args, config, logger), max_cycles=args.max_cycles
        )
        if not result.success:
            log_event(
                logger=logger,
                phase="init",
                status="error",
                message="Monitoring failed to start",
                error=result.error,
            )
            return 1

        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)
        waiter = asyncio.create_task(session.wait())
        stopper = asyncio.create_task(stop_event.wait())
        done, _ = await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        if stopper in done:
            log_event(logger=logger, phase="stop", message="Shutdown signal received")
            await session.stop()
        else:
            stopper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stopper
        await waiter
        return 0 if session.stop_reason in (None, StopReason.REQUESTED) else 1
    finally:
        await _dispose_store(args)
        logger.close()


async def _scrape_async(args: argparse.Namespace, config: Config) -> int:
    logger = get_logger()
    try:
        credentials = _credentials(args, config, logger)
        if credentials is None:
            return 2
        email, password = credentials

        result = await scrape_orders(email, password, config=config, logger=logger)
        if not result.success:
            log_event(logger=logger, phase="scrape", status="error", message=result.error or "")
            return 1
        if args.no_db:
            _print_orders(result.orders)
        else:
            await _consumer(args, config, logger)(result.orders)
        return 0
    finally:
        await _dispose_store(args)
        logger.close()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="order_watch", description="Merchant portal order monitor")
    subparsers = parser.add_subparsers(dest="command", required=True)

    monitor_parser = subparsers.add_parser("monitor", help="Watch the order list until interrupted")
    scrape_parser = subparsers.add_parser("scrape", help="Read every listed order once and exit")
    for sub in (monitor_parser, scrape_parser):
        sub.add_argument("--email", default=None, help="Portal login e-mail (default: PORTAL_EMAIL)")
        sub.add_argument("--password", default=None, help="Portal password (default: PORTAL_PASSWORD)")
        sub.add_argument("--no-db", dest="no_db", action="store_true", help="Print orders as JSON lines instead of storing them")
    monitor_parser.add_argument(
        "--max-cycles",
        dest="max_cycles",
        type=int,
        default=None,
        help="Stop after this many poll iterations",
    )

    db_parser = subparsers.add_parser("db", help="Database operations")
    db_sub = db_parser.add_subparsers(dest="db_command", required=True)
    upgrade_parser = db_sub.add_parser("upgrade", help="Run Alembic upgrade head")
    upgrade_parser.add_argument("--revision", default="head")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else sys.argv[1:])

    try:
        config = load_config()
    except ConfigError as exc:
        print(f"[config] {exc}", file=sys.stderr)
        return 2

    if args.command == "monitor":
        return asyncio.run(_monitor_async(args, config))

    if args.command == "scrape":
        return asyncio.run(_scrape_async(args, config))

    if args.command == "db" and args.db_command == "upgrade":
        from order_watch.store.db import run_alembic_upgrade

        run_alembic_upgrade(revision=args.revision, database_url=config.database_url)
        return 0

    parser.error("Unknown command")
    return 1
