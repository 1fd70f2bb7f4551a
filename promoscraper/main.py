"""Command-line entry point: one-off runs or the API plus scheduler."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import os
import threading
from pathlib import Path
from typing import Iterable

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from sqlalchemy.orm import Session, sessionmaker

from promoscraper.alerts.notifier import Notifier
from promoscraper.config import RetailerConfig, Settings, iter_targets, load_retailer_config, load_settings
from promoscraper.dashboard import create_app
from promoscraper.errors import ConfigError, ScraperError
from promoscraper.logging_config import get_logger
from promoscraper.orchestrator import RunOutcome, run_scrape
from promoscraper.scheduler import RunScheduler
from promoscraper.storage.db import get_engine, init_db, make_session, test_connection
from promoscraper.storage.models_sql import RUN_FAILED

LOGGER = get_logger(__name__)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the application."""

    parser = argparse.ArgumentParser(
        prog="promoscraper",
        description="Scrape supermarket promotions and serve them over HTTP.",
    )
    parser.add_argument(
        "--retailer",
        action="append",
        default=[],
        metavar="KEY",
        help="Run a single retailer once and exit (repeatable), e.g. albert-heijn, dirk, plus.",
    )
    parser.add_argument(
        "--all",
        action="store_true",
        help="Run every enabled retailer once and exit.",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Start the HTTP API and the due-run scheduler.",
    )
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="With --serve, only start the HTTP API.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the retailer YAML file (default: config/retailers.yml).",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create missing database tables and exit.",
    )
    args = parser.parse_args(list(argv) if argv is not None else None)
    if not (args.retailer or args.all or args.serve or args.init_db):
        parser.error("nothing to do: pass --retailer KEY, --all, --serve or --init-db")
    return args


def format_outcome(outcome: RunOutcome) -> str:
    line = f"{outcome.retailer}: {outcome.status} | products={outcome.products_scraped}"
    if outcome.summary is not None:
        summary = outcome.summary
        line += (
            f" created={summary.products_created} updated={summary.products_updated}"
            f" deactivated={summary.discounts_deactivated}"
        )
    if outcome.expires_on is not None:
        line += f" expires={outcome.expires_on.isoformat()}"
    if outcome.error:
        line += f" | {outcome.error}"
    return line


async def run_once(
    keys: list[str],
    *,
    retailers: RetailerConfig,
    session_factory: sessionmaker[Session],
    settings: Settings,
    notifier: Notifier,
) -> list[RunOutcome]:
    """Run the given retailers one after another."""

    outcomes = []
    for target in iter_targets(retailers, keys):
        outcome = await run_scrape(
            target.key,
            retailers=retailers,
            session_factory=session_factory,
            settings=settings,
            notifier=notifier,
        )
        print(format_outcome(outcome))
        outcomes.append(outcome)
    return outcomes


def _start_api_background(app: FastAPI, host: str, port: int) -> tuple[uvicorn.Server, threading.Thread]:
    LOGGER.info("Starting API thread | host=%s port=%s", host, port)
    config = uvicorn.Config(app, host=host, port=port, reload=False, log_config=None)
    server = uvicorn.Server(config)

    def run_api() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(server.serve())
        finally:
            loop.close()

    thread = threading.Thread(target=run_api, name="api-server", daemon=True)
    thread.start()
    LOGGER.info("API thread launched (pid=%s)", os.getpid())
    return server, thread


def _stop_api_background(server: uvicorn.Server | None, thread: threading.Thread | None) -> None:
    if server is not None:
        server.should_exit = True
    if thread is not None:
        thread.join(timeout=5)
        LOGGER.info("API thread joined")


async def serve(
    *,
    retailers: RetailerConfig,
    session_factory: sessionmaker[Session],
    settings: Settings,
    notifier: Notifier,
    with_scheduler: bool = True,
) -> None:
    async def runner(key: str) -> RunOutcome:
        return await run_scrape(
            key,
            retailers=retailers,
            session_factory=session_factory,
            settings=settings,
            notifier=notifier,
        )

    scheduler = RunScheduler(session_factory, retailers, settings, runner) if with_scheduler else None
    app = create_app(
        session_factory,
        retailers,
        settings,
        notifier=notifier,
        scheduler_status=scheduler.status if scheduler else None,
    )
    server, thread = _start_api_background(app, settings.api_host, settings.api_port)
    if scheduler is not None:
        scheduler.start()
    else:
        LOGGER.info("Scheduler disabled; serving API only")

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        LOGGER.info("Shutdown signal received; stopping")
    finally:
        if scheduler is not None:
            scheduler.stop()
        _stop_api_background(server, thread)


def main(argv: Iterable[str] | None = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    settings = load_settings()
    if args.config is not None:
        settings = dataclasses.replace(settings, config_path=args.config)

    engine = get_engine(settings.database_url)
    if not test_connection(engine):
        raise SystemExit(1)
    init_db(engine)
    if args.init_db:
        print("Database initialised")
        return

    try:
        retailers = load_retailer_config(settings.config_path)
    except ConfigError as exc:
        LOGGER.error("%s", exc)
        raise SystemExit(2) from exc

    session_factory = make_session(engine)
    notifier = Notifier()

    try:
        if args.retailer or args.all:
            outcomes = asyncio.run(
                run_once(
                    [] if args.all else args.retailer,
                    retailers=retailers,
                    session_factory=session_factory,
                    settings=settings,
                    notifier=notifier,
                )
            )
            if any(outcome.status == RUN_FAILED for outcome in outcomes):
                raise SystemExit(1)
            return

        asyncio.run(
            serve(
                retailers=retailers,
                session_factory=session_factory,
                settings=settings,
                notifier=notifier,
                with_scheduler=not args.no_scheduler,
            )
        )
    except ScraperError as exc:
        LOGGER.error("%s", exc)
        raise SystemExit(2) from exc
    except KeyboardInterrupt:  # pragma: no cover - interactive safety
        LOGGER.info("Interrupted by user")
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
