"""FastAPI surface for triggering runs and reading scraped discounts."""

from __future__ import annotations

import threading
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from promoscraper.alerts.notifier import Notifier
from promoscraper.config import RetailerConfig, ScrapeTarget, Settings
from promoscraper.errors import UnknownRetailerError
from promoscraper.logging_config import get_logger
from promoscraper.orchestrator import RunOutcome, run_scrape
from promoscraper.storage import repo
from promoscraper.storage.models_sql import RUN_FAILED, Discount, Product, ScheduledRun, ScraperRun

LOGGER = get_logger(__name__)

Runner = Callable[[str], Awaitable[RunOutcome]]


class ToggleRequest(BaseModel):
    enabled: bool


class ActiveRuns:
    """Retailer keys with a run in flight in this process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keys: set[str] = set()

    def acquire(self, key: str) -> bool:
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._keys.discard(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._keys


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _money(value: Decimal | None) -> float:
    return float(value) if value is not None else 0.0


def serialize_run(run: ScraperRun) -> dict[str, Any]:
    return {
        "id": run.id,
        "retailer": run.retailer,
        "status": run.status,
        "products_scraped": run.products_scraped,
        "products_created": run.products_created,
        "products_updated": run.products_updated,
        "discounts_created": run.discounts_created,
        "discounts_deactivated": run.discounts_deactivated,
        "error_message": run.error_message,
        "started_at": _iso(repo.as_utc(run.started_at)),
        "completed_at": _iso(repo.as_utc(run.completed_at)),
        "duration_seconds": run.duration_seconds,
    }


def serialize_scheduled_run(scheduled: ScheduledRun) -> dict[str, Any]:
    return {
        "id": scheduled.id,
        "retailer": scheduled.retailer,
        "next_run_at": _iso(scheduled.next_run_at),
        "promotion_expires_on": _iso(scheduled.promotion_expires_on),
        "enabled": scheduled.enabled,
    }


def serialize_discount(discount: Discount, product: Product) -> dict[str, Any]:
    return {
        "id": discount.id,
        "product_id": product.id,
        "name": product.name,
        "category": product.category,
        "retailer": product.retailer,
        "original_price": _money(discount.original_price),
        "discount_price": _money(discount.discount_price),
        "promotional_tag": discount.promotional_tag,
        "expires_on": _iso(discount.expires_on),
    }


def create_app(
    session_factory: sessionmaker[Session],
    retailers: RetailerConfig,
    settings: Settings,
    *,
    notifier: Notifier | None = None,
    runner: Runner | None = None,
    scheduler_status: Callable[[], dict[str, bool]] | None = None,
) -> FastAPI:
    """Build the API application around an existing session factory."""

    app = FastAPI(title="Promoscraper API")
    active_runs = ActiveRuns()
    app.state.active_runs = active_runs

    async def default_runner(key: str) -> RunOutcome:
        return await run_scrape(
            key,
            retailers=retailers,
            session_factory=session_factory,
            settings=settings,
            notifier=notifier,
        )

    run = runner or default_runner

    def get_session() -> Iterable[Session]:
        """Dependency that yields a SQLAlchemy session."""

        with session_factory() as session:
            yield session

    def resolve(key: str) -> ScrapeTarget | JSONResponse:
        try:
            return retailers.target(key)
        except UnknownRetailerError as exc:
            return _error(400, str(exc))

    async def guarded_run(key: str) -> RunOutcome:
        try:
            return await run(key)
        finally:
            active_runs.release(key)

    router = APIRouter(prefix="/api")

    @router.get("/health")
    def health() -> dict[str, Any]:
        """Return application health information."""

        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "scheduler": scheduler_status() if scheduler_status else {"running": False, "processing": False},
        }

    @router.get("/dashboard/stats")
    def dashboard_stats(session: Session = Depends(get_session)) -> dict[str, Any]:
        return repo.dashboard_stats(session)

    @router.get("/dashboard/statuses")
    def dashboard_statuses(session: Session = Depends(get_session)) -> list[dict[str, Any]]:
        pairs = [(target.key, target.name) for target in retailers.targets.values()]
        statuses = repo.retailer_statuses(session, pairs)
        for status in statuses:
            if status["key"] in active_runs:
                status["status"] = "running"
        return statuses

    @router.get("/discounts")
    def list_discounts(
        retailer: str | None = Query(None, description="Retailer key to filter on."),
        session: Session = Depends(get_session),
    ):
        name = None
        if retailer:
            target = resolve(retailer)
            if isinstance(target, JSONResponse):
                return target
            name = target.name
        rows = repo.list_active_discounts(session, retailer=name)
        return [serialize_discount(discount, product) for discount, product in rows]

    @router.post("/scraper/run/{key}")
    async def trigger_run(
        key: str,
        background_tasks: BackgroundTasks,
        background: bool = Query(False, description="Return immediately and run in the background."),
    ):
        target = resolve(key)
        if isinstance(target, JSONResponse):
            return target
        if not active_runs.acquire(target.key):
            return _error(409, f"A run for {target.name} is already in progress")

        if background:
            background_tasks.add_task(guarded_run, target.key)
            LOGGER.info("Queued background run for %s", target.name)
            return JSONResponse(
                {"success": True, "retailer": target.name, "status": "queued"},
                status_code=202,
            )

        outcome = await guarded_run(target.key)
        if outcome.status == RUN_FAILED:
            return JSONResponse(outcome.as_dict(), status_code=500)
        return outcome.as_dict()

    @router.get("/scraper/runs")
    def list_runs(
        limit: int = Query(100, ge=1, le=1000),
        session: Session = Depends(get_session),
    ) -> list[dict[str, Any]]:
        return [serialize_run(item) for item in repo.list_runs(session, limit=limit)]

    @router.get("/scraper/runs/{key}")
    def list_runs_for_retailer(
        key: str,
        limit: int = Query(50, ge=1, le=1000),
        session: Session = Depends(get_session),
    ):
        target = resolve(key)
        if isinstance(target, JSONResponse):
            return target
        return [serialize_run(item) for item in repo.list_runs_for_retailer(session, target.name, limit=limit)]

    @router.get("/scraper/run/{run_id}")
    def get_run(run_id: int, session: Session = Depends(get_session)):
        item = repo.get_run(session, run_id)
        if item is None:
            return _error(404, f"Scraper run {run_id} not found")
        return serialize_run(item)

    @router.get("/scheduler/runs")
    def list_scheduled(session: Session = Depends(get_session)) -> list[dict[str, Any]]:
        return [serialize_scheduled_run(item) for item in repo.list_scheduled_runs(session)]

    @router.get("/scheduler/run/{key}")
    def get_scheduled(key: str, session: Session = Depends(get_session)):
        target = resolve(key)
        if isinstance(target, JSONResponse):
            return target
        scheduled = repo.get_scheduled_run(session, target.name)
        if scheduled is None:
            return _error(404, f"No scheduled run for {target.name}")
        return serialize_scheduled_run(scheduled)

    @router.put("/scheduler/toggle/{key}")
    def toggle_scheduled(key: str, payload: ToggleRequest, session: Session = Depends(get_session)):
        target = resolve(key)
        if isinstance(target, JSONResponse):
            return target
        scheduled = repo.set_scheduled_run_enabled(session, target.name, payload.enabled)
        if scheduled is None:
            return _error(404, f"No scheduled run for {target.name}")
        session.commit()
        LOGGER.info("Scheduled run for %s %s", target.name, "enabled" if payload.enabled else "disabled")
        return {"success": True, **serialize_scheduled_run(scheduled)}

    @router.get("/scheduler/due")
    def list_due(session: Session = Depends(get_session)) -> list[dict[str, Any]]:
        due = repo.list_due_scheduled_runs(session, datetime.now())
        return [serialize_scheduled_run(item) for item in due]

    app.include_router(router)
    return app
