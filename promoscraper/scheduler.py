"""Periodic trigger for retailer runs whose promotion period has ended."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.orm import Session, sessionmaker
from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_exponential

from promoscraper.config import RetailerConfig, Settings
from promoscraper.logging_config import get_logger
from promoscraper.orchestrator import RunOutcome
from promoscraper.promotions import next_day_at
from promoscraper.storage import repo
from promoscraper.storage.models_sql import RUN_FAILED, RUN_SUCCESS

LOGGER = get_logger(__name__)

Runner = Callable[[str], Awaitable[RunOutcome]]


class RunScheduler:
    """Checks ``scheduled_runs`` every few minutes and runs the due retailers.

    Runs are awaited one after another; a tick that is still processing
    causes the next tick to be skipped.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        retailers: RetailerConfig,
        settings: Settings,
        runner: Runner,
        *,
        clock: Callable[[], datetime] = datetime.now,
        retry_wait=None,
    ) -> None:
        self.session_factory = session_factory
        self.retailers = retailers
        self.settings = settings
        self.runner = runner
        self._clock = clock
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=5, max=60)
        self._scheduler: AsyncIOScheduler | None = None
        self._processing = False

    def start(self) -> None:
        """Register the interval job on an AsyncIOScheduler; needs a running loop."""

        if self._scheduler is not None:
            LOGGER.warning("Scheduler is already running")
            return
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            self.tick,
            "interval",
            minutes=self.settings.scheduler_interval_minutes,
            id="promoscraper-due-runs",
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(),
        )
        scheduler.start()
        self._scheduler = scheduler
        LOGGER.info("Scheduler started with interval=%s minutes", self.settings.scheduler_interval_minutes)

    def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        LOGGER.info("Scheduler stopped")

    def status(self) -> dict[str, bool]:
        return {"running": self._scheduler is not None, "processing": self._processing}

    async def tick(self) -> list[RunOutcome]:
        if self._processing:
            LOGGER.debug("Scheduler check already in progress, skipping")
            return []
        self._processing = True
        try:
            return await self._run_due()
        except Exception:
            LOGGER.exception("Error checking for due scraper runs")
            return []
        finally:
            self._processing = False

    def _recently_succeeded(self, session: Session, retailer: str) -> bool:
        last = repo.last_run_for_retailer(session, retailer)
        if last is None or last.status != RUN_SUCCESS:
            return False
        finished = repo.as_utc(last.completed_at or last.started_at)
        window = timedelta(minutes=self.settings.recent_run_window_minutes)
        return finished is not None and datetime.now(timezone.utc) - finished < window

    async def _run_due(self) -> list[RunOutcome]:
        now = self._clock()
        with self.session_factory() as session, session.begin():
            repo.deactivate_expired_discounts(session, now.date())
            due = [scheduled.retailer for scheduled in repo.list_due_scheduled_runs(session, now)]

        if not due:
            LOGGER.debug("No due scraper runs at this time")
            return []

        pending: list[str] = []
        with self.session_factory() as session, session.begin():
            for retailer in due:
                if self._recently_succeeded(session, retailer):
                    LOGGER.info("Skipping %s - recent successful run", retailer)
                    repo.update_next_run_at(session, retailer, next_day_at(now))
                    continue
                pending.append(retailer)

        if not pending:
            return []
        LOGGER.info("Found %d scraper run(s) to trigger: %s", len(pending), ", ".join(pending))

        outcomes: list[RunOutcome] = []
        for retailer in pending:
            outcome = await self._trigger(retailer)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    async def _trigger(self, retailer: str) -> RunOutcome | None:
        target = self.retailers.by_name(retailer)
        with self.session_factory() as session, session.begin():
            repo.set_scheduled_run_enabled(session, retailer, False)

        outcome: RunOutcome | None = None
        try:
            if target is None:
                LOGGER.error("Unknown retailer for scheduling: %s", retailer)
            else:
                outcome = await self._run_with_retry(target.key)
        except Exception:
            LOGGER.exception("Scheduled run for %s raised", retailer)
        finally:
            with self.session_factory() as session, session.begin():
                # A successful run already rescheduled itself from the new expiry date.
                if outcome is None or outcome.status != RUN_SUCCESS:
                    repo.update_next_run_at(session, retailer, next_day_at(self._clock()))
                repo.set_scheduled_run_enabled(session, retailer, True)
        return outcome

    async def _run_with_retry(self, key: str) -> RunOutcome:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.scheduler_retry_attempts),
            wait=self._retry_wait,
            retry=retry_if_result(lambda outcome: outcome.status == RUN_FAILED),
            retry_error_callback=lambda state: state.outcome.result(),
        )
        return await retrying(self.runner, key)
