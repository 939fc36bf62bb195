import asyncio
import logging

from app import config
from app.core.models import TriggeredBy, WorkflowType
from app.core.schedule import calculate_next_run, format_timestamp, utc_now
from app.db import repository

logger = logging.getLogger(__name__)


class WorkflowScheduler:
    """Periodically executes schedule-type workflows whose next run is due.

    One pass runs immediately on start, then one per interval. There is no
    cross-process locking: two processes running a scheduler against the
    same database can both execute a due workflow.
    """

    def __init__(self, executor, session_factory, interval: float = config.SCHEDULER_INTERVAL):
        self.executor = executor
        self.session_factory = session_factory
        self.interval = interval
        self.ticks = 0
        self.last_tick_at: str | None = None
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    def _alive(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_running(self) -> bool:
        return self._alive() and not self._stop_event.is_set()

    @property
    def is_stopping(self) -> bool:
        """Stop was requested but the last pass has not returned yet."""
        return self._alive() and self._stop_event.is_set()

    def start(self) -> bool:
        if self.is_running:
            logger.info("Scheduler already running")
            return False
        if self.is_stopping:
            logger.info("Scheduler is still finishing its last pass")
            return False
        logger.info("Starting scheduler (interval: %ss)", self.interval)
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event))
        return True

    def stop(self) -> bool:
        """Stop scheduling new passes; a pass in progress is allowed to finish."""
        if not self.is_running:
            logger.info("Scheduler not running")
            return False
        logger.info("Stopping scheduler")
        self._stop_event.set()
        return True

    async def wait_stopped(self) -> None:
        if self._task is not None:
            await self._task

    def status(self) -> dict:
        return {
            "is_running": self.is_running,
            "is_stopping": self.is_stopping,
            "interval_seconds": self.interval,
            "ticks": self.ticks,
            "last_tick_at": self.last_tick_at,
        }

    async def _run(self, stop_event: asyncio.Event):
        loop = asyncio.get_running_loop()
        while not stop_event.is_set():
            started = loop.time()
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick error")
            remaining = max(0.0, self.interval - (loop.time() - started))
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                pass

    async def tick(self) -> int:
        """Execute every due workflow once; returns how many were executed."""
        self.ticks += 1
        self.last_tick_at = format_timestamp(utc_now())
        db = self.session_factory()
        try:
            due = repository.get_due_workflows(db, self.last_tick_at)
            if not due:
                logger.debug("No workflows due for execution")
                return 0
            logger.info("Found %d workflows due for execution", len(due))

            executed = 0
            for workflow in due:
                if self.executor.is_running(workflow.id):
                    logger.info("Workflow %s still running, skipping this pass", workflow.id)
                    continue
                logger.info("Executing workflow: %s (%s)", workflow.name, workflow.id)
                try:
                    result = await self.executor.execute_workflow(
                        workflow.id, workflow.user_id, triggered_by=TriggeredBy.SCHEDULE
                    )
                    executed += 1
                    if not result.success:
                        logger.warning(
                            "Scheduled run of %s failed: %s", workflow.id, result.error
                        )
                except Exception:
                    logger.exception("Failed to execute workflow %s", workflow.id)
                self._rearm(db, workflow.id)
            return executed
        finally:
            db.close()

    def _rearm(self, db, workflow_id: str) -> None:
        # The executor wrote through its own session
        db.expire_all()
        workflow = repository.get_workflow(db, workflow_id)
        if not workflow or not workflow.active or workflow.type != WorkflowType.SCHEDULE:
            return
        try:
            next_run = calculate_next_run(workflow.schedule_config)
        except ValueError as e:
            logger.error("Invalid schedule for workflow %s, deactivating: %s", workflow_id, e)
            repository.set_workflow_schedule(db, workflow_id, active=False, next_run_at=None)
            return
        repository.set_next_run(db, workflow_id, format_timestamp(next_run))
