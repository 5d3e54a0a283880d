import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.conversation.models import utcnow
from services.exceptions import NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class ScheduledJob:
    name: str
    interval_seconds: float
    func: Callable[[], Awaitable[Any]]
    running: bool = False
    runs: int = 0
    failures: int = 0
    skipped: int = 0
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_result: Any = None
    last_error: Optional[str] = None
    _current: Optional[asyncio.Task] = field(default=None, repr=False)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "running": self.running,
            "runs": self.runs,
            "failures": self.failures,
            "skipped": self.skipped,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_finished_at": self.last_finished_at.isoformat() if self.last_finished_at else None,
            "last_result": self.last_result,
            "last_error": self.last_error,
        }


class MaintenanceScheduler:
    """
    In-process periodic job runner.

    Each job ticks on its own interval. A tick that fires while the previous
    run of the same job is still going is skipped. A failing run is logged
    and the loop keeps ticking.

    Usage:
        scheduler = MaintenanceScheduler()
        scheduler.add_job("session_sweep", 900, sweep)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.jobs: Dict[str, ScheduledJob] = {}
        self.running = False
        self._sleep = sleep
        self._loops: List[asyncio.Task] = []

    def add_job(self, name: str, interval_seconds: float, func: Callable[[], Awaitable[Any]]) -> ScheduledJob:
        job = ScheduledJob(name=name, interval_seconds=interval_seconds, func=func)
        self.jobs[name] = job
        return job

    def _require(self, name: str) -> ScheduledJob:
        job = self.jobs.get(name)
        if job is None:
            raise NotFoundError("Job", f"Job '{name}' not found")
        return job

    # ========================================
    # LIFECYCLE
    # ========================================

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        for job in self.jobs.values():
            self._loops.append(asyncio.create_task(self._loop(job), name=f"job:{job.name}"))
        logger.info(f"✅ Scheduler started with {len(self.jobs)} jobs")

    async def stop(self) -> None:
        self.running = False
        tasks = list(self._loops)
        tasks += [job._current for job in self.jobs.values() if job._current is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._loops = []
        logger.info("Scheduler stopped")

    async def _loop(self, job: ScheduledJob) -> None:
        while self.running:
            await self._sleep(job.interval_seconds)
            if not self.running:
                break
            if job.running:
                job.skipped += 1
                logger.warning(f"⚠️ Skipping {job.name} tick: previous run still in progress")
                continue
            job._current = asyncio.create_task(self._execute(job))

    # ========================================
    # EXECUTION
    # ========================================

    async def _execute(self, job: ScheduledJob) -> Any:
        job.running = True
        job.last_started_at = utcnow()
        try:
            result = await job.func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.failures += 1
            job.last_error = str(e)
            logger.error(f"❌ Job {job.name} failed: {e}")
            return None
        else:
            job.runs += 1
            job.last_result = result
            job.last_error = None
            return result
        finally:
            job.running = False
            job.last_finished_at = utcnow()

    async def run_job_once(self, name: str) -> Any:
        """Run a job now; returns None without running when it is already in progress."""
        job = self._require(name)
        if job.running:
            job.skipped += 1
            logger.warning(f"⚠️ {job.name} already running, skipped")
            return None
        return await self._execute(job)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "jobs": [job.snapshot() for job in self.jobs.values()],
        }
