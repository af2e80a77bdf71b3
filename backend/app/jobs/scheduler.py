"""
Periodic background jobs.

═══════════════════════════════════════════════════════════════════════════
JOBS
═══════════════════════════════════════════════════════════════════════════

1. CROWD SIMULATION (every CROWD_SIMULATION_INTERVAL_SECONDS, default 300)
   - Synthetic head-count for every location around the simulation centre

2. EMERGENCY DETECTION (every EMERGENCY_DETECTION_INTERVAL_SECONDS, default 120)
   - Auto-raise stampede_risk alerts for critical hotspots
   - Sweep expired alerts

Each job runs in its own asyncio task on its own interval. A failed cycle
is logged and recorded; the loop sleeps and tries again next interval.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Outcome of the most recent cycle."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobState:
    """Run bookkeeping for one periodic job."""
    name: str
    interval_seconds: float
    status: JobStatus = JobStatus.PENDING
    runs: int = 0
    failures: int = 0
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_duration_ms: Optional[float] = None
    last_error: Optional[str] = None
    last_result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "status": self.status.value,
            "runs": self.runs,
            "failures": self.failures,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_finished_at": self.last_finished_at.isoformat() if self.last_finished_at else None,
            "last_duration_ms": self.last_duration_ms,
            "last_error": self.last_error,
        }


JobFunc = Callable[[], Awaitable[Any]]


class PeriodicJobRunner:
    """
    Runs registered coroutines on fixed, independent intervals.

    Usage:
        runner = PeriodicJobRunner()
        runner.add_job("emergency_detection", detector.run_cycle, 120)

        await runner.start()
        ...
        await runner.stop()
    """

    def __init__(self):
        self._jobs: Dict[str, JobFunc] = {}
        self._states: Dict[str, JobState] = {}
        self._tasks: List[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def add_job(self, name: str, func: JobFunc, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self._jobs[name] = func
        self._states[name] = JobState(name=name, interval_seconds=interval_seconds)

    def get_state(self, name: str) -> Optional[JobState]:
        return self._states.get(name)

    def states(self) -> List[JobState]:
        return list(self._states.values())

    async def run_once(self, name: str) -> JobState:
        """Run one cycle of a job; exceptions are logged and recorded, never raised."""
        func = self._jobs[name]
        state = self._states[name]
        state.status = JobStatus.RUNNING
        state.last_started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        try:
            state.last_result = await func()
            state.status = JobStatus.COMPLETED
            state.last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            state.status = JobStatus.FAILED
            state.failures += 1
            state.last_error = str(e)
            logger.exception("Job %s failed: %s", name, e, extra={"job": name})
        finally:
            state.runs += 1
            state.last_finished_at = datetime.now(timezone.utc)
            state.last_duration_ms = (time.perf_counter() - start) * 1000

        if state.status == JobStatus.COMPLETED:
            logger.info(
                "Job %s completed in %.1fms", name, state.last_duration_ms,
                extra={"job": name, "duration_ms": state.last_duration_ms},
            )
        return state

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._loop(name), name=f"job:{name}")
            for name in self._jobs
        ]
        logger.info("Periodic job runner started (%d jobs)", len(self._tasks))

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Periodic job runner stopped")

    async def _loop(self, name: str) -> None:
        interval = self._states[name].interval_seconds
        while self._running:
            try:
                await asyncio.sleep(interval)
                await self.run_once(name)
            except asyncio.CancelledError:
                break
