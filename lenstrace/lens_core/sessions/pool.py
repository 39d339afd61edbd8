from __future__ import annotations

import asyncio
import itertools
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable
from uuid import uuid4

from lenstrace.lens_core.models.errors import (
    ExtractionError,
    PoolClosed,
    PoolSaturated,
    SessionLost,
)
from lenstrace.lens_core.models.interfaces import ExtractionResult
from lenstrace.lens_core.sessions.browser import ContextLauncher
from lenstrace.services.logger import log_event, logger

# (browser context, image url, job id) -> result
JobRunner = Callable[[Any, str, str], Awaitable[ExtractionResult]]


class SessionState(str, Enum):
    IDLE = "idle"
    BUSY = "busy"
    CLOSING = "closing"


@dataclass(slots=True)
class Session:
    id: str
    context: Any
    state: SessionState = SessionState.IDLE
    jobs_run: int = 0


@dataclass(slots=True)
class Job:
    image_url: str
    future: asyncio.Future
    job_id: str = field(default_factory=lambda: uuid4().hex[:12])
    enqueued_at: float = field(default_factory=time.monotonic)


class SessionPool:
    """Bounded pool of browser sessions with a FIFO job queue.

    At most ``max_sessions`` jobs run at once and each holds one session
    exclusively. When every session is busy and ``max_queue`` jobs already
    wait, ``submit`` fails with ``PoolSaturated``. A session that fails with
    anything other than a protocol error is discarded and its job fails with
    ``SessionLost``; a replacement is opened on the next demand. Idle sessions
    whose browser went away are dropped at checkout, and the pool reopens
    sessions after each job until ``warm_sessions`` are open again.
    """

    def __init__(
        self,
        launcher: ContextLauncher,
        runner: JobRunner,
        *,
        max_sessions: int = 5,
        max_queue: int = 100,
        warm_sessions: int = 0,
        max_jobs_per_session: int = 50,
    ):
        self._launcher = launcher
        self._runner = runner
        self.max_sessions = max(int(max_sessions), 1)
        self.max_queue = max(int(max_queue), 0)
        self.warm_sessions = min(max(int(warm_sessions), 0), self.max_sessions)
        self.max_jobs_per_session = max(int(max_jobs_per_session), 0)

        self._queue: deque[Job] = deque()
        self._idle: deque[Session] = deque()
        self._sessions: dict[str, Session] = {}
        self._tasks: set[asyncio.Task] = set()
        self._running = 0
        self._session_ids = itertools.count(1)
        self._started = False
        self._closed = False

        self.peak_running = 0
        self.completed_jobs = 0
        self.failed_jobs = 0

    async def start(self) -> None:
        if self._started:
            return
        await self._launcher.start()
        self._started = True
        for _ in range(self.warm_sessions):
            self._idle.append(await self._open_session())
        log_event(
            "pool_started",
            "Session pool started",
            max_sessions=self.max_sessions,
            warm_sessions=self.warm_sessions,
        )

    async def submit(self, image_url: str) -> ExtractionResult:
        if self._closed or not self._started:
            raise PoolClosed("Session pool is not accepting jobs")
        if self._running >= self.max_sessions and len(self._queue) >= self.max_queue:
            logger.warning(f"Session pool saturated ({len(self._queue)} jobs queued)")
            raise PoolSaturated(f"Job queue is full ({self.max_queue} waiting)")

        job = Job(image_url=image_url, future=asyncio.get_running_loop().create_future())
        self._queue.append(job)
        logger.debug(f"Queued job {job.job_id} ({len(self._queue)} waiting)")
        self._dispatch()
        # Shielded: a caller giving up does not cancel the submitted job.
        return await asyncio.shield(job.future)

    async def shutdown(self) -> None:
        """Stop accepting jobs, let queued and running jobs finish, then release every session."""
        self._closed = True
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        while self._idle:
            await self._discard(self._idle.popleft())
        for session in list(self._sessions.values()):
            await self._discard(session)
        if self._started:
            await self._launcher.stop()
            self._started = False
        log_event(
            "pool_stopped",
            "Session pool stopped",
            completed_jobs=self.completed_jobs,
            failed_jobs=self.failed_jobs,
        )

    def stats(self) -> dict[str, int]:
        return {
            "max_sessions": self.max_sessions,
            "running": self._running,
            "idle": len(self._idle),
            "open_sessions": len(self._sessions),
            "queued": len(self._queue),
            "peak_running": self.peak_running,
            "completed_jobs": self.completed_jobs,
            "failed_jobs": self.failed_jobs,
        }

    def _dispatch(self) -> None:
        while self._queue and self._running < self.max_sessions:
            job = self._queue.popleft()
            self._running += 1
            self.peak_running = max(self.peak_running, self._running)
            task = asyncio.create_task(self._run(job), name=f"lens-job-{job.job_id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, job: Job) -> None:
        session: Session | None = None
        waited_ms = int((time.monotonic() - job.enqueued_at) * 1000)
        try:
            try:
                session = await self._checkout()
            except Exception as exc:
                logger.error(f"Could not open a browser session for job {job.job_id}: {exc}")
                raise SessionLost(f"Could not open a browser session: {exc}") from exc

            logger.info(
                f"Job {job.job_id} running on session {session.id} (waited {waited_ms}ms)"
            )
            result = await self._runner(session.context, job.image_url, job.job_id)
        except (ExtractionError, SessionLost) as exc:
            self._settle(job, error=exc)
        except asyncio.CancelledError:
            self._settle(job, error=SessionLost("Job was cancelled"))
            raise
        except Exception as exc:
            if session is not None:
                logger.warning(f"Session {session.id} lost during job {job.job_id}: {exc}")
                await self._discard(session)
                session = None
            self._settle(job, error=SessionLost(f"Browser session failed: {exc}"))
        else:
            self._settle(job, result=result)
        finally:
            if session is not None:
                await self._checkin(session)
            self._running -= 1
            self._dispatch()
            await self._top_up_warm()

    def _settle(
        self,
        job: Job,
        *,
        result: ExtractionResult | None = None,
        error: Exception | None = None,
    ) -> None:
        if error is None:
            self.completed_jobs += 1
        else:
            self.failed_jobs += 1
        if job.future.done():
            return
        if error is not None:
            job.future.set_exception(error)
        else:
            job.future.set_result(result)

    async def _checkout(self) -> Session:
        session: Session | None = None
        while self._idle:
            candidate = self._idle.popleft()
            if self._launcher.is_alive(candidate.context):
                session = candidate
                break
            logger.warning(f"Idle session {candidate.id} lost its browser; discarding")
            await self._discard(candidate)
        if session is None:
            session = await self._open_session()
        session.state = SessionState.BUSY
        return session

    async def _top_up_warm(self) -> None:
        while not self._closed and self._started and len(self._sessions) < self.warm_sessions:
            try:
                self._idle.append(await self._open_session())
            except Exception as exc:
                logger.warning(f"Could not reopen a warm session: {exc}")
                return

    async def _checkin(self, session: Session) -> None:
        session.jobs_run += 1
        recycle = self.max_jobs_per_session and session.jobs_run >= self.max_jobs_per_session
        if self._closed or recycle:
            if recycle:
                logger.info(f"Recycling session {session.id} after {session.jobs_run} jobs")
            await self._discard(session)
            return
        session.state = SessionState.IDLE
        self._idle.append(session)

    async def _open_session(self) -> Session:
        context = await self._launcher.new_context()
        session = Session(id=f"s{next(self._session_ids)}", context=context)
        self._sessions[session.id] = session
        logger.debug(f"Opened session {session.id}")
        return session

    async def _discard(self, session: Session) -> None:
        session.state = SessionState.CLOSING
        self._sessions.pop(session.id, None)
        try:
            await self._launcher.close_context(session.context)
        except Exception as exc:
            logger.warning(f"Closing session {session.id} failed: {exc}")
        logger.debug(f"Closed session {session.id}")
