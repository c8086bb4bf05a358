"""
Supervised Background Merge Jobs.

A multi-item batch returns a correlation id immediately while the merge
runs detached. Every job is a tracked asyncio.Task owned by
MergeJobSupervisor, so its outcome is never lost:

    correlation_id = supervisor.submit(buffers, "mp3")     # merge_<uuid>
    supervisor.status(correlation_id)                      # Optional[MergeJobStatus]
    await supervisor.wait(correlation_id)                  # until finished
    await supervisor.shutdown(timeout=30)                  # drain, then cancel

Job lifecycle:
    pending -> running -> succeeded | failed | cancelled

Each attempt runs MergeEngine.merge under the merge resilience policy
(MergeFailure is retried a bounded number of times). The final outcome is
reported through the NotificationSink ("MP3 Merge Completed" or
"MP3 Merge Failed") and recorded in the job status. Failures are never
re-raised to the caller that submitted the batch.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from news_tts.core.logging import correlation, fail, get_logger, info, success, verbose, warn
from news_tts.core.metrics import NewsTTSMetrics, metrics as global_metrics
from news_tts.core.notifications import NotificationSink, Severity
from news_tts.tts.buffer import SharedAudioBuffer
from news_tts.tts.merger import MergeEngine
from news_tts.tts.resilience import ResiliencePipeline
from news_tts.tts.storage import LocalStorage
from news_tts.utils.tasks import cancel_and_wait
from news_tts.utils.timeit import timeit

_LOG = get_logger("news-tts.merge-jobs")

MERGE_ID_PREFIX = "merge_"


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class MergeJobStatus:
    """Observable state of one merge job."""
    correlation_id: str
    items: int
    fmt: str
    state: JobState = JobState.PENDING
    attempts: int = 0
    output_path: Optional[str] = None
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def done(self) -> bool:
        return self.state in (JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class MergeJobSupervisor:
    """
    Owns every detached merge task.

    Args:
        engine: MergeEngine doing the actual work.
        storage: Provides the output path of each job.
        pipeline: Merge resilience pipeline (job-level retry).
        notifier: Receives completion and failure notifications.
        max_history: Finished statuses kept for lookup.
    """

    def __init__(
        self,
        engine: MergeEngine,
        storage: LocalStorage,
        pipeline: Optional[ResiliencePipeline] = None,
        notifier: Optional[NotificationSink] = None,
        metrics: Optional[NewsTTSMetrics] = None,
        max_history: int = 1000,
    ):
        self.engine = engine
        self.storage = storage
        self.pipeline = pipeline
        self.notifier = notifier
        self._metrics = metrics or global_metrics
        self.max_history = max_history
        self._jobs: "OrderedDict[str, MergeJobStatus]" = OrderedDict()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._closed = False

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, buffers: Sequence[SharedAudioBuffer], fmt: str = "mp3") -> str:
        """
        Start a merge job and return its correlation id at once.

        Raises:
            RuntimeError: The supervisor has been shut down.
        """
        if self._closed:
            raise RuntimeError("merge supervisor is shut down")

        correlation_id = f"{MERGE_ID_PREFIX}{uuid.uuid4()}"
        status = MergeJobStatus(correlation_id=correlation_id, items=len(buffers), fmt=fmt)
        self._jobs[correlation_id] = status
        self._prune_history()

        task = asyncio.get_running_loop().create_task(self._run(status, list(buffers)), name=correlation_id)
        self._tasks[correlation_id] = task
        task.add_done_callback(lambda t, cid=correlation_id: self._on_task_done(cid))
        self._metrics.set_merge_jobs_active(len(self._tasks))
        info(_LOG, "merge_submitted", correlation_id=correlation_id, items=len(buffers), format=fmt)
        return correlation_id

    def status(self, correlation_id: str) -> Optional[MergeJobStatus]:
        return self._jobs.get(correlation_id)

    def result(self, correlation_id: str) -> Optional[Path]:
        """Output path of a succeeded job, otherwise None."""
        status = self._jobs.get(correlation_id)
        if status is None or status.state is not JobState.SUCCEEDED or status.output_path is None:
            return None
        return Path(status.output_path)

    def list_jobs(self) -> List[MergeJobStatus]:
        return list(self._jobs.values())

    async def wait(self, correlation_id: str, timeout: Optional[float] = None) -> Optional[MergeJobStatus]:
        """
        Wait until a job finishes (or timeout elapses) and return its status.

        Cancelling the waiter does not cancel the job.
        """
        task = self._tasks.get(correlation_id)
        if task is not None:
            await asyncio.wait([task], timeout=timeout)
        return self._jobs.get(correlation_id)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop accepting jobs, let running ones finish, cancel stragglers."""
        self._closed = True
        tasks = list(self._tasks.values())
        if not tasks:
            return
        info(_LOG, "merge_shutdown", active=len(tasks), timeout=timeout)
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            warn(_LOG, "merge_shutdown_cancelling", pending=len(pending))
            await cancel_and_wait(pending)

    async def _run(self, status: MergeJobStatus, buffers: List[SharedAudioBuffer]) -> None:
        with correlation(status.correlation_id):
            await self._merge(status, buffers)

    async def _merge(self, status: MergeJobStatus, buffers: List[SharedAudioBuffer]) -> None:
        status.state = JobState.RUNNING
        output_path = self.storage.merged_path(status.correlation_id, status.fmt)

        async def attempt() -> Path:
            status.attempts += 1
            verbose(_LOG, "merge_attempt", attempt=status.attempts)
            return await self.engine.merge(buffers, status.fmt, output_path)

        with timeit("merge_job") as t:
            try:
                if self.pipeline is not None:
                    path = await self.pipeline.execute(attempt)
                else:
                    path = await attempt()
            except asyncio.CancelledError:
                self._finish(status, JobState.CANCELLED, error="cancelled")
                self._metrics.record_merge("cancelled", t.seconds)
                warn(_LOG, "merge_cancelled", attempts=status.attempts)
                raise
            except Exception as exc:
                self._finish(status, JobState.FAILED, error=f"{type(exc).__name__}: {exc}")
                self._metrics.record_merge("failed", t.seconds)
                fail(_LOG, "merge_failed", attempts=status.attempts, error=status.error, seconds=round(t.seconds, 3))
                await self._notify(
                    "MP3 Merge Failed",
                    f"Merge {status.correlation_id} of {status.items} items failed "
                    f"after {status.attempts} attempt(s): {status.error}",
                    Severity.ERROR,
                )
                return

        status.output_path = str(path)
        self._finish(status, JobState.SUCCEEDED)
        self._metrics.record_merge("succeeded", t.seconds)
        success(_LOG, "merge_completed", items=status.items, output=status.output_path,
                attempts=status.attempts, seconds=round(t.seconds, 3))
        await self._notify(
            "MP3 Merge Completed",
            f"Merge {status.correlation_id} of {status.items} items written to {status.output_path}",
            Severity.SUCCESS,
        )

    def _finish(self, status: MergeJobStatus, state: JobState, error: Optional[str] = None) -> None:
        status.state = state
        status.error = error
        status.finished_at = time.time()

    def _on_task_done(self, correlation_id: str) -> None:
        self._tasks.pop(correlation_id, None)
        self._metrics.set_merge_jobs_active(len(self._tasks))

    def _prune_history(self) -> None:
        while len(self._jobs) > self.max_history:
            oldest_id, oldest = next(iter(self._jobs.items()))
            if not oldest.done:
                break
            del self._jobs[oldest_id]

    async def _notify(self, title: str, message: str, severity: Severity) -> None:
        if self.notifier is not None:
            await self.notifier.notify(title, message, severity)
