"""
Dispatcher - hands timed call jobs to the durable queue.

The queue owns delivery and retries; a failed submission is logged and the
remaining jobs are still submitted.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Protocol

from dialer.config import config
from dialer.context import EngineContext
from dialer.models import CallJob

CALL_JOB_NAME = "execute_call"


@dataclass(frozen=True)
class QueueOptions:
    """Submission options: initial delay plus the retry contract."""
    delay_ms: int
    attempts: int
    backoff_delay_ms: int
    backoff_type: str = "exponential"


class JobQueue(Protocol):
    def add(self, name: str, payload: Dict[str, Any], options: QueueOptions) -> Any:
        ...


class CeleryJobQueue:
    """JobQueue backed by Celery. The retry contract travels with the job."""

    def add(self, name: str, payload: Dict[str, Any], options: QueueOptions) -> Any:
        from dialer.celery_tasks import celery_app

        return celery_app.send_task(
            name,
            kwargs={
                "job": payload,
                "attempts": options.attempts,
                "backoff_ms": options.backoff_delay_ms,
            },
            countdown=options.delay_ms / 1000.0,
        )


@dataclass
class DispatchResult:
    queued: int = 0
    failed: int = 0


def delay_ms_until(scheduled_time: datetime, now: datetime) -> int:
    """Milliseconds from `now` to `scheduled_time`, never negative."""
    return max(0, int((scheduled_time - now).total_seconds() * 1000))


def queue_options_for(job: CallJob, now: datetime) -> QueueOptions:
    return QueueOptions(
        delay_ms=delay_ms_until(job.scheduled_time, now),
        attempts=config.CALL_JOB_ATTEMPTS,
        backoff_delay_ms=config.CALL_JOB_BACKOFF_SECONDS * 1000,
    )


class Dispatcher:
    """Submits call jobs for one user."""

    def __init__(self, ctx: EngineContext):
        self.ctx = ctx

    def dispatch(self, jobs: List[CallJob], now: datetime) -> DispatchResult:
        result = DispatchResult()
        for job in jobs:
            options = queue_options_for(job, now)
            try:
                self.ctx.queue.add(CALL_JOB_NAME, job.model_dump(mode="json"), options)
            except Exception as e:
                result.failed += 1
                self.ctx.logger.error(
                    "call_job_queue_failed",
                    user_id=job.user_id,
                    prospect_id=job.prospect_id,
                    error=str(e),
                )
                continue

            result.queued += 1
            self.ctx.logger.info(
                "call_scheduled",
                user_id=job.user_id,
                prospect_id=job.prospect_id,
                scheduled_time=job.scheduled_time.isoformat(),
                delay_ms=options.delay_ms,
            )
        return result
