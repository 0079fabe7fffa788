"""
Async job processing with Celery.
Periodic scheduling runs (beat) and delayed call execution.
"""

from datetime import timedelta

from celery import Celery
from dialer.config import config

# Initialize Celery with Redis broker
celery_app = Celery(
    'dialer',
    broker=config.REDIS_URL,
    backend=config.REDIS_URL
)

# Celery configuration
celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    worker_concurrency=config.WORKER_CONCURRENCY,
    # Jobs are acknowledged after execution so a crashed worker gets them redelivered.
    task_acks_late=True,
)

# Periodic trigger for scheduling runs. Ticks that are not picked up before the
# next one is due are dropped instead of piling up.
celery_app.conf.beat_schedule = {
    'run-scheduling-batch': {
        'task': 'run_scheduling_batch',
        'schedule': timedelta(minutes=config.SCHEDULE_INTERVAL_MINUTES),
        'options': {'expires': config.SCHEDULE_INTERVAL_MINUTES * 60},
    },
}


@celery_app.task(name='run_scheduling_batch')
def run_scheduling_batch_task():
    """
    Run one single-flight scheduling batch.

    Returns:
        dict: batch statistics
    """
    from dataclasses import asdict
    from dialer.scheduler import run_scheduling_batch

    stats = run_scheduling_batch()
    return asdict(stats)


@celery_app.task(name='execute_call', bind=True)
def execute_call_task(self, job: dict, attempts: int = 3, backoff_ms: int = 60000):
    """
    Background task to execute one scheduled call.

    Args:
        job: CallJob payload
        attempts: total attempts allowed for this job
        backoff_ms: base delay of the exponential retry backoff

    Returns:
        dict: Call result with status, conversation_id and call_id
    """
    from sqlalchemy.exc import SQLAlchemyError
    from dialer.context import EngineContext
    from dialer.database import SessionLocal
    from dialer.exceptions import CallJobError, CallProviderError
    from dialer.executor.ultravox import UltravoxClient
    from dialer.executor.worker import execute_call_job
    from dialer.logging_config import logger
    from dialer.models import CallJob

    call_job = CallJob.model_validate(job)
    ctx = EngineContext(session_factory=SessionLocal, logger=logger)

    try:
        return execute_call_job(ctx, call_job, UltravoxClient())
    except CallJobError as e:
        # Permanent: retrying cannot help.
        logger.error("call_job_rejected", user_id=call_job.user_id, prospect_id=call_job.prospect_id, error=str(e))
        return {"status": "error", "message": str(e)}
    except (CallProviderError, SQLAlchemyError) as e:
        attempt = self.request.retries + 1
        if attempt >= attempts:
            logger.error(
                "call_job_failed",
                user_id=call_job.user_id,
                prospect_id=call_job.prospect_id,
                attempt=attempt,
                error=str(e),
            )
            raise
        countdown = (backoff_ms / 1000.0) * (2 ** self.request.retries)
        logger.warning(
            "call_job_retrying",
            user_id=call_job.user_id,
            prospect_id=call_job.prospect_id,
            attempt=attempt,
            countdown=countdown,
            error=str(e),
        )
        raise self.retry(exc=e, countdown=countdown, max_retries=attempts - 1)
