"""
Batch orchestrator - one scheduling run.

Pages through active users (least recently processed first), filters them for
eligibility, ranks their prospects, spreads the calls over the distribution
window and submits the jobs.
"""

from time import monotonic
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from dialer import metrics
from dialer.config import config
from dialer.context import EngineContext, default_context
from dialer.db_models import DBUser
from dialer.scheduler.dispatcher import DispatchResult, Dispatcher
from dialer.scheduler.distributor import distribute_calls
from dialer.scheduler.eligibility import evaluate_user, load_user_page
from dialer.scheduler.guard import RunGuard
from dialer.scheduler.prioritizer import prioritize_prospects


@dataclass
class BatchStats:
    """Statistics of one scheduling run."""
    users_seen: int = 0
    users_eligible: int = 0
    users_processed: int = 0
    jobs_queued: int = 0
    jobs_failed: int = 0
    user_errors: int = 0
    skipped: Dict[str, int] = field(default_factory=dict)
    deadline_reached: bool = False
    run_skipped: bool = False

    def as_log_fields(self) -> dict:
        return {
            "users_seen": self.users_seen,
            "users_eligible": self.users_eligible,
            "users_processed": self.users_processed,
            "jobs_queued": self.jobs_queued,
            "jobs_failed": self.jobs_failed,
            "user_errors": self.user_errors,
            "skipped": self.skipped,
            "deadline_reached": self.deadline_reached,
        }


def schedule_user(ctx: EngineContext, user: DBUser, dispatcher: Dispatcher, stats: BatchStats) -> DispatchResult:
    """Filter, score, distribute and dispatch for a single user."""
    now = ctx.now()
    eligibility = evaluate_user(user, now)
    if not eligibility.eligible:
        ctx.logger.info("user_skipped", user_id=user.id, reason=eligibility.reason, calls_left=eligibility.calls_left)
        stats.skipped[eligibility.reason] = stats.skipped.get(eligibility.reason, 0) + 1
        return DispatchResult()

    stats.users_eligible += 1
    prospects = prioritize_prospects(ctx, user.id, eligibility.calls_left)
    if not prospects:
        ctx.logger.info("user_skipped", user_id=user.id, reason="no_eligible_prospects")
        return DispatchResult()

    jobs = distribute_calls(user, prospects, now)
    return dispatcher.dispatch(jobs, ctx.now())


def touch_user(ctx: EngineContext, db, user: DBUser) -> None:
    """Advance the user's rotation timestamp in its own commit."""
    try:
        user.last_processed_at = ctx.now()
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        ctx.logger.error("user_rotation_update_failed", user_id=user.id, error=str(e))


def process_batch(
    ctx: EngineContext,
    batch_size: Optional[int] = None,
    heartbeat: Optional[Callable[[], bool]] = None,
) -> BatchStats:
    """
    Run one scheduling pass over a page of active users.

    Every visited user has its rotation timestamp advanced, whatever happened
    to its jobs, so the next run starts with users this one did not reach.
    One user's failure is logged and never stops the others.
    `heartbeat` is called before each user (the run guard renews its lease);
    the run stops early when it returns False.
    """
    batch_size = batch_size or config.BATCH_SIZE
    stats = BatchStats()
    dispatcher = Dispatcher(ctx)
    started = monotonic()

    # Rotation commits must not expire the eagerly loaded page.
    db = ctx.session_factory(expire_on_commit=False)
    try:
        users = load_user_page(db, batch_size)
        ctx.logger.info("batch_started", users=len(users), batch_size=batch_size)

        for user in users:
            if config.soft_deadline_enabled() and monotonic() - started > config.RUN_SOFT_DEADLINE_SECONDS:
                stats.deadline_reached = True
                ctx.logger.warning("batch_soft_deadline_reached", remaining_users=len(users) - stats.users_seen)
                break

            if heartbeat is not None and not heartbeat():
                ctx.logger.warning("batch_stopped_lease_lost", remaining_users=len(users) - stats.users_seen)
                break

            stats.users_seen += 1
            try:
                result = schedule_user(ctx, user, dispatcher, stats)
                stats.jobs_queued += result.queued
                stats.jobs_failed += result.failed
                if result.queued or result.failed:
                    stats.users_processed += 1
            except Exception as e:
                stats.user_errors += 1
                ctx.logger.error("user_scheduling_failed", user_id=user.id, error=str(e), exc_info=True)
            finally:
                touch_user(ctx, db, user)
    finally:
        db.close()

    metrics.call_jobs_queued_total.inc(stats.jobs_queued)
    metrics.call_jobs_failed_total.inc(stats.jobs_failed)
    ctx.logger.info("batch_completed", duration_s=round(monotonic() - started, 3), **stats.as_log_fields())
    return stats


_guard: Optional[RunGuard] = None


def get_run_guard(ctx: EngineContext) -> RunGuard:
    global _guard
    if _guard is None:
        _guard = RunGuard(ctx.session_factory, clock=ctx.clock)
    return _guard


def run_scheduling_batch(ctx: Optional[EngineContext] = None, guard: Optional[RunGuard] = None) -> BatchStats:
    """
    Single-flight entry point for the periodic trigger.

    Returns immediately with `run_skipped=True` while another run holds the guard.
    """
    ctx = ctx or default_context()
    guard = guard or get_run_guard(ctx)

    with guard.hold() as acquired:
        if not acquired:
            ctx.logger.warning("batch_skipped_run_in_progress")
            metrics.batch_runs_total.labels(result="skipped").inc()
            return BatchStats(run_skipped=True)

        try:
            stats = process_batch(ctx, heartbeat=guard.renew)
        except Exception as e:
            metrics.batch_runs_total.labels(result="error").inc()
            ctx.logger.error("batch_processing_error", error=str(e), exc_info=True)
            raise

    metrics.batch_runs_total.labels(result="completed").inc()
    return stats
