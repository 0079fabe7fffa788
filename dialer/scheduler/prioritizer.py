"""
Prioritization scorer.

Selects a user's callable prospects and ranks them by urgency.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List

from sqlalchemy import and_, case, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dialer.config import config
from dialer.context import EngineContext
from dialer.db_models import DBProspect, ProspectStatus
from dialer.retry import RetryExhausted, retry_call

RETRYABLE_STATUSES = (ProspectStatus.INITIAL, ProspectStatus.NOTRESPONDED, ProspectStatus.FAILED)

RESCHEDULED_SCORE = 100.0
STARVATION_DAYS = 30
STARVATION_BOOST = 10.0


@dataclass
class RankedProspect:
    prospect: DBProspect
    score: float


def fetch_candidates(db: Session, user_id: int, limit: int, now: datetime) -> List[DBProspect]:
    """
    Candidate pool, due callbacks first, then oldest `updated_at`:
    - INITIAL / NOTRESPONDED / FAILED not contacted in the cooldown window (or never)
    - RESCHEDULED due within the lookahead window
    """
    recontact_before = now - timedelta(hours=config.RECONTACT_AFTER_HOURS)
    due_before = now + timedelta(minutes=config.RESCHEDULE_LOOKAHEAD_MINUTES)

    return (
        db.query(DBProspect)
        .filter(DBProspect.user_id == user_id)
        .filter(
            or_(
                and_(
                    DBProspect.status.in_(RETRYABLE_STATUSES),
                    or_(DBProspect.last_contacted.is_(None), DBProspect.last_contacted < recontact_before),
                ),
                and_(
                    DBProspect.status == ProspectStatus.RESCHEDULED,
                    DBProspect.rescheduled_for <= due_before,
                ),
            )
        )
        .order_by(
            case((DBProspect.status == ProspectStatus.RESCHEDULED, 0), else_=1),
            DBProspect.updated_at.asc(),
            DBProspect.id.asc(),
        )
        .limit(limit)
        .all()
    )


def score_prospect(prospect: DBProspect, now: datetime) -> float:
    """Priority score; rescheduled prospects always win with 100."""
    if prospect.status == ProspectStatus.RESCHEDULED:
        return RESCHEDULED_SCORE

    last_contacted = prospect.last_contacted or (now - timedelta(days=STARVATION_DAYS))
    days_since_last = math.floor((now - last_contacted) / timedelta(days=1))
    score = days_since_last * 0.5 + (prospect.rescheduled_count or 0) * 2
    if days_since_last > STARVATION_DAYS:
        score += STARVATION_BOOST
    return score


def rank_prospects(prospects: List[DBProspect], now: datetime, limit: int) -> List[RankedProspect]:
    """
    Rescheduled prospects first whatever the others score, then by score
    descending. Ties keep query order (sorted() is stable).
    """
    ranked = [RankedProspect(p, score_prospect(p, now)) for p in prospects]
    ranked = sorted(ranked, key=lambda r: (r.prospect.status == ProspectStatus.RESCHEDULED, r.score), reverse=True)
    return ranked[:limit]


def prioritize_prospects(ctx: EngineContext, user_id: int, batch_size: int) -> List[DBProspect]:
    """
    Ranked prospects to call now for `user_id`, at most `batch_size`.

    Query failures are retried with a fixed delay; when every attempt fails the
    user simply gets no calls this run.
    """
    if batch_size <= 0:
        return []

    now = ctx.now()

    def _load():
        db = ctx.session_factory()
        try:
            candidates = fetch_candidates(db, user_id, batch_size, now)
            # Prospects are handed to the distributor after the session closes.
            db.expunge_all()
            return candidates
        finally:
            db.close()

    try:
        candidates = retry_call(
            _load,
            attempts=config.PRIORITIZE_ATTEMPTS,
            delay=config.PRIORITIZE_RETRY_DELAY_SECONDS,
            retry_on=(SQLAlchemyError,),
            sleep=ctx.sleep,
            operation="fetch_prospect_candidates",
            user_id=user_id,
        )
    except RetryExhausted as e:
        ctx.logger.error("prospect_prioritization_failed", user_id=user_id, attempts=e.attempts, error=str(e.last_error))
        return []

    ranked = rank_prospects(candidates, now, batch_size)
    ctx.logger.debug(
        "prospects_prioritized",
        user_id=user_id,
        candidates=len(candidates),
        selected=[(r.prospect.id, r.score) for r in ranked],
    )
    return [r.prospect for r in ranked]
