"""Outcome webhook - entry point for call lifecycle events from the provider."""

import json

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from dialer.context import EngineContext
from dialer.database import SessionLocal
from dialer.logging_config import get_logger
from dialer.models import CallEvent
from dialer.outcome.processor import OutcomeProcessor

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def get_outcome_processor() -> OutcomeProcessor:
    return OutcomeProcessor(EngineContext(session_factory=SessionLocal, logger=logger))


# POST /webhooks/outcome?conversationId=42
# Gets: query param conversationId, JSON body {eventType, callId, timestamp, duration?, transcript?, outcome?, failureReason?}
# Returns: {"received": true}; 400 only when the payload is unusable
# Example:
#   curl -X POST 'http://localhost:8000/webhooks/outcome?conversationId=42' \
#     -H 'Content-Type: application/json' \
#     -d '{"eventType": "call.failed", "callId": "c-1", "timestamp": "2026-01-05T10:00:00Z", "failureReason": "busy"}'
@router.post("/outcome")
async def outcome_webhook(request: Request, processor: OutcomeProcessor = Depends(get_outcome_processor)):
    """
    Receive a call outcome event.

    Always answers 200 once the payload is valid, even when processing fails,
    so the sender never retries; duplicate deliveries are absorbed by the processor.
    """
    conversation_id = request.query_params.get("conversationId")

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None

    if not conversation_id or not isinstance(body, dict) or not body.get("eventType"):
        logger.warning("invalid_webhook_payload", query=dict(request.query_params), body=body)
        raise HTTPException(status_code=400, detail="Missing conversationId or eventType")

    try:
        event = CallEvent.model_validate({**body, "conversationId": conversation_id})
    except ValidationError as e:
        logger.warning("invalid_webhook_payload", conversation_id=conversation_id, errors=e.errors(include_url=False))
        raise HTTPException(status_code=400, detail="Invalid outcome event")

    try:
        await run_in_threadpool(processor.process, event)
    except Exception as e:
        # Always 200 to prevent retries
        logger.error("webhook_processing_failed", conversation_id=event.conversation_id, error=str(e))

    return {"received": True}
