"""
Call execution for a dequeued call job.

Creates the Conversation the outcome webhook will later complete, then asks
the calling provider to place the call.
"""

from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError

from dialer.config import config
from dialer.context import EngineContext
from dialer.db_models import ConversationResult, ConversationStatus, DBConversation, DBProspect, DBUser
from dialer.exceptions import CallJobError, CallProviderError
from dialer.models import CallJob


def outcome_callback_url(conversation_id: int) -> str:
    return f"{config.BASE_URL.rstrip('/')}/webhooks/outcome?conversationId={conversation_id}"


def execute_call_job(ctx: EngineContext, job: CallJob, provider) -> Dict[str, Any]:
    """
    Execute one call job.

    Args:
        ctx: engine context
        job: the dequeued job
        provider: object with `initiate_call(...)` returning a response with `call_id`

    Returns:
        dict: {"status": "success", "conversation_id", "call_id"}

    Raises:
        CallJobError: the job can never succeed (missing prospect/user/phone, no minutes)
        CallProviderError: the provider failed; the Conversation is removed so a retry starts clean
    """
    log = ctx.logger.bind(user_id=job.user_id, prospect_id=job.prospect_id)
    db = ctx.session_factory()
    try:
        prospect = db.get(DBProspect, job.prospect_id)
        user = db.get(DBUser, job.user_id)
        if prospect is None or user is None:
            raise CallJobError(f"Missing data: prospect={prospect is not None}, user={user is not None}")
        if not prospect.phone:
            raise CallJobError("Prospect phone number missing")
        if user.subscription is None or (user.subscription.minutes_left or 0) <= 0:
            raise CallJobError("No minutes left in subscription")

        now = ctx.now()
        conversation = DBConversation(
            prospect_id=prospect.id,
            transcript="",
            call_start_at=now,
            notes="Call initiated",
            result=ConversationResult.NOTRESPONDED,
            status=ConversationStatus.INPROGRESS,
        )
        db.add(conversation)
        db.commit()
        db.refresh(conversation)

        agent = job.agent_settings
        try:
            call = provider.initiate_call(
                phone_number=prospect.phone,
                script=job.script,
                variables=job.variables,
                callback_url=outcome_callback_url(conversation.id),
                voice=agent.voice,
                language=agent.language,
                first_message=agent.first_message,
            )
        except CallProviderError:
            db.delete(conversation)
            db.commit()
            raise

        # The call is live from here on; a store error must not trigger a redial.
        conversation_id = conversation.id
        try:
            conversation.call_id = call.call_id
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            log.error("call_id_store_failed", conversation_id=conversation_id, call_id=call.call_id, error=str(e))

        log.info("call_execution_started", conversation_id=conversation_id, call_id=call.call_id)
        return {"status": "success", "conversation_id": conversation_id, "call_id": call.call_id}
    finally:
        db.close()
