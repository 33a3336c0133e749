# =============================================================================
# Celery Task Definitions — Agent Replies
# =============================================================================
#
# generate_agent_reply(conversation_id):
#   1. Load the conversation and its messages (sync session)
#   2. Run the agent persona over the messages through the LLM
#   3. Append the assistant message (or record reply_error on failure)
#
# IMPORTANT: Celery workers are SYNCHRONOUS. The database work uses the
# sync engine; the LLM call runs in a fresh event loop via asyncio.run()
# with a provider created for this task only.
#
# RETRY STRATEGY: none. The invoker's per-step deadline is shorter than any
# useful retry delay, so a failed reply is recorded and the step fails.
# =============================================================================

import asyncio
import logging

from strategist.db.engine import get_sync_session
from strategist.db.models import AgentConversation, AgentMessage
from strategist.services.conversations import REPLY_ERROR_KEY, generate_reply
from strategist.services.llm import create_llm_provider
from strategist.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def _record_reply_error(conversation_id: str, error: str) -> None:
    """Own session so the error is committed even if the reply write failed."""
    with get_sync_session() as session:
        conversation = session.get(AgentConversation, conversation_id)
        if conversation is None:
            return
        conversation.metadata_ = {
            **(conversation.metadata_ or {}),
            REPLY_ERROR_KEY: error[:1000],
        }


@celery_app.task(bind=True, name="generate_agent_reply")
def generate_agent_reply(self, conversation_id: str) -> dict:
    """
    Produce and store the named agent's reply for a conversation.

    Returns:
        dict with conversation id, agent name and reply length.
    """
    task_id = self.request.id
    logger.info("[%s] Generating reply for conversation %s", task_id, conversation_id)

    try:
        with get_sync_session() as session:
            conversation = session.get(AgentConversation, conversation_id)
            if conversation is None:
                raise ValueError(f"Conversation {conversation_id} not found")
            agent_name = conversation.agent_name
            messages = [
                {"role": m.role, "content": m.content} for m in conversation.messages
            ]

        content = asyncio.run(
            generate_reply(agent_name, messages, create_llm_provider())
        )

        with get_sync_session() as session:
            session.add(AgentMessage(
                conversation_id=conversation_id,
                role="assistant",
                content=content,
            ))

    except Exception as exc:
        logger.exception(
            "[%s] Reply failed for conversation %s: %s",
            task_id, conversation_id, exc,
        )
        _record_reply_error(conversation_id, str(exc) or type(exc).__name__)
        raise

    summary = {
        "conversation_id": conversation_id,
        "agent_name": agent_name,
        "reply_chars": len(content),
    }
    logger.info("[%s] Reply stored: %s", task_id, summary)
    return summary
