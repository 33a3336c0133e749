# =============================================================================
# Agent Conversations — Named-Agent Messaging Primitive
# =============================================================================
#
# The invoker reaches a named agent through three calls:
#
#   create_conversation(agent_name, metadata) -> conversation
#   add_message(conversation_id, {role, content}) -> message
#   get_conversation(conversation_id) -> conversation with messages
#
# Adding a user message schedules a reply. The reply is produced by
# generate_reply(): the agent's persona becomes the system prompt and the
# conversation so far becomes the message list. Where that runs depends on
# settings.agent_dispatch:
#
#   "inline" — an asyncio task in the current process
#   "celery" — the generate_agent_reply task on a worker (SQL backend only)
#
# A failed reply is recorded on the conversation as metadata["reply_error"]
# so the invoker can fail the step without waiting out its deadline. When the
# deadline does fire, the invoker calls cancel_reply(conversation_id), which
# stops a pending inline reply. Celery-dispatched replies are not revoked.
#
# ARCHITECTURE:
#   AgentConversations (Protocol)
#   ├── SQLAgentConversations      — agent_conversations / agent_messages
#   ├── InMemoryAgentConversations — dicts (demos, tests)
#   └── get_agent_conversations()  — singleton by settings.storage_backend
# =============================================================================

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

from strategist.agents.catalog import persona_for
from strategist.config import settings
from strategist.services.llm import LLMProvider, get_llm_provider

logger = logging.getLogger(__name__)

REPLY_ERROR_KEY = "reply_error"


class ConversationNotFoundError(LookupError):
    pass


class AgentConversations(Protocol):
    async def create_conversation(
        self, agent_name: str, metadata: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        ...

    async def add_message(
        self, conversation_id: str, message: Mapping[str, str],
    ) -> dict[str, Any]:
        ...

    async def get_conversation(self, conversation_id: str) -> dict[str, Any]:
        ...

    def cancel_reply(self, conversation_id: str) -> bool:
        """Cancel a pending reply. True if one was cancelled."""
        ...


# ---------------------------------------------------------------------------
# Reply Generation
# ---------------------------------------------------------------------------


async def generate_reply(
    agent_name: str,
    messages: list[Mapping[str, str]],
    llm: LLMProvider,
) -> str:
    """Run the agent's persona over the conversation and return its reply."""
    history = [
        {"role": m["role"], "content": m["content"]}
        for m in messages
        if m["role"] in ("user", "assistant")
    ]
    response = await llm.complete(messages=history, system=persona_for(agent_name))
    logger.info(
        "Agent %s replied: model=%s, tokens=%d+%d",
        agent_name, response.model,
        response.input_tokens, response.output_tokens,
    )
    return response.content


class _InlineReplies:
    """
    Keeps strong references to in-flight reply tasks until they finish, and
    finds them by conversation so an abandoned reply can be cancelled.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._by_conversation: dict[str, asyncio.Task] = {}

    def spawn(self, conversation_id: str, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        self._by_conversation[conversation_id] = task
        task.add_done_callback(lambda t: self._forget(conversation_id, t))
        return task

    def cancel(self, conversation_id: str) -> bool:
        task = self._by_conversation.get(conversation_id)
        if task is None or task.done():
            return False
        return task.cancel()

    def _forget(self, conversation_id: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if self._by_conversation.get(conversation_id) is task:
            del self._by_conversation[conversation_id]


# ---------------------------------------------------------------------------
# In-Memory Backend
# ---------------------------------------------------------------------------


class InMemoryAgentConversations:
    """
    Process-local conversations. Replies are always generated inline.

    Args:
        llm: Provider used for replies. Defaults to the global singleton,
            resolved on first reply.
    """

    def __init__(self, llm: LLMProvider | None = None) -> None:
        self._llm = llm
        self._conversations: dict[str, dict[str, Any]] = {}
        self._conversation_ids = itertools.count(1)
        self._message_ids = itertools.count(1)
        self._replies = _InlineReplies()

    async def create_conversation(
        self, agent_name: str, metadata: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        conversation_id = f"conv-{next(self._conversation_ids)}"
        conversation = {
            "id": conversation_id,
            "agent_name": agent_name,
            "metadata": dict(metadata or {}),
            "created_date": datetime.now(timezone.utc).isoformat(),
            "messages": [],
        }
        self._conversations[conversation_id] = conversation
        return _copy_conversation(conversation)

    async def add_message(
        self, conversation_id: str, message: Mapping[str, str],
    ) -> dict[str, Any]:
        conversation = self._require(conversation_id)
        stored = {
            "id": next(self._message_ids),
            "role": message["role"],
            "content": message["content"],
            "created_date": datetime.now(timezone.utc).isoformat(),
        }
        conversation["messages"].append(stored)
        if stored["role"] == "user":
            self._replies.spawn(conversation_id, self._reply(conversation_id))
        return dict(stored)

    async def get_conversation(self, conversation_id: str) -> dict[str, Any]:
        return _copy_conversation(self._require(conversation_id))

    def cancel_reply(self, conversation_id: str) -> bool:
        return self._replies.cancel(conversation_id)

    def _require(self, conversation_id: str) -> dict[str, Any]:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def _reply(self, conversation_id: str) -> None:
        conversation = self._conversations[conversation_id]
        try:
            llm = self._llm or get_llm_provider()
            content = await generate_reply(
                conversation["agent_name"], list(conversation["messages"]), llm,
            )
        except Exception as e:
            logger.exception(
                "Reply generation failed for conversation %s", conversation_id,
            )
            conversation["metadata"][REPLY_ERROR_KEY] = str(e) or type(e).__name__
            return

        conversation["messages"].append({
            "id": next(self._message_ids),
            "role": "assistant",
            "content": content,
            "created_date": datetime.now(timezone.utc).isoformat(),
        })


def _copy_conversation(conversation: dict[str, Any]) -> dict[str, Any]:
    return {
        **conversation,
        "metadata": dict(conversation["metadata"]),
        "messages": [dict(m) for m in conversation["messages"]],
    }


# ---------------------------------------------------------------------------
# SQL Backend
# ---------------------------------------------------------------------------


class SQLAgentConversations:
    """
    Conversations persisted in agent_conversations / agent_messages.

    With agent_dispatch="celery" the reply is produced by a worker, which
    writes the assistant message through the sync engine.
    """

    def __init__(
        self,
        session_factory=None,
        dispatch: str | None = None,
        llm: LLMProvider | None = None,
    ) -> None:
        if session_factory is None:
            from strategist.db.engine import async_session_factory

            session_factory = async_session_factory
        self._session_factory = session_factory
        self._dispatch = dispatch or settings.agent_dispatch
        self._llm = llm
        self._replies = _InlineReplies()

    async def create_conversation(
        self, agent_name: str, metadata: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        from strategist.db.models import AgentConversation, row_to_dict

        async with self._session_factory() as session:
            conversation = AgentConversation(
                agent_name=agent_name, metadata_=dict(metadata or {}),
            )
            session.add(conversation)
            await session.commit()
            await session.refresh(conversation)
            record = row_to_dict(conversation)

        record["messages"] = []
        return record

    async def add_message(
        self, conversation_id: str, message: Mapping[str, str],
    ) -> dict[str, Any]:
        from strategist.db.models import AgentConversation, AgentMessage, row_to_dict

        async with self._session_factory() as session:
            if await session.get(AgentConversation, conversation_id) is None:
                raise ConversationNotFoundError(conversation_id)
            stored = AgentMessage(
                conversation_id=conversation_id,
                role=message["role"],
                content=message["content"],
            )
            session.add(stored)
            await session.commit()
            await session.refresh(stored)
            result = row_to_dict(stored)

        if result["role"] == "user":
            self._schedule_reply(conversation_id)
        return result

    async def get_conversation(self, conversation_id: str) -> dict[str, Any]:
        from strategist.db.models import AgentConversation

        async with self._session_factory() as session:
            conversation = await session.get(AgentConversation, conversation_id)
            if conversation is None:
                raise ConversationNotFoundError(conversation_id)
            return conversation_to_dict(conversation)

    def cancel_reply(self, conversation_id: str) -> bool:
        # Replies already handed to a Celery worker run to completion
        return self._replies.cancel(conversation_id)

    def _schedule_reply(self, conversation_id: str) -> None:
        if self._dispatch == "celery":
            from strategist.workers.tasks import generate_agent_reply

            task = generate_agent_reply.delay(conversation_id)
            logger.info(
                "Dispatched reply for conversation %s to Celery (task_id=%s)",
                conversation_id, task.id,
            )
            return
        self._replies.spawn(conversation_id, self._reply_inline(conversation_id))

    async def _reply_inline(self, conversation_id: str) -> None:
        from strategist.db.models import AgentConversation, AgentMessage

        async with self._session_factory() as session:
            conversation = await session.get(AgentConversation, conversation_id)
            messages = [
                {"role": m.role, "content": m.content} for m in conversation.messages
            ]
            try:
                llm = self._llm or get_llm_provider()
                content = await generate_reply(conversation.agent_name, messages, llm)
            except Exception as e:
                logger.exception(
                    "Reply generation failed for conversation %s", conversation_id,
                )
                # Reassign so the JSONB change is detected
                conversation.metadata_ = {
                    **(conversation.metadata_ or {}),
                    REPLY_ERROR_KEY: str(e) or type(e).__name__,
                }
                await session.commit()
                return

            session.add(AgentMessage(
                conversation_id=conversation_id, role="assistant", content=content,
            ))
            await session.commit()


def conversation_to_dict(conversation) -> dict[str, Any]:
    """Serialise an AgentConversation row with its ordered messages."""
    from strategist.db.models import row_to_dict

    record = row_to_dict(conversation)
    record["metadata"] = dict(record.get("metadata") or {})
    record["messages"] = [row_to_dict(m) for m in conversation.messages]
    return record


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_conversations: SQLAgentConversations | InMemoryAgentConversations | None = None


def get_agent_conversations() -> SQLAgentConversations | InMemoryAgentConversations:
    """Lazy singleton selected by settings.storage_backend."""
    global _conversations
    if _conversations is None:
        if settings.storage_backend == "memory":
            _conversations = InMemoryAgentConversations()
        else:
            _conversations = SQLAgentConversations()
        logger.info("Agent conversation backend: %s", type(_conversations).__name__)
    return _conversations
