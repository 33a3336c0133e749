# =============================================================================
# Agent Invoker — One Agent Step
# =============================================================================
#
# invoke(step, ctx) → AgentResult. Never raises.
#
#   1. Build the prompt from typed sections (prompts.py)
#   2. create_conversation(agent_id, metadata)
#   3. add_message(user prompt) — schedules the agent's reply
#   4. Poll get_conversation with exponential backoff until an assistant
#      message newer than the prompt appears
#
# Steps 2-4 run under one hard deadline (asyncio.timeout). When it fires
# during polling the pending reply is cancelled. A deadline hit,
# a recorded reply error or any other exception becomes a failed
# AgentResult with a non-empty error.
#
# A successful output is also scanned for an ALTERNATIVE_PATH proposal and
# a fenced ```json block of structured insights.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from typing import Any

from tenacity import AsyncRetrying, retry_if_exception_type, wait_exponential

from strategist.agents.accumulator import ContextAccumulator
from strategist.agents.errors import AgentInvocationError, AgentTimeoutError
from strategist.agents.prompts import build_prompt
from strategist.agents.schemas import AgentResult, AgentStep, AlternativeProposal
from strategist.config import settings
from strategist.services.conversations import REPLY_ERROR_KEY, AgentConversations

logger = logging.getLogger(__name__)

ALTERNATIVE_PATH_PATTERN = re.compile(r"ALTERNATIVE_PATH:\s*([\w-]+)\s*-\s*(.+)", re.IGNORECASE)
ALTERNATIVE_CONFIDENCE = 75

_INSIGHTS_PATTERN = re.compile(r"```json\s*(\{[\s\S]*?\})\s*```")


class _ReplyPending(Exception):
    """No assistant reply yet; poll again."""


class AgentInvoker:
    """
    Sends prompts to named agents through the conversation primitive.

    Args:
        conversations: Conversation backend.
        deadline_seconds: Hard bound on one invocation.
        poll_initial_seconds / poll_max_seconds: Backoff between reads.
    """

    def __init__(
        self,
        conversations: AgentConversations,
        deadline_seconds: float | None = None,
        poll_initial_seconds: float | None = None,
        poll_max_seconds: float | None = None,
    ) -> None:
        self._conversations = conversations
        self._deadline = deadline_seconds or settings.agent_step_deadline_seconds
        self._poll_initial = poll_initial_seconds or settings.agent_poll_initial_seconds
        self._poll_max = poll_max_seconds or settings.agent_poll_max_seconds

    async def invoke(
        self,
        step: AgentStep,
        ctx: ContextAccumulator,
        conversation_ref: str | None = None,
    ) -> AgentResult:
        """
        Run one step. `conversation_ref` (the caller's conversation id) is
        recorded on the agent conversation as parent_conversation_id.
        """
        prompt = build_prompt(step, ctx)
        start = time.perf_counter()

        try:
            async with asyncio.timeout(self._deadline):
                output = await self._exchange(step, prompt, conversation_ref)
        except TimeoutError:
            error = str(AgentTimeoutError(step.agent_id, self._deadline))
        except Exception as e:
            error = str(e) or type(e).__name__
        else:
            duration_ms = _elapsed_ms(start)
            alternative = detect_alternative_path(output)
            logger.info(
                "Agent %s (%s) completed in %dms%s",
                step.agent_id, step.role, duration_ms,
                f", proposes {alternative.agent_id}" if alternative else "",
            )
            return AgentResult(
                agent_id=step.agent_id,
                role=step.role,
                success=True,
                output=output,
                duration_ms=duration_ms,
                frameworks=step.frameworks,
                modules=step.modules,
                sub_team=step.sub_team,
                alternative=alternative,
                structured_insights=extract_structured_insights(output),
            )

        duration_ms = _elapsed_ms(start)
        logger.warning(
            "Agent %s (%s) failed after %dms: %s",
            step.agent_id, step.role, duration_ms, error,
        )
        return AgentResult(
            agent_id=step.agent_id,
            role=step.role,
            success=False,
            error=error,
            duration_ms=duration_ms,
            frameworks=step.frameworks,
            modules=step.modules,
            sub_team=step.sub_team,
        )

    async def _exchange(
        self, step: AgentStep, prompt: str, conversation_ref: str | None,
    ) -> str:
        conversation = await self._conversations.create_conversation(
            step.agent_id,
            {
                "role": step.role,
                "sub_team": step.sub_team,
                "frameworks": list(step.frameworks),
                "parent_conversation_id": conversation_ref,
            },
        )
        prompt_message = await self._conversations.add_message(
            conversation["id"], {"role": "user", "content": prompt},
        )

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_ReplyPending),
                wait=wait_exponential(
                    multiplier=self._poll_initial,
                    min=self._poll_initial,
                    max=self._poll_max,
                ),
                reraise=True,
            ):
                with attempt:
                    reply = await self._read_reply(
                        step.agent_id, conversation["id"], prompt_message["id"],
                    )
        except asyncio.CancelledError:
            # Deadline hit while waiting: the reply is abandoned
            if self._conversations.cancel_reply(conversation["id"]):
                logger.info(
                    "Cancelled pending reply from %s (conversation %s)",
                    step.agent_id, conversation["id"],
                )
            raise
        return reply

    async def _read_reply(self, agent_id: str, conversation_id: str, prompt_id: Any) -> str:
        conversation = await self._conversations.get_conversation(conversation_id)

        reply_error = (conversation.get("metadata") or {}).get(REPLY_ERROR_KEY)
        if reply_error:
            raise AgentInvocationError(agent_id, reply_error)

        return newest_reply_after(conversation["messages"], prompt_id)


def newest_reply_after(messages: list[dict[str, Any]], prompt_id: Any) -> str:
    """
    Content of the last assistant message after the prompt.

    Raises:
        _ReplyPending: The prompt has no assistant reply yet.
    """
    seen_prompt = False
    reply = None
    for message in messages:
        if message.get("id") == prompt_id:
            seen_prompt = True
        elif seen_prompt and message.get("role") == "assistant" and message.get("content"):
            reply = message["content"]
    if reply is None:
        raise _ReplyPending()
    return reply


def detect_alternative_path(output: str) -> AlternativeProposal | None:
    match = ALTERNATIVE_PATH_PATTERN.search(output)
    if match is None:
        return None
    return AlternativeProposal(
        agent_id=match.group(1),
        reason=match.group(2).strip(),
        confidence=ALTERNATIVE_CONFIDENCE,
    )


def extract_structured_insights(output: str) -> dict[str, Any] | None:
    match = _INSIGHTS_PATTERN.search(output)
    if match is None:
        return None
    try:
        parsed = json.loads(match.group(1))
    except json.JSONDecodeError:
        logger.debug("Ignoring malformed structured insights block")
        return None
    return parsed if isinstance(parsed, dict) else None


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
