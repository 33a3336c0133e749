# =============================================================================
# Agent Memory — Long-Term Recall & Storage
# =============================================================================
#
# Before planning: recall up to memory_max_results AgentMemory records for
# the request's primary agent and user, newest first, and condense them
# into a summary + top key learnings for prompts.
#
# After synthesis: store one memory per successful plan step (sub-team and
# alternative steps are not remembered).
#
# Both directions are best-effort: failures are logged and ignored.
# =============================================================================

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from typing import Any

from strategist.agents.schemas import (
    AgentResult,
    ExecutionPlan,
    IntentDescriptor,
    MemoryContext,
    SynthesizedResponse,
)
from strategist.config import settings
from strategist.services.entity_store import AGENT_MEMORY, EntityStore

logger = logging.getLogger(__name__)

KEY_LEARNING_MAX_CHARS = 200
HIGH_QUALITY_CONFIDENCE = 80


class AgentMemoryService:
    def __init__(
        self,
        store: EntityStore,
        max_results: int | None = None,
        key_learnings: int | None = None,
    ) -> None:
        self._store = store
        self._max_results = max_results or settings.memory_max_results
        self._key_learnings = key_learnings or settings.memory_key_learnings

    async def recall(self, agent_id: str, user_email: str) -> MemoryContext:
        try:
            records = await self._store.filter(
                AGENT_MEMORY,
                {"agent_name": agent_id, "user_email": user_email},
                sort="-created_date",
                limit=self._max_results,
            )
        except Exception as e:
            logger.warning("Memory retrieval failed for %s: %s", agent_id, e)
            return MemoryContext()

        if not records:
            return MemoryContext()

        context = MemoryContext(
            memories=tuple(records),
            summary=summarize_memories(agent_id, records),
            key_learnings=tuple(self._top_learnings(records)),
        )
        logger.info("Recalled %d memories for %s", context.count, agent_id)
        return context

    def _top_learnings(self, records: Sequence[dict[str, Any]]) -> list[str]:
        # Stable sort keeps recency order among equal relevance
        ranked = sorted(
            records, key=lambda r: r.get("relevance_score") or 0, reverse=True,
        )
        return [
            f"[{r.get('memory_type', 'insight')}] "
            f"{(r.get('content') or '')[:KEY_LEARNING_MAX_CHARS]}"
            for r in ranked[:self._key_learnings]
        ]

    async def remember(
        self,
        plan: ExecutionPlan,
        results: Sequence[AgentResult],
        *,
        user_email: str,
        user_message: str,
        response: SynthesizedResponse,
        intent: IntentDescriptor,
        conversation_id: str | None = None,
    ) -> int:
        """Store memories for successful plan steps. Returns the number stored."""
        outcome_quality = (
            "high" if response.confidence > HIGH_QUALITY_CONFIDENCE else "moderate"
        )
        by_step = {
            r.step_index: r for r in results
            if r.success and r.step_index is not None
        }
        stored = 0
        for index, step in enumerate(plan.steps):
            result = by_step.get(index)
            if result is None:
                continue
            try:
                await self._store.create(AGENT_MEMORY, {
                    "agent_name": step.agent_id,
                    "user_email": user_email,
                    "conversation_id": conversation_id,
                    "memory_type": "success" if outcome_quality == "high" else "insight",
                    "intent": intent.primary_intent,
                    "content": (result.output or "")[:settings.memory_content_max_chars],
                    "relevance_score": float(response.confidence),
                    "outcome_quality": outcome_quality,
                    "metadata": {
                        "role": step.role,
                        "user_message": user_message[:500],
                        "frameworks": list(intent.frameworks_needed),
                    },
                })
                stored += 1
            except Exception as e:
                logger.warning("Memory storage failed for %s: %s", step.agent_id, e)

        logger.info("Stored %d agent memories", stored)
        return stored


def summarize_memories(agent_id: str, records: Sequence[dict[str, Any]]) -> str:
    counts = Counter(r.get("memory_type") or "insight" for r in records)
    breakdown = ", ".join(f"{count} {kind}" for kind, count in counts.most_common())
    intents = sorted({r["intent"] for r in records if r.get("intent")})
    summary = f"{len(records)} past interactions with {agent_id} ({breakdown})"
    if intents:
        summary += f" covering {', '.join(intents)}"
    return summary + "."
