# =============================================================================
# Response Synthesizer
# =============================================================================
#
# Reduces agent results to one SynthesizedResponse:
#
#   0 successes  → fixed apology, all scores 0
#   1 success    → that output verbatim, scores 80/85/80, no LLM call
#   2+ successes → one structured LLM call (SynthesisPayload); the content
#                  is assembled from its fields in a fixed section order
#
# A failed synthesis call raises SynthesisError. It is the only failure in
# the pipeline that aborts the request.
# =============================================================================

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

from strategist.agents.errors import SynthesisError
from strategist.agents.schemas import (
    AgentResult,
    IntentDescriptor,
    KnowledgeContext,
    MemoryContext,
    SynthesisPayload,
    SynthesizedResponse,
)
from strategist.services.llm import LLMProvider, invoke_llm

logger = logging.getLogger(__name__)

APOLOGY = "Unable to process request. Please try again."
SINGLE_RESULT_SCORES = (80, 85, 80)

_SYNTHESIS_SYSTEM = (
    "You synthesise the work of several specialist strategy agents into a "
    "single executive-ready answer."
)


async def synthesize(
    results: Sequence[AgentResult],
    intent: IntentDescriptor,
    llm: LLMProvider,
    knowledge: KnowledgeContext | None = None,
    memory: MemoryContext | None = None,
) -> SynthesizedResponse:
    """
    Raises:
        SynthesisError: The multi-agent synthesis call failed.
    """
    successful = [r for r in results if r.success and r.output]
    knowledge = knowledge or KnowledgeContext()
    memory = memory or MemoryContext()

    if not successful:
        logger.warning("No successful agent results; returning apology")
        return SynthesizedResponse(content=APOLOGY, confidence=0, relevance=0, value=0)

    if len(successful) == 1:
        confidence, relevance, value = SINGLE_RESULT_SCORES
        return SynthesizedResponse(
            content=successful[0].output,
            confidence=confidence,
            relevance=relevance,
            value=value,
            source_agents=(successful[0].agent_id,),
        )

    prompt = build_synthesis_prompt(successful, intent, knowledge, memory)
    try:
        payload = await invoke_llm(
            llm, prompt, SynthesisPayload, system=_SYNTHESIS_SYSTEM,
        )
    except Exception as e:
        logger.error("Synthesis of %d agent outputs failed: %s", len(successful), e)
        raise SynthesisError(f"Synthesis failed: {e}") from e

    source_agents = tuple(dict.fromkeys(r.agent_id for r in successful))
    return SynthesizedResponse(
        content=render_synthesis(payload, source_agents, knowledge, memory),
        confidence=round(payload.confidence),
        relevance=round(payload.relevance),
        value=round(payload.value),
        source_agents=source_agents,
        payload=payload,
    )


def build_synthesis_prompt(
    results: Sequence[AgentResult],
    intent: IntentDescriptor,
    knowledge: KnowledgeContext,
    memory: MemoryContext,
) -> str:
    blocks = []
    for i, r in enumerate(results, start=1):
        label = f"{r.role}, sub-team {r.sub_team}" if r.sub_team is not None else r.role
        block = f"{i}. {r.agent_id} ({label}):\n{r.output}"
        if r.structured_insights:
            block += f"\nStructured Insights: {json.dumps(r.structured_insights)}"
        blocks.append(block)

    return (
        "Synthesise the following agent outputs for a "
        f"{intent.primary_intent} request (complexity: {intent.complexity}).\n\n"
        "AGENT OUTPUTS:\n" + "\n---\n".join(blocks) + "\n\n"
        "KNOWLEDGE GRAPH CONTEXT:\n"
        f"- Entities: {len(knowledge.entities)}\n"
        f"- Relationships: {len(knowledge.relationships)}\n"
        f"- Past Strategies: {len(knowledge.relevant_strategies)}\n"
        f"- Impact Score: {knowledge.impact_score}/100\n\n"
        "AGENT MEMORIES:\n"
        f"{memory.summary or 'No relevant memories retrieved for this interaction.'}\n\n"
        "Return an executive summary (2-3 sentences), key insights, "
        "cross-agent patterns, prioritised strategic recommendations, next "
        "steps and confidence/relevance/value scores (0-100)."
    )


def render_synthesis(
    payload: SynthesisPayload,
    source_agents: Sequence[str],
    knowledge: KnowledgeContext,
    memory: MemoryContext,
) -> str:
    """Markdown content in fixed section order, ending with attribution."""
    parts = [f"## {payload.executive_summary}"]

    if payload.key_insights:
        parts.append(_numbered("### Key Insights", payload.key_insights))
    if payload.knowledge_graph_integration:
        parts.append(_bulleted(
            "### Knowledge Graph Intelligence", payload.knowledge_graph_integration,
        ))
    if payload.memory_informed_insights:
        parts.append(_bulleted(
            "### Memory-Informed Intelligence", payload.memory_informed_insights,
        ))
    if payload.cross_agent_patterns:
        parts.append(_bulleted("### Cross-Agent Patterns", payload.cross_agent_patterns))
    if payload.strategic_recommendations:
        lines = ["### Strategic Recommendations"]
        for rec in payload.strategic_recommendations:
            details = [rec.priority]
            if rec.framework:
                details.append(rec.framework)
            if rec.confidence is not None:
                details.append(f"{round(rec.confidence)}% confidence")
            lines.append(f"- **{rec.action}** ({', '.join(details)})")
        parts.append("\n".join(lines))
    if payload.next_steps:
        parts.append(_numbered("### Next Steps", payload.next_steps))
    if payload.alternative_perspectives:
        parts.append(_bulleted(
            "### Alternative Perspectives", payload.alternative_perspectives,
        ))

    footer = (
        f"*Synthesized from {len(source_agents)} agents "
        f"({', '.join(source_agents)}) with {memory.count} memories"
    )
    if knowledge.entities:
        footer += f" and {len(knowledge.entities)} knowledge graph entities"
    parts.append(f"---\n{footer}*")

    return "\n\n".join(parts)


def _numbered(heading: str, items: Sequence[str]) -> str:
    return "\n".join([heading, *(f"{i}. {item}" for i, item in enumerate(items, start=1))])


def _bulleted(heading: str, items: Sequence[str]) -> str:
    return "\n".join([heading, *(f"- {item}" for item in items)])
