# =============================================================================
# LangGraph Orchestrator — Pipeline Assembly
# =============================================================================
#
# Wires the orchestration stages into a LangGraph StateGraph:
#
#   START ──▶ classify ──▶ gather_context ──▶ recall_memories ──▶ plan
#                                                                   │
#        END ◀── remember ◀──(use_memory)── synthesize ◀── execute ◀┘
#                              └──(otherwise)──▶ END
#
# Every stage except synthesize degrades instead of failing: classification
# falls back to general_query, context lookups to "no data", agent failures
# to failed AgentResults. A SynthesisError propagates out of ainvoke().
#
# DESIGN DECISION: Plain TypedDict state, compiled once at module level.
# Collaborators (LLM provider, entity store, conversations, planning
# tables) travel in the state as one OrchestrationServices value so tests
# and callers can swap any of them per request.
# NOTE: Not JSON-serialisable. Safe as long as no checkpointer is
# configured on the graph.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from strategist.agents.catalog import DEFAULT_PLANNING_CONFIG, PlanningConfig
from strategist.agents.context import ContextAssembler
from strategist.agents.executor import PlanExecutor, TransitionCallback
from strategist.agents.intent import classify
from strategist.agents.invoker import AgentInvoker
from strategist.agents.memory import AgentMemoryService
from strategist.agents.planner import build_plan
from strategist.agents.schemas import (
    AgentResult,
    ExecutionPlan,
    IntentDescriptor,
    KnowledgeContext,
    MemoryContext,
    RequestUser,
    SynthesizedResponse,
    UserContext,
)
from strategist.agents.synthesizer import synthesize
from strategist.services.conversations import AgentConversations, get_agent_conversations
from strategist.services.entity_store import EntityStore, get_entity_store
from strategist.services.llm import LLMProvider, get_llm_provider

logger = logging.getLogger(__name__)


@dataclass
class OrchestrationServices:
    """Collaborators one orchestration run talks to."""

    llm: LLMProvider
    store: EntityStore
    conversations: AgentConversations
    planning: PlanningConfig = field(default_factory=lambda: DEFAULT_PLANNING_CONFIG)
    on_transition: TransitionCallback | None = None


def default_services() -> OrchestrationServices:
    """
    Services backed by the configured singletons.

    Raises:
        ValueError: No API key is configured for the LLM provider.
    """
    return OrchestrationServices(
        llm=get_llm_provider(),
        store=get_entity_store(),
        conversations=get_agent_conversations(),
    )


# ---------------------------------------------------------------------------
# Orchestration State Schema
# ---------------------------------------------------------------------------


class OrchestrationState(TypedDict, total=False):
    """
    State that flows through the graph. Nodes return partial updates.
    """

    # --- Input (set by caller) ---
    user_message: str
    user: RequestUser
    conversation_id: str | None
    conversation_history: list[dict[str, str]]
    user_profile_id: str | None
    force_agent: str | None
    enable_replanning: bool
    use_memory: bool
    services: OrchestrationServices

    # --- Intermediate (set by nodes) ---
    intent: IntentDescriptor
    user_context: UserContext
    knowledge: KnowledgeContext
    memory: MemoryContext
    plan: ExecutionPlan
    results: list[AgentResult]

    # --- Output ---
    response: SynthesizedResponse
    memories_stored: int


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def classify_node(state: OrchestrationState) -> dict:
    intent = await classify(
        state["user_message"],
        state.get("conversation_history") or [],
        state["services"].llm,
    )
    return {"intent": intent}


async def gather_context_node(state: OrchestrationState) -> dict:
    """User context and knowledge are independent reads; run both at once."""
    services = state["services"]
    assembler = ContextAssembler(
        services.store,
        entity_type_filters=services.planning.entity_type_filters,
    )
    user_context, knowledge = await asyncio.gather(
        assembler.assemble(state["user"], state.get("user_profile_id")),
        assembler.gather_knowledge(state["intent"]),
    )
    return {"user_context": user_context, "knowledge": knowledge}


async def recall_memories_node(state: OrchestrationState) -> dict:
    if not state.get("use_memory", True):
        return {"memory": MemoryContext()}

    services = state["services"]
    primary_agent = state.get("force_agent") or services.planning.primary_agent_for(
        state["intent"].primary_intent
    )
    memory = await AgentMemoryService(services.store).recall(
        primary_agent, state["user"].email,
    )
    return {"memory": memory}


async def plan_node(state: OrchestrationState) -> dict:
    plan = build_plan(
        state["intent"],
        state["user_context"],
        knowledge=state.get("knowledge"),
        forced_agent=state.get("force_agent"),
        config=state["services"].planning,
        memory=state.get("memory"),
    )
    return {"plan": plan}


async def execute_node(state: OrchestrationState) -> dict:
    services = state["services"]
    executor = PlanExecutor(
        AgentInvoker(services.conversations),
        enable_replanning=state.get("enable_replanning", True),
        known_agents=services.planning.known_agents(),
        on_transition=services.on_transition,
    )
    results = await executor.execute(
        state["plan"], state["user_message"], state.get("conversation_id"),
    )
    return {"results": results}


async def synthesize_node(state: OrchestrationState) -> dict:
    response = await synthesize(
        state["results"],
        state["intent"],
        state["services"].llm,
        knowledge=state.get("knowledge"),
        memory=state.get("memory"),
    )
    return {"response": response}


async def remember_node(state: OrchestrationState) -> dict:
    stored = await AgentMemoryService(state["services"].store).remember(
        state["plan"],
        state["results"],
        user_email=state["user"].email,
        user_message=state["user_message"],
        response=state["response"],
        intent=state["intent"],
        conversation_id=state.get("conversation_id"),
    )
    return {"memories_stored": stored}


def _after_synthesis(state: OrchestrationState) -> str:
    if state.get("use_memory", True) and any(r.success for r in state["results"]):
        return "remember"
    return END


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_builder = StateGraph(OrchestrationState)
_builder.add_node("classify", classify_node)
_builder.add_node("gather_context", gather_context_node)
_builder.add_node("recall_memories", recall_memories_node)
_builder.add_node("plan", plan_node)
_builder.add_node("execute", execute_node)
_builder.add_node("synthesize", synthesize_node)
_builder.add_node("remember", remember_node)

_builder.add_edge(START, "classify")
_builder.add_edge("classify", "gather_context")
_builder.add_edge("gather_context", "recall_memories")
_builder.add_edge("recall_memories", "plan")
_builder.add_edge("plan", "execute")
_builder.add_edge("execute", "synthesize")
_builder.add_conditional_edges(
    "synthesize", _after_synthesis, {"remember": "remember", END: END},
)
_builder.add_edge("remember", END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def orchestrate(
    user_message: str,
    user: RequestUser,
    *,
    conversation_id: str | None = None,
    conversation_history: Sequence[Mapping[str, str]] = (),
    user_profile_id: str | None = None,
    force_agent: str | None = None,
    enable_replanning: bool = True,
    use_memory: bool = True,
    services: OrchestrationServices | None = None,
) -> OrchestrationState:
    """
    Entry point: run the pipeline and return the final state.

    Raises:
        SynthesisError: Two or more agents succeeded but their outputs
            could not be synthesised.
        ValueError: No LLM provider is configured (services=None only).
    """
    initial_state: OrchestrationState = {
        "user_message": user_message,
        "user": user,
        "conversation_id": conversation_id,
        "conversation_history": [dict(m) for m in conversation_history],
        "user_profile_id": user_profile_id,
        "force_agent": force_agent,
        "enable_replanning": enable_replanning,
        "use_memory": use_memory,
        "services": services or default_services(),
    }

    logger.info(
        "Orchestrating: message='%s', user=%s, force_agent=%s",
        user_message[:80], user.email, force_agent,
    )

    result = await graph.ainvoke(initial_state)

    logger.info(
        "Orchestration complete: intent=%s, steps=%d, confidence=%d",
        result["intent"].primary_intent,
        len(result["results"]),
        result["response"].confidence,
    )
    return result


def orchestration_summary(state: OrchestrationState) -> dict[str, Any]:
    """The caller-facing `orchestration` block for a finished run."""
    plan = state["plan"]
    results = state["results"]
    return {
        "intent": state["intent"].model_dump(),
        "agents_used": [r.agent_id for r in results],
        "sub_teams": [f"sub_team_{team.index}" for team in plan.sub_teams],
        "execution_mode": plan.mode,
        "replanning_events": sum(1 for r in results if r.replanned),
        "total_steps": len(results),
        "knowledge_entities_used": len(state["knowledge"].entities),
        "memories_retrieved": state["memory"].count,
    }
