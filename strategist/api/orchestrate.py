# =============================================================================
# Orchestrate API — Multi-Agent Strategic Analysis Endpoint
# =============================================================================
#
# POST /orchestrate runs the LangGraph pipeline in agents/orchestrator.py:
#
#   classify → gather_context → recall_memories → plan → execute
#            → synthesize → remember
#
# and maps the final state to OrchestrateResponse. A run summary is
# written to orchestration_runs as a background task.
#
# This endpoint is thin: auth, error mapping and response shaping only.
# =============================================================================

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from strategist.agents.errors import SynthesisError
from strategist.agents.orchestrator import (
    OrchestrationServices,
    OrchestrationState,
    orchestrate,
    orchestration_summary,
)
from strategist.agents.schemas import RequestUser
from strategist.api.deps import get_current_user, get_orchestration_services
from strategist.config import settings
from strategist.db.engine import async_session_factory
from strategist.db.models import OrchestrationRun
from strategist.models.requests import OrchestrateRequest
from strategist.models.responses import (
    CRVScores,
    KnowledgeGraphImpact,
    MemoryInfo,
    OrchestrateResponse,
    OrchestrationInfo,
    ResponseBody,
    ResponseMetadata,
    TraceEntry,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Orchestration"])


@router.post(
    "/orchestrate",
    response_model=OrchestrateResponse,
    summary="Run a multi-agent strategic analysis",
    description=(
        "Classifies the request, assembles behavioral, knowledge-graph and "
        "memory context, plans a team of specialist agents, executes it "
        "(parallel, sequential or hybrid) and synthesises one response."
    ),
)
async def orchestrate_endpoint(
    request: OrchestrateRequest,
    background_tasks: BackgroundTasks,
    user: RequestUser = Depends(get_current_user),
    services: OrchestrationServices = Depends(get_orchestration_services),
) -> OrchestrateResponse:
    """
    Error handling:
    - Missing LLM configuration → 503 Service Unavailable
    - Synthesis / LLM provider failure → 502 Bad Gateway
    - Individual agent failures → 200, listed in execution_trace
    """
    logger.info(
        "Orchestrate request: user=%s, message='%s', force_agent=%s",
        user.email, request.user_message[:80], request.force_agent,
    )

    start_time = time.monotonic()

    try:
        state = await orchestrate(
            request.user_message,
            user,
            conversation_id=request.conversation_id,
            conversation_history=[m.model_dump() for m in request.conversation_history],
            user_profile_id=request.user_profile_id,
            force_agent=request.force_agent,
            enable_replanning=request.enable_replanning,
            use_memory=request.use_memory,
            services=services,
        )
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e
    except SynthesisError as e:
        logger.error("Synthesis failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e)) from e
    except Exception as e:
        logger.exception("Orchestration failed: %s", e)
        raise HTTPException(
            status_code=502,
            detail=f"LLM service error: {e}",
        ) from e

    total_latency_ms = int((time.monotonic() - start_time) * 1000)

    if settings.storage_backend == "sql":
        background_tasks.add_task(
            _persist_run, state, user.email, request.conversation_id, total_latency_ms,
        )

    return build_response(state)


def build_response(state: OrchestrationState) -> OrchestrateResponse:
    synthesized = state["response"]
    knowledge = state["knowledge"]
    memory = state["memory"]

    return OrchestrateResponse(
        success=any(r.success for r in state["results"]),
        orchestration=OrchestrationInfo(**orchestration_summary(state)),
        response=ResponseBody(
            content=synthesized.content,
            crv_scores=CRVScores(**synthesized.crv_scores),
            confidence=synthesized.confidence,
            source_agents=list(synthesized.source_agents),
        ),
        metadata=ResponseMetadata(
            execution_trace=[TraceEntry(**r.trace()) for r in state["results"]],
            knowledge_graph_impact=KnowledgeGraphImpact(
                entities_count=len(knowledge.entities),
                relationships_count=len(knowledge.relationships),
                strategies_count=len(knowledge.relevant_strategies),
                impact_score=knowledge.impact_score,
            ),
            memory_context=MemoryInfo(
                memories_count=memory.count,
                has_learnings=bool(memory.key_learnings),
                memories_stored=state.get("memories_stored", 0),
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Background Run Persistence
# ---------------------------------------------------------------------------


async def _persist_run(
    state: OrchestrationState,
    user_email: str,
    conversation_id: str | None,
    total_latency_ms: int,
) -> None:
    """
    Persist an OrchestrationRun row with its own session; the request
    session may already be closed by the time this runs.
    """
    summary = orchestration_summary(state)
    results = state["results"]
    try:
        async with async_session_factory() as session:
            session.add(OrchestrationRun(
                user_email=user_email,
                conversation_id=conversation_id,
                user_message=state["user_message"],
                primary_intent=state["intent"].primary_intent,
                complexity=state["intent"].complexity,
                execution_mode=summary["execution_mode"],
                agents_used=summary["agents_used"],
                total_steps=summary["total_steps"],
                successful_steps=sum(1 for r in results if r.success),
                replanning_events=summary["replanning_events"],
                knowledge_entities_used=summary["knowledge_entities_used"],
                memories_retrieved=summary["memories_retrieved"],
                confidence=state["response"].confidence,
                total_latency_ms=total_latency_ms,
                error="; ".join(
                    f"{r.agent_id}: {r.error}" for r in results if not r.success
                ) or None,
            ))
            await session.commit()
    except Exception as e:
        logger.warning("Failed to persist orchestration run: %s", e)
