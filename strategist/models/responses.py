# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# Shape of data coming OUT of the API. The orchestration state carries
# services, raw prompts and frozen dataclasses; these models expose only
# the caller-facing fields.
# =============================================================================

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class OrchestrationInfo(BaseModel):
    """How the request was handled."""

    intent: dict[str, Any] = Field(description="The classified IntentDescriptor")
    agents_used: list[str] = Field(description="Agent ids in invocation order")
    sub_teams: list[str] = Field(default_factory=list)
    execution_mode: str
    replanning_events: int = 0
    total_steps: int
    knowledge_entities_used: int = 0
    memories_retrieved: int = 0


class CRVScores(BaseModel):
    confidence: int = Field(ge=0, le=100)
    relevance: int = Field(ge=0, le=100)
    value: int = Field(ge=0, le=100)


class ResponseBody(BaseModel):
    content: str
    crv_scores: CRVScores
    confidence: int = Field(ge=0, le=100)
    source_agents: list[str] = Field(default_factory=list)


class TraceEntry(BaseModel):
    """One agent invocation, success or failure."""

    agent: str
    role: str
    success: bool
    duration_ms: int
    error: str | None = None
    sub_team: int | None = None
    replanned: bool = False
    has_structured_insights: bool = False


class KnowledgeGraphImpact(BaseModel):
    entities_count: int
    relationships_count: int
    strategies_count: int = 0
    impact_score: int


class MemoryInfo(BaseModel):
    memories_count: int
    has_learnings: bool
    memories_stored: int = 0


class ResponseMetadata(BaseModel):
    execution_trace: list[TraceEntry]
    knowledge_graph_impact: KnowledgeGraphImpact
    memory_context: MemoryInfo


class OrchestrateResponse(BaseModel):
    """
    Response for POST /orchestrate.

    `success` is false only when no agent produced output; the content is
    then a fixed apology with zero scores.
    """

    success: bool
    orchestration: OrchestrationInfo
    response: ResponseBody
    metadata: ResponseMetadata
