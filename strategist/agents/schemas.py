# =============================================================================
# Orchestration Data Model
# =============================================================================
#
# Everything here is created fresh per request and dropped when the request
# completes. Nothing is shared across requests.
#
#   IntentDescriptor  — structured classification of the user message
#                       (Pydantic: it is validated against LLM output)
#   UserContext       — identity + optional behavioral profile + engagements
#   KnowledgeContext  — capped entity subset + relationships + past
#                       strategies + impact score
#   ExecutionPlan     — concurrency mode + ordered AgentSteps + context_flow
#   AgentResult       — one step's outcome, frozen once appended
#   SynthesisPayload  — schema the multi-agent synthesis call must satisfy
#   SynthesizedResponse
#
# DESIGN DECISION: Pydantic for the two shapes that come back from the LLM
# (IntentDescriptor, SynthesisPayload), frozen dataclasses for everything
# built internally.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

Complexity = Literal["simple", "moderate", "complex", "multi_phase"]
ExecutionMode = Literal["parallel", "sequential", "hybrid"]
StepRole = Literal[
    "primary",
    "supporting",
    "synthesizer",
    "context_adapter",
    "specialist",
    "alternative",
]

# Input source tags an AgentStep may declare
USER_MESSAGE = "user_message"
PREVIOUS_AGENT_OUTPUT = "previous_agent_output"
ALL_PREVIOUS_OUTPUTS = "all_previous_outputs"
BEHAVIORAL_PROFILE = "behavioral_profile"

DEPENDENT_SOURCES = frozenset({PREVIOUS_AGENT_OUTPUT, ALL_PREVIOUS_OUTPUTS})


# ---------------------------------------------------------------------------
# Intent
# ---------------------------------------------------------------------------


class SubTask(BaseModel):
    model_config = ConfigDict(frozen=True)

    task: str
    complexity: Complexity = "simple"
    priority: str = "medium"


class AlternativeInterpretation(BaseModel):
    model_config = ConfigDict(frozen=True)

    intent: str
    confidence: float = Field(default=0, ge=0, le=100)


class IntentDescriptor(BaseModel):
    """
    Structured classification of one user request.

    The LLM fills this in; anything that fails validation is replaced with
    IntentDescriptor.default().
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    primary_intent: str = Field(
        description=(
            "One of: market_analysis, competitive_intel, financial_modeling, "
            "tech_assessment, strategic_planning, risk_assessment, "
            "fundraising, ma_evaluation, behavioral_analysis, general_query"
        ),
    )
    secondary_intents: tuple[str, ...] = ()
    complexity: Complexity = "simple"
    time_horizon: str = "immediate"
    stakeholder_level: str = "individual"
    requires_external_data: bool = False
    frameworks_needed: tuple[str, ...] = ()
    modules_needed: tuple[str, ...] = ()
    data_sources_needed: tuple[str, ...] = ()
    requires_collaboration: bool = False
    execution_mode: ExecutionMode = "sequential"
    decomposable: bool = False
    sub_tasks: tuple[SubTask, ...] = ()
    alternative_interpretations: tuple[AlternativeInterpretation, ...] = ()
    confidence: float = Field(default=0, ge=0, le=100)

    @computed_field
    @property
    def required_capability_tags(self) -> tuple[str, ...]:
        """Frameworks then modules, de-duplicated, first occurrence wins."""
        return tuple(dict.fromkeys(self.frameworks_needed + self.modules_needed))

    @classmethod
    def default(cls) -> IntentDescriptor:
        return cls(
            primary_intent="general_query",
            complexity="simple",
            execution_mode="sequential",
            confidence=0,
        )


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequestUser:
    """The authenticated caller, as resolved by the auth dependency."""

    email: str
    full_name: str
    role: str = "user"


@dataclass(frozen=True)
class BehavioralProfile:
    id: str
    archetype_id: str | None = None
    archetype_confidence: float | None = None
    communication_preferences: dict[str, Any] = field(default_factory=dict)

    @property
    def communication_style(self) -> str | None:
        return self.communication_preferences.get("style")


@dataclass(frozen=True)
class EngagementRecord:
    id: str
    interaction_type: str
    created_date: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UserContext:
    user: RequestUser
    profile: BehavioralProfile | None = None
    engagements: tuple[EngagementRecord, ...] = ()
    engagement_patterns: tuple[str, ...] = ()
    decision_style: str = "adaptive"

    def profile_snippet(self) -> dict[str, Any] | None:
        """Normalised profile view attached to the plan, or None."""
        if self.profile is None:
            return None
        return {
            "archetype": self.profile.archetype_id,
            "confidence": self.profile.archetype_confidence,
            "communication_style": self.profile.communication_style,
            "decision_style": self.decision_style,
            "engagement_patterns": list(self.engagement_patterns),
        }


@dataclass(frozen=True)
class KnowledgeEntity:
    id: str
    type: str
    label: str
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class KnowledgeRelationship:
    id: str
    source_id: str
    target_id: str
    relationship_type: str
    strength: float | None = None


@dataclass(frozen=True)
class PastStrategy:
    """A previously recorded strategy in the same category as the request."""

    id: str
    title: str
    category: str | None = None
    roi_estimate: float | None = None


@dataclass(frozen=True)
class KnowledgeContext:
    entities: tuple[KnowledgeEntity, ...] = ()
    relationships: tuple[KnowledgeRelationship, ...] = ()
    relevant_strategies: tuple[PastStrategy, ...] = ()

    @property
    def impact_score(self) -> int:
        return knowledge_impact_score(
            len(self.entities), len(self.relationships), len(self.relevant_strategies),
        )


def knowledge_impact_score(
    entity_count: int, relationship_count: int, strategy_count: int = 0,
) -> int:
    """
    0-100 score: entities saturate at 30, relationships at 20, and each
    past strategy adds 5.
    """
    score = (
        2 * min(entity_count, 30)
        + 1.5 * min(relationship_count, 20)
        + 5 * strategy_count
    )
    return min(100, round(score))


@dataclass(frozen=True)
class MemoryContext:
    """Long-term agent memories recalled for the primary agent."""

    memories: tuple[dict[str, Any], ...] = ()
    summary: str = ""
    key_learnings: tuple[str, ...] = ()

    @property
    def count(self) -> int:
        return len(self.memories)


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AgentStep:
    agent_id: str
    role: StepRole
    input_sources: tuple[str, ...]
    frameworks: tuple[str, ...] = ()
    modules: tuple[str, ...] = ()
    can_propose_alternatives: bool = False
    sub_team: int | None = None

    @property
    def depends_on_prior_outputs(self) -> bool:
        return bool(DEPENDENT_SOURCES.intersection(self.input_sources))


@dataclass(frozen=True)
class SubTeam:
    index: int
    task: str
    mode: ExecutionMode
    steps: tuple[AgentStep, ...]

    @property
    def output_key(self) -> str:
        return f"sub_team_{self.index}_output"


@dataclass(frozen=True)
class ContextFlow:
    knowledge: KnowledgeContext = field(default_factory=KnowledgeContext)
    profile: dict[str, Any] | None = None
    capability_tags: tuple[str, ...] = ()
    memory: MemoryContext = field(default_factory=MemoryContext)

    @property
    def entities(self) -> tuple[KnowledgeEntity, ...]:
        return self.knowledge.entities

    @property
    def similar_strategies(self) -> tuple[PastStrategy, ...]:
        return self.knowledge.relevant_strategies


@dataclass(frozen=True)
class ExecutionPlan:
    mode: ExecutionMode
    steps: tuple[AgentStep, ...]
    context_flow: ContextFlow = field(default_factory=ContextFlow)
    sub_teams: tuple[SubTeam, ...] = ()

    @property
    def agent_ids(self) -> list[str]:
        return [step.agent_id for step in self.steps]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AlternativeProposal:
    agent_id: str
    reason: str
    confidence: int


@dataclass(frozen=True)
class AgentResult:
    agent_id: str
    role: StepRole
    success: bool
    output: str | None = None
    error: str | None = None
    duration_ms: int = 0
    frameworks: tuple[str, ...] = ()
    modules: tuple[str, ...] = ()
    sub_team: int | None = None
    # Position in plan.steps; None for sub-team and alternative steps
    step_index: int | None = None
    replanned: bool = False
    alternative: AlternativeProposal | None = None
    structured_insights: dict[str, Any] | None = None

    def trace(self) -> dict[str, Any]:
        """Per-agent timing/success entry exposed to API callers."""
        return {
            "agent": self.agent_id,
            "role": self.role,
            "success": self.success,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "sub_team": self.sub_team,
            "replanned": self.replanned,
            "has_structured_insights": self.structured_insights is not None,
        }


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------


class Recommendation(BaseModel):
    action: str
    priority: Literal["high", "medium", "low"] = "medium"
    framework: str | None = None
    confidence: float | None = Field(default=None, ge=0, le=100)


class SynthesisPayload(BaseModel):
    """Shape the multi-agent synthesis call must return."""

    model_config = ConfigDict(extra="ignore")

    executive_summary: str = Field(min_length=1, description="2-3 sentences")
    key_insights: list[str] = Field(default_factory=list)
    cross_agent_patterns: list[str] = Field(default_factory=list)
    knowledge_graph_integration: list[str] = Field(
        default_factory=list,
        description="How knowledge-graph entities shaped the analysis",
    )
    memory_informed_insights: list[str] = Field(
        default_factory=list,
        description="Insights informed by past learnings",
    )
    strategic_recommendations: list[Recommendation] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    alternative_perspectives: list[str] = Field(default_factory=list)
    confidence: float = Field(default=85, ge=0, le=100)
    relevance: float = Field(default=85, ge=0, le=100)
    value: float = Field(default=85, ge=0, le=100)


@dataclass(frozen=True)
class SynthesizedResponse:
    content: str
    confidence: int
    relevance: int
    value: int
    source_agents: tuple[str, ...] = ()
    payload: SynthesisPayload | None = None

    @property
    def crv_scores(self) -> dict[str, int]:
        return {
            "confidence": self.confidence,
            "relevance": self.relevance,
            "value": self.value,
        }
