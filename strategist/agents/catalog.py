# =============================================================================
# Agent Catalog & Planning Tables
# =============================================================================
#
# The closed tables the planner and context assembler consult:
#
#   DEFAULT_INTENT_AGENTS        — primary_intent → ordered agent ids (1-3)
#   DEFAULT_ENTITY_TYPE_FILTERS  — primary_intent → knowledge node types
#   SUB_TASK_KEYWORDS            — sub-task keyword → specialist agent
#   AGENT_PERSONAS               — agent id → system prompt used by the
#                                  conversation responder
#
# DESIGN DECISION: Tables are values, not module globals the planner reads.
# They travel in a PlanningConfig that callers (and tests) can replace.
# =============================================================================

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

GENERAL_AGENT = "general-advisor-agent"
SYNTHESIZER_AGENT = "strategic-synthesis-agent"
CONTEXT_ADAPTER_AGENT = "behavioral-adapter-agent"

DEFAULT_INTENT_AGENTS: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "market_analysis": ("market-context-agent", "competitive-intel-agent"),
    "competitive_intel": ("competitive-intel-agent", "strategic-synthesis-agent"),
    "financial_modeling": ("financial-model-agent", "funding-intelligence-agent"),
    "tech_assessment": ("tech-innovation-agent",),
    "strategic_planning": (
        "strategic-synthesis-agent",
        "opportunity-matrix-agent",
        "implementation-agent",
    ),
    "risk_assessment": ("risk-metamodel-agent", "reframing-loop-agent"),
    "fundraising": ("funding-intelligence-agent", "financial-model-agent"),
    "ma_evaluation": (
        "financial-model-agent",
        "competitive-intel-agent",
        "strategic-synthesis-agent",
    ),
    "behavioral_analysis": ("behavioral-intelligence-agent",),
    "general_query": (GENERAL_AGENT,),
})

DEFAULT_ENTITY_TYPE_FILTERS: Mapping[str, frozenset[str]] = MappingProxyType({
    "market_analysis": frozenset({"market", "industry"}),
    "competitive_intel": frozenset({"company", "competitor"}),
    "tech_assessment": frozenset({"technology", "framework"}),
})

# Checked in order; every match contributes a specialist
SUB_TASK_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("market", "market-context-agent"),
    ("competitive", "competitive-intel-agent"),
    ("financial", "financial-model-agent"),
    ("technology", "tech-innovation-agent"),
)

AGENT_PERSONAS: Mapping[str, str] = MappingProxyType({
    "market-context-agent": (
        "You are a market context analyst. Size markets, map industry "
        "structure and demand drivers, and flag macro trends that matter "
        "for the decision at hand."
    ),
    "competitive-intel-agent": (
        "You are a competitive intelligence analyst. Profile competitors, "
        "compare positioning and capabilities, and identify threats and "
        "openings."
    ),
    "financial-model-agent": (
        "You are a financial modeling specialist. Build unit economics, "
        "revenue and cost projections, and valuation ranges. State every "
        "assumption explicitly."
    ),
    "funding-intelligence-agent": (
        "You are a funding and capital markets advisor. Assess funding "
        "options, investor fit, round sizing and dilution."
    ),
    "tech-innovation-agent": (
        "You are a technology and innovation assessor. Evaluate technical "
        "maturity, build-vs-buy options and adoption risk."
    ),
    "strategic-synthesis-agent": (
        "You are a strategy partner. Integrate inputs into a coherent "
        "strategic position with prioritised choices and trade-offs."
    ),
    "opportunity-matrix-agent": (
        "You are an opportunity portfolio analyst. Score opportunities on "
        "impact and feasibility and arrange them into a prioritised matrix."
    ),
    "implementation-agent": (
        "You are an implementation planner. Turn strategy into phased "
        "roadmaps with owners, milestones and success metrics."
    ),
    "risk-metamodel-agent": (
        "You are a risk analyst. Enumerate risks, estimate likelihood and "
        "impact, and propose mitigations and early-warning indicators."
    ),
    "reframing-loop-agent": (
        "You are a problem reframing specialist. Challenge the framing of "
        "the question, surface hidden assumptions and offer alternative "
        "problem statements."
    ),
    "behavioral-intelligence-agent": (
        "You are a behavioral intelligence analyst. Interpret stakeholder "
        "archetypes, motivations and decision patterns."
    ),
    "behavioral-adapter-agent": (
        "You adapt analysis to a specific stakeholder. Given a behavioral "
        "profile, describe how findings should be framed, sequenced and "
        "evidenced for this audience."
    ),
    "general-advisor-agent": (
        "You are a senior strategy advisor. Answer clearly and concisely, "
        "grounding recommendations in the context provided."
    ),
})

DEFAULT_PERSONA = AGENT_PERSONAS[GENERAL_AGENT]


def persona_for(agent_id: str) -> str:
    return AGENT_PERSONAS.get(agent_id, DEFAULT_PERSONA)


@dataclass(frozen=True)
class PlanningConfig:
    """
    Injectable planning tables.

    Attributes:
        intent_agents: primary_intent → ordered agent ids. Unmapped intents
            fall back to [default_agent].
        entity_type_filters: primary_intent → allowed knowledge node types.
            Unlisted intents keep every entity.
        default_agent: Single agent used for unmapped intents and generic
            sub-tasks.
        synthesizer_agent: Agent appended for complex/multi_phase requests.
        context_adapter_agent: Agent prepended for board-level stakeholders
            with a behavioral profile.
    """

    intent_agents: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: DEFAULT_INTENT_AGENTS
    )
    entity_type_filters: Mapping[str, frozenset[str]] = field(
        default_factory=lambda: DEFAULT_ENTITY_TYPE_FILTERS
    )
    sub_task_keywords: tuple[tuple[str, str], ...] = SUB_TASK_KEYWORDS
    default_agent: str = GENERAL_AGENT
    synthesizer_agent: str = SYNTHESIZER_AGENT
    context_adapter_agent: str = CONTEXT_ADAPTER_AGENT
    synthesizer_frameworks: tuple[str, ...] = ("HYBRID",)

    def agents_for(self, primary_intent: str) -> tuple[str, ...]:
        return self.intent_agents.get(primary_intent) or (self.default_agent,)

    def primary_agent_for(self, primary_intent: str) -> str:
        return self.agents_for(primary_intent)[0]

    def known_agents(self) -> frozenset[str]:
        """Every agent id the tables can route to."""
        agents = {
            self.default_agent,
            self.synthesizer_agent,
            self.context_adapter_agent,
        }
        for mapped in self.intent_agents.values():
            agents.update(mapped)
        agents.update(agent for _, agent in self.sub_task_keywords)
        return frozenset(agents)


DEFAULT_PLANNING_CONFIG = PlanningConfig()
