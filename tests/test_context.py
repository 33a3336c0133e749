# =============================================================================
# Unit Tests — Context Assembly, Agent Memory & In-Memory Entity Store
# =============================================================================
#
# Uses InMemoryEntityStore seeded with plain dicts; failure paths use an
# AsyncMock store that raises.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from strategist.agents.context import (
    ContextAssembler,
    analyze_engagement_patterns,
    infer_decision_style,
)
from strategist.agents.memory import AgentMemoryService, summarize_memories
from strategist.agents.schemas import (
    AgentResult,
    AgentStep,
    BehavioralProfile,
    EngagementRecord,
    ExecutionPlan,
    IntentDescriptor,
    KnowledgeContext,
    PastStrategy,
    RequestUser,
    SynthesizedResponse,
    knowledge_impact_score,
)
from strategist.services.entity_store import (
    AGENT_MEMORY,
    BEHAVIORAL_PROFILE,
    ENGAGEMENT_RECORD,
    KNOWLEDGE_NODE,
    KNOWLEDGE_RELATIONSHIP,
    STRATEGY,
    EntityNotFoundError,
    InMemoryEntityStore,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


USER = RequestUser(email="ada@example.com", full_name="Ada Lovelace")


def _failing_store() -> AsyncMock:
    store = AsyncMock()
    store.get.side_effect = ConnectionError("db down")
    store.filter.side_effect = ConnectionError("db down")
    store.create.side_effect = ConnectionError("db down")
    return store


# ---------------------------------------------------------------------------
# In-memory entity store
# ---------------------------------------------------------------------------


class TestInMemoryEntityStore:
    def test_create_assigns_id_and_created_date(self):
        store = InMemoryEntityStore()
        record = _run(store.create(AGENT_MEMORY, {"agent_name": "a"}))
        assert record["id"] == "agentmemory-1"
        assert record["created_date"]

    def test_filter_equality_sort_and_limit(self):
        store = InMemoryEntityStore({ENGAGEMENT_RECORD: [
            {"id": "e1", "behavioral_profile_id": "p1", "created_date": "2024-01-01"},
            {"id": "e2", "behavioral_profile_id": "p2", "created_date": "2024-02-01"},
            {"id": "e3", "behavioral_profile_id": "p1", "created_date": "2024-03-01"},
            {"id": "e4", "behavioral_profile_id": "p1", "created_date": "2024-02-15"},
        ]})

        records = _run(store.filter(
            ENGAGEMENT_RECORD, {"behavioral_profile_id": "p1"}, sort="-created_date", limit=2,
        ))

        assert [r["id"] for r in records] == ["e3", "e4"]

    def test_filter_without_sort_keeps_listing_order(self):
        store = InMemoryEntityStore({KNOWLEDGE_NODE: [{"id": "z"}, {"id": "a"}, {"id": "m"}]})
        assert [r["id"] for r in _run(store.filter(KNOWLEDGE_NODE))] == ["z", "a", "m"]

    def test_none_sorts_first_ascending(self):
        store = InMemoryEntityStore({AGENT_MEMORY: [
            {"id": "m1", "relevance_score": 50},
            {"id": "m2", "relevance_score": None},
        ]})
        records = _run(store.filter(AGENT_MEMORY, sort="relevance_score"))
        assert [r["id"] for r in records] == ["m2", "m1"]

    def test_update_and_missing(self):
        store = InMemoryEntityStore({BEHAVIORAL_PROFILE: [{"id": "p1", "client_name": "Ada"}]})
        updated = _run(store.update(BEHAVIORAL_PROFILE, "p1", {"archetype_confidence": 90}))
        assert updated["archetype_confidence"] == 90

        with pytest.raises(EntityNotFoundError):
            _run(store.update(BEHAVIORAL_PROFILE, "nope", {}))

    def test_returned_records_are_copies(self):
        store = InMemoryEntityStore({BEHAVIORAL_PROFILE: [{"id": "p1"}]})
        record = _run(store.get(BEHAVIORAL_PROFILE, "p1"))
        record["client_name"] = "mutated"
        assert "client_name" not in _run(store.get(BEHAVIORAL_PROFILE, "p1"))


# ---------------------------------------------------------------------------
# User context
# ---------------------------------------------------------------------------


PROFILES = [
    {
        "id": "p-name",
        "client_name": "Ada Lovelace",
        "primary_archetype_id": "analytical_leader",
        "archetype_confidence": 90,
        "communication_preferences": {"style": "data-heavy"},
    },
    {
        "id": "p-explicit",
        "client_name": "Someone Else",
        "primary_archetype_id": "visionary_founder",
        "archetype_confidence": 60,
    },
]


class TestAssemble:
    def _store(self):
        engagements = [
            {"id": f"e{i}", "behavioral_profile_id": "p-name",
             "interaction_type": "meeting", "created_date": f"2024-01-{i + 10}"}
            for i in range(3)
        ] + [
            {"id": "e9", "behavioral_profile_id": "p-name",
             "interaction_type": "email", "created_date": "2024-01-20"},
        ]
        return InMemoryEntityStore({BEHAVIORAL_PROFILE: PROFILES, ENGAGEMENT_RECORD: engagements})

    def test_explicit_profile_id_wins(self):
        context = _run(ContextAssembler(self._store()).assemble(USER, "p-explicit"))
        assert context.profile.id == "p-explicit"
        assert context.decision_style == "adaptive"

    def test_falls_back_to_display_name(self):
        context = _run(ContextAssembler(self._store()).assemble(USER))

        assert context.profile.id == "p-name"
        assert context.profile.communication_style == "data-heavy"
        assert context.decision_style == "data_driven"
        assert [e.id for e in context.engagements] == ["e9", "e2", "e1", "e0"]
        assert context.engagement_patterns == ("frequent_meeting",)

    def test_engagement_limit(self):
        context = _run(ContextAssembler(self._store(), engagement_limit=2).assemble(USER))
        assert len(context.engagements) == 2

    def test_unknown_profile_id_gives_no_profile(self):
        context = _run(ContextAssembler(self._store()).assemble(USER, "missing"))
        assert context.profile is None
        assert context.profile_snippet() is None

    def test_no_matching_name(self):
        stranger = RequestUser(email="x@example.com", full_name="Nobody")
        assert _run(ContextAssembler(self._store()).assemble(stranger)).profile is None

    def test_store_failure_degrades(self):
        context = _run(ContextAssembler(_failing_store()).assemble(USER, "p1"))
        assert context.user == USER
        assert context.profile is None


class TestDerivedSignals:
    def test_patterns_need_three_occurrences(self):
        engagements = [EngagementRecord(str(i), t) for i, t in enumerate(
            ["call", "call", "call", "email", "email"]
        )]
        assert analyze_engagement_patterns(engagements) == ("frequent_call",)

    def test_decision_style_requires_confidence_above_80(self):
        assert infer_decision_style(BehavioralProfile("p", "pragmatic_operator", 81)) == "balanced"
        assert infer_decision_style(BehavioralProfile("p", "pragmatic_operator", 80)) == "adaptive"
        assert infer_decision_style(BehavioralProfile("p", None, None)) == "adaptive"


# ---------------------------------------------------------------------------
# Knowledge
# ---------------------------------------------------------------------------


def _knowledge_store(n_markets=25):
    nodes = [{"id": "c1", "node_type": "company", "label": "Acme"}]
    nodes += [
        {"id": f"m{i}", "node_type": "market" if i % 2 else "industry", "label": f"Market {i}"}
        for i in range(n_markets)
    ]
    nodes.append({"id": "t1", "node_type": "technology", "label": "LLMs"})
    relationships = [
        {"id": "r1", "from_node_id": "m0", "to_node_id": "m1", "relationship_type": "adjacent_to"},
        {"id": "r2", "from_node_id": "c1", "to_node_id": "m1", "relationship_type": "competes_in"},
    ]
    return InMemoryEntityStore({KNOWLEDGE_NODE: nodes, KNOWLEDGE_RELATIONSHIP: relationships})


class TestRelevantEntities:
    def test_market_intent_filters_and_caps_in_listing_order(self):
        assembler = ContextAssembler(_knowledge_store())
        entities = _run(assembler.relevant_entities(IntentDescriptor(primary_intent="market_analysis")))

        assert len(entities) == 20
        assert [e.id for e in entities[:3]] == ["m0", "m1", "m2"]
        assert all(e.type in {"market", "industry"} for e in entities)

    def test_competitive_intent(self):
        assembler = ContextAssembler(_knowledge_store())
        entities = _run(assembler.relevant_entities(IntentDescriptor(primary_intent="competitive_intel")))
        assert [e.label for e in entities] == ["Acme"]

    def test_technology_intent(self):
        assembler = ContextAssembler(_knowledge_store())
        entities = _run(assembler.relevant_entities(IntentDescriptor(primary_intent="tech_assessment")))
        assert [e.id for e in entities] == ["t1"]

    def test_other_intents_unfiltered(self):
        assembler = ContextAssembler(_knowledge_store(n_markets=3))
        entities = _run(assembler.relevant_entities(IntentDescriptor(primary_intent="fundraising")))
        assert [e.id for e in entities] == ["c1", "m0", "m1", "m2", "t1"]

    def test_failure_returns_empty_list(self):
        assembler = ContextAssembler(_failing_store())
        assert _run(assembler.relevant_entities(IntentDescriptor(primary_intent="market_analysis"))) == []


class TestGatherKnowledge:
    def test_only_relationships_between_selected_entities(self):
        assembler = ContextAssembler(_knowledge_store(n_markets=3))
        knowledge = _run(assembler.gather_knowledge(IntentDescriptor(primary_intent="market_analysis")))

        assert len(knowledge.entities) == 3
        assert [r.id for r in knowledge.relationships] == ["r1"]
        assert knowledge.impact_score == 8  # 2*3 + 1.5*1 = 7.5 → 8

    def test_no_entities_gives_empty_context(self):
        knowledge = _run(ContextAssembler(InMemoryEntityStore()).gather_knowledge(
            IntentDescriptor(primary_intent="market_analysis"),
        ))
        assert knowledge.entities == ()
        assert knowledge.impact_score == 0


def _strategy_store():
    strategies = [
        {"id": f"s{i}", "title": f"TAM play {i}", "category": "TAM",
         "roi_estimate": 10 + i, "created_date": f"2026-01-{i + 1:02d}"}
        for i in range(7)
    ]
    strategies.append({"id": "p1", "title": "Five forces review", "category": "Porter",
                       "roi_estimate": None, "created_date": "2026-02-01"})
    return InMemoryEntityStore({STRATEGY: strategies})


class TestPastStrategies:
    def test_newest_five_in_first_framework_category(self):
        assembler = ContextAssembler(_strategy_store())
        intent = IntentDescriptor(primary_intent="market_analysis", frameworks_needed=("TAM", "Porter"))

        strategies = _run(assembler.past_strategies(intent))

        assert [s.id for s in strategies] == ["s6", "s5", "s4", "s3", "s2"]
        assert strategies[0] == PastStrategy("s6", "TAM play 6", "TAM", 16)

    def test_without_frameworks_category_is_not_filtered(self):
        assembler = ContextAssembler(_strategy_store())
        strategies = _run(assembler.past_strategies(IntentDescriptor(primary_intent="general_query")))
        assert [s.id for s in strategies] == ["p1", "s6", "s5", "s4", "s3"]

    def test_failure_returns_empty_list(self):
        intent = IntentDescriptor(primary_intent="market_analysis", frameworks_needed=("TAM",))
        assert _run(ContextAssembler(_failing_store()).past_strategies(intent)) == []

    def test_strategies_attached_without_entities_and_scored(self):
        assembler = ContextAssembler(_strategy_store())
        intent = IntentDescriptor(primary_intent="market_analysis", frameworks_needed=("Porter",))

        knowledge = _run(assembler.gather_knowledge(intent))

        assert knowledge.entities == ()
        assert [s.title for s in knowledge.relevant_strategies] == ["Five forces review"]
        assert knowledge.impact_score == 5

    def test_failed_lookups_leave_empty_context(self):
        knowledge = _run(ContextAssembler(_failing_store()).gather_knowledge(
            IntentDescriptor(primary_intent="market_analysis", frameworks_needed=("TAM",)),
        ))
        assert knowledge == KnowledgeContext()


class TestKnowledgeImpactScore:
    def test_each_past_strategy_adds_five(self):
        assert knowledge_impact_score(3, 1, 0) == 8
        assert knowledge_impact_score(3, 1, 2) == 18

    def test_caps(self):
        assert knowledge_impact_score(50, 0) == 60
        assert knowledge_impact_score(0, 40) == 30
        assert knowledge_impact_score(30, 20, 5) == 100


# ---------------------------------------------------------------------------
# Agent memory
# ---------------------------------------------------------------------------


class TestAgentMemory:
    def _store(self):
        memories = [
            {"id": "m1", "agent_name": "market-context-agent", "user_email": USER.email,
             "memory_type": "insight", "intent": "market_analysis", "content": "Old insight",
             "relevance_score": 60, "created_date": "2024-01-01"},
            {"id": "m2", "agent_name": "market-context-agent", "user_email": USER.email,
             "memory_type": "success", "intent": "fundraising", "content": "Pricing advice held",
             "relevance_score": 95, "created_date": "2024-02-01"},
            {"id": "m3", "agent_name": "other-agent", "user_email": USER.email,
             "memory_type": "success", "content": "Not mine", "created_date": "2024-03-01"},
        ]
        return InMemoryEntityStore({AGENT_MEMORY: memories})

    def test_recall_scoped_to_agent_and_user(self):
        memory = _run(AgentMemoryService(self._store()).recall("market-context-agent", USER.email))

        assert memory.count == 2
        assert [m["id"] for m in memory.memories] == ["m2", "m1"]
        assert memory.key_learnings == ("[success] Pricing advice held", "[insight] Old insight")
        assert memory.summary == (
            "2 past interactions with market-context-agent (1 success, 1 insight) "
            "covering fundraising, market_analysis."
        )

    def test_recall_nothing(self):
        memory = _run(AgentMemoryService(self._store()).recall("market-context-agent", "x@y.z"))
        assert memory.count == 0
        assert memory.summary == ""

    def test_recall_failure_degrades(self):
        memory = _run(AgentMemoryService(_failing_store()).recall("a", USER.email))
        assert memory.count == 0

    def test_remember_stores_successful_plan_steps_only(self):
        store = InMemoryEntityStore()
        plan = ExecutionPlan("sequential", (
            AgentStep("a", "primary", ("user_message",)),
            AgentStep("b", "supporting", ("previous_agent_output",)),
        ))
        results = [
            AgentResult("a", "primary", success=True, output="A" * 2000, step_index=0),
            AgentResult("b", "supporting", success=False, error="boom", step_index=1),
            AgentResult("x", "alternative", success=True, output="alt", replanned=True),
        ]
        response = SynthesizedResponse("content", confidence=85, relevance=85, value=85)

        stored = _run(AgentMemoryService(store).remember(
            plan, results,
            user_email=USER.email,
            user_message="Size the market",
            response=response,
            intent=IntentDescriptor(primary_intent="market_analysis", frameworks_needed=("TAM",)),
            conversation_id="conv-7",
        ))

        assert stored == 1
        [record] = _run(store.filter(AGENT_MEMORY))
        assert record["agent_name"] == "a"
        assert record["memory_type"] == "success"
        assert record["outcome_quality"] == "high"
        assert record["conversation_id"] == "conv-7"
        assert len(record["content"]) == 1000
        assert record["metadata"]["frameworks"] == ["TAM"]

    def test_moderate_outcome_is_insight(self):
        store = InMemoryEntityStore()
        plan = ExecutionPlan("sequential", (AgentStep("a", "primary", ("user_message",)),))
        _run(AgentMemoryService(store).remember(
            plan, [AgentResult("a", "primary", success=True, output="x", step_index=0)],
            user_email=USER.email, user_message="m",
            response=SynthesizedResponse("x", 80, 85, 80),
            intent=IntentDescriptor.default(),
        ))
        [record] = _run(store.filter(AGENT_MEMORY))
        assert record["memory_type"] == "insight"
        assert record["outcome_quality"] == "moderate"

    def _repeated_agent_plan(self):
        return ExecutionPlan("sequential", (
            AgentStep("competitive-intel-agent", "primary", ("user_message",)),
            AgentStep("strategic-synthesis-agent", "supporting", ("previous_agent_output",)),
            AgentStep("strategic-synthesis-agent", "synthesizer", ("all_previous_outputs",)),
        ))

    def _remember(self, store, plan, results):
        return _run(AgentMemoryService(store).remember(
            plan, results,
            user_email=USER.email, user_message="Who threatens us?",
            response=SynthesizedResponse("x", 90, 90, 90),
            intent=IntentDescriptor(primary_intent="competitive_intel", complexity="complex"),
        ))

    def test_repeated_agent_outputs_stored_per_step(self):
        store = InMemoryEntityStore()
        results = [
            AgentResult(step.agent_id, step.role, success=True, output=f"OUT-{step.role}", step_index=i)
            for i, step in enumerate(self._repeated_agent_plan().steps)
        ]

        assert self._remember(store, self._repeated_agent_plan(), results) == 3
        records = _run(store.filter(AGENT_MEMORY, sort="created_date"))
        assert [(r["agent_name"], r["metadata"]["role"], r["content"]) for r in records] == [
            ("competitive-intel-agent", "primary", "OUT-primary"),
            ("strategic-synthesis-agent", "supporting", "OUT-supporting"),
            ("strategic-synthesis-agent", "synthesizer", "OUT-synthesizer"),
        ]

    def test_failed_repeat_does_not_borrow_sibling_output(self):
        store = InMemoryEntityStore()
        results = [
            AgentResult("competitive-intel-agent", "primary", success=True, output="OUT-primary", step_index=0),
            AgentResult("strategic-synthesis-agent", "supporting", success=False, error="boom", step_index=1),
            AgentResult("strategic-synthesis-agent", "synthesizer", success=True, output="OUT-synthesizer", step_index=2),
        ]

        assert self._remember(store, self._repeated_agent_plan(), results) == 2
        records = _run(store.filter(AGENT_MEMORY, sort="created_date"))
        assert [(r["metadata"]["role"], r["content"]) for r in records] == [
            ("primary", "OUT-primary"),
            ("synthesizer", "OUT-synthesizer"),
        ]

    def test_summarize_without_intents(self):
        assert summarize_memories("a", [{"memory_type": None}]) == (
            "1 past interactions with a (1 insight)."
        )
