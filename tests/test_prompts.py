# =============================================================================
# Unit Tests — Prompt Sections & Context Accumulator
# =============================================================================

from __future__ import annotations

import pytest

from strategist.agents.accumulator import ContextAccumulator
from strategist.agents.errors import FrozenContextError
from strategist.agents.prompts import (
    build_prompt,
    build_sections,
    capabilities_section,
    history_section,
    knowledge_section,
    memory_section,
    prior_outputs_section,
    profile_section,
    role_section,
    routing_section,
)
from strategist.agents.schemas import (
    AgentStep,
    ContextFlow,
    KnowledgeContext,
    KnowledgeEntity,
    KnowledgeRelationship,
    MemoryContext,
    PastStrategy,
)

PROFILE = {
    "archetype": "visionary_founder",
    "confidence": 88,
    "communication_style": "narrative",
    "decision_style": "intuitive",
    "engagement_patterns": ["frequent_meeting"],
}


def _step(role="primary", sources=("user_message",), **kwargs) -> AgentStep:
    return AgentStep("market-context-agent", role, sources, **kwargs)


# ---------------------------------------------------------------------------
# Context Accumulator
# ---------------------------------------------------------------------------


class TestContextAccumulator:
    def test_record_output_sets_previous(self):
        ctx = ContextAccumulator("msg")
        ctx.record_output("a", "first")
        ctx.record_output("b", "second")

        assert ctx.get("a_output") == "first"
        assert ctx.previous_agent_output == "second"
        assert ctx.all_outputs() == [("a_output", "first"), ("b_output", "second")]

    def test_alternative_not_listed_as_output_and_keeps_previous(self):
        ctx = ContextAccumulator("msg")
        ctx.record_output("a", "first")
        ctx.record_alternative("b", "alt")

        assert ctx.get("b_alternative") == "alt"
        assert ctx.previous_agent_output == "first"
        assert ctx.all_outputs() == [("a_output", "first")]

    def test_snapshot_is_frozen_and_isolated(self):
        ctx = ContextAccumulator("msg")
        ctx.record_output("a", "first")
        snap = ctx.snapshot()

        with pytest.raises(FrozenContextError):
            snap.record_output("b", "x")

        ctx.record_output("b", "second")
        assert snap.get("b_output") is None
        assert snap.previous_agent_output == "first"

    def test_fork_is_writable_and_isolated(self):
        ctx = ContextAccumulator("msg")
        fork = ctx.fork(sub_team_task="market sizing")
        fork.record_sub_team(0, "team output")

        assert fork.sub_team_task == "market sizing"
        assert fork.get("sub_team_0_output") == "team output"
        assert ctx.get("sub_team_0_output") is None

    def test_outputs_is_read_only(self):
        ctx = ContextAccumulator("msg")
        with pytest.raises(TypeError):
            ctx.outputs["x"] = "y"


# ---------------------------------------------------------------------------
# Individual sections
# ---------------------------------------------------------------------------


class TestRoleSection:
    def test_primary_has_no_preamble(self):
        assert role_section(_step(), ContextAccumulator("m")) is None

    def test_context_adapter_and_synthesizer_framing_differ(self):
        ctx = ContextAccumulator("m")
        adapter = role_section(_step(role="context_adapter"), ctx)
        synth = role_section(_step(role="synthesizer"), ctx)
        assert "[CONTEXT ADAPTATION]" in adapter.text
        assert "[SYNTHESIS]" in synth.text
        assert adapter.text != synth.text

    def test_alternative_framing(self):
        section = role_section(_step(role="alternative"), ContextAccumulator("m"))
        assert "[ALTERNATIVE PATH EXECUTION]" in section.text

    def test_sub_team_names_team_and_task(self):
        ctx = ContextAccumulator("m", sub_team_task="Size the EU market")
        section = role_section(_step(role="specialist", sub_team=1), ctx)
        assert section.text == "[SUB-TEAM: sub_team_1]\nTask: Size the EU market"


class TestCapabilitiesSection:
    def test_lists_frameworks_and_modules(self):
        section = capabilities_section(
            _step(frameworks=("SWOT", "Porter"), modules=("pricing",)),
            ContextAccumulator("m"),
        )
        assert section.text == "Frameworks: SWOT, Porter\nModules: pricing"

    def test_absent_without_capabilities(self):
        assert capabilities_section(_step(), ContextAccumulator("m")) is None


class TestKnowledgeSection:
    def test_top_five_labels_and_impact(self):
        entities = tuple(
            KnowledgeEntity(f"n{i}", "market", f"Label {i}") for i in range(7)
        )
        relationships = (KnowledgeRelationship("r1", "n0", "n1", "competes_with"),)
        flow = ContextFlow(knowledge=KnowledgeContext(entities, relationships))
        section = knowledge_section(_step(), ContextAccumulator("m", flow))

        assert "- 7 relevant entities" in section.text
        assert "Impact Score: 16/100" in section.text
        assert "Label 4" in section.text
        assert "Label 5" not in section.text
        assert "1 relationships mapped" in section.text

    def test_absent_without_entities(self):
        assert knowledge_section(_step(), ContextAccumulator("m")) is None


class TestMemorySection:
    def test_summary_and_learnings(self):
        flow = ContextFlow(memory=MemoryContext(
            memories=({"id": "m1"},),
            summary="1 past interactions with x (1 success).",
            key_learnings=("[success] Lead with unit economics",),
        ))
        section = memory_section(_step(), ContextAccumulator("m", flow))
        assert section.text.startswith("Agent Long-Term Memory:")
        assert "Key Learnings from Past:\n1. [success] Lead with unit economics" in section.text

    def test_absent_without_memories(self):
        assert memory_section(_step(), ContextAccumulator("m")) is None


class TestProfileSection:
    def test_profile_fields(self):
        flow = ContextFlow(profile=PROFILE)
        section = profile_section(_step(), ContextAccumulator("m", flow))
        assert section.text.splitlines()[0] == "User Profile:"
        assert "- Archetype: visionary_founder" in section.text
        assert "- Communication Style: narrative" in section.text
        assert "- Decision Style: intuitive" in section.text
        assert "- Engagement Patterns: frequent_meeting" in section.text

    def test_adapter_gets_stakeholder_heading(self):
        flow = ContextFlow(profile=PROFILE)
        step = _step(role="context_adapter", sources=("user_message", "behavioral_profile"))
        section = profile_section(step, ContextAccumulator("m", flow))
        assert section.text.startswith("Stakeholder Behavioral Profile:")

    def test_absent_without_profile(self):
        assert profile_section(_step(), ContextAccumulator("m")) is None


class TestHistorySection:
    def test_numbered_strategies_with_category_and_roi(self):
        flow = ContextFlow(knowledge=KnowledgeContext(relevant_strategies=(
            PastStrategy("s1", "DACH-first expansion", "TAM", 24.0),
            PastStrategy("s2", "Usage-based pricing", "TAM", 11.5),
            PastStrategy("s3", "Nordic channel", None, None),
        )))
        section = history_section(_step(), ContextAccumulator("m", flow))

        assert section.text == (
            "Relevant Past Strategies:\n"
            "1. DACH-first expansion (TAM, ROI: 24%)\n"
            "2. Usage-based pricing (TAM, ROI: 11.5%)\n"
            "3. Nordic channel (uncategorised, ROI: n/a)"
        )

    def test_present_without_knowledge_entities(self):
        flow = ContextFlow(knowledge=KnowledgeContext(
            relevant_strategies=(PastStrategy("s1", "DACH-first expansion", "TAM", 24),),
        ))
        ctx = ContextAccumulator("m", flow)

        assert knowledge_section(_step(), ctx) is None
        assert history_section(_step(), ctx) is not None

    def test_absent_without_strategies(self):
        assert history_section(_step(), ContextAccumulator("m")) is None


class TestPriorOutputsSection:
    def test_previous_agent_output(self):
        ctx = ContextAccumulator("m")
        ctx.record_output("a", "alpha analysis")
        section = prior_outputs_section(_step(sources=("previous_agent_output",)), ctx)
        assert section.text == "--- Previous Agent Output ---\nalpha analysis"

    def test_all_previous_outputs_joined(self):
        ctx = ContextAccumulator("m")
        ctx.record_output("a", "alpha")
        ctx.record_output("b", "beta")
        section = prior_outputs_section(_step(sources=("all_previous_outputs",)), ctx)
        assert section.text == (
            "--- Previous Analysis ---\na_output:\nalpha\n\n---\n\nb_output:\nbeta"
        )

    def test_user_message_only_step_gets_no_prior_outputs(self):
        ctx = ContextAccumulator("m")
        ctx.record_output("a", "alpha")
        assert prior_outputs_section(_step(), ctx) is None

    def test_absent_when_nothing_recorded(self):
        ctx = ContextAccumulator("m")
        assert prior_outputs_section(_step(sources=("previous_agent_output",)), ctx) is None


class TestRoutingSection:
    def test_only_when_step_can_propose(self):
        ctx = ContextAccumulator("m")
        assert routing_section(_step(), ctx) is None
        section = routing_section(_step(can_propose_alternatives=True), ctx)
        assert "ALTERNATIVE_PATH: <agent-id> - <reason>" in section.text


# ---------------------------------------------------------------------------
# Full prompt
# ---------------------------------------------------------------------------


class TestBuildPrompt:
    def test_section_order_and_request_last(self):
        flow = ContextFlow(
            knowledge=KnowledgeContext(
                (KnowledgeEntity("n1", "market", "EU SaaS"),),
                relevant_strategies=(PastStrategy("s1", "DACH-first expansion", "TAM", 24),),
            ),
            profile=PROFILE,
        )
        ctx = ContextAccumulator("Should we enter the EU?", flow)
        ctx.record_output("prior-agent", "prior text")
        step = _step(
            role="synthesizer",
            sources=("all_previous_outputs",),
            frameworks=("HYBRID",),
            can_propose_alternatives=True,
        )

        names = [s.name for s in build_sections(step, ctx)]
        assert names == [
            "role", "capabilities", "knowledge", "profile",
            "history", "prior_outputs", "routing", "request",
        ]

        prompt = build_prompt(step, ctx)
        assert prompt.endswith("--- User Request ---\nShould we enter the EU?")
        assert "prior text" in prompt

    def test_minimal_prompt_is_just_the_request(self):
        assert build_prompt(_step(), ContextAccumulator("hello")) == "--- User Request ---\nhello"
