# =============================================================================
# Agent Prompt Builder
# =============================================================================
#
# An agent prompt is an ordered list of typed sections. Each section
# builder returns a PromptSection or None (section absent), so presence
# rules can be tested one section at a time.
#
# SECTION ORDER:
#   role          — sub-team / context-adapter / synthesizer / alternative
#   capabilities  — frameworks and modules the step should apply
#   knowledge     — entity count, impact score, top labels, relationships
#   memory        — long-term memory summary + key learnings
#   profile       — behavioral profile fields
#   history       — past strategies in the request's category
#   prior_outputs — per the step's input_sources
#   routing       — ALTERNATIVE_PATH instruction (can_propose_alternatives)
#   request       — the raw user request (always last)
# =============================================================================

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from strategist.agents.accumulator import ContextAccumulator
from strategist.agents.schemas import (
    ALL_PREVIOUS_OUTPUTS,
    BEHAVIORAL_PROFILE,
    PREVIOUS_AGENT_OUTPUT,
    AgentStep,
)

TOP_ENTITY_LABELS = 5
OUTPUT_SEPARATOR = "\n\n---\n\n"

_ROLE_PREAMBLES = {
    "context_adapter": (
        "[CONTEXT ADAPTATION]\n"
        "Analyse the stakeholder's behavioral profile below and describe how "
        "the analysis that follows should be framed, sequenced and evidenced "
        "for this audience. Downstream agents will receive your adaptation."
    ),
    "synthesizer": (
        "[SYNTHESIS]\n"
        "Integrate the previous agent analyses into one coherent strategic "
        "view. Resolve contradictions explicitly and prioritise the "
        "recommendations."
    ),
    "alternative": (
        "[ALTERNATIVE PATH EXECUTION]\n"
        "Re-analyzing with a different approach."
    ),
}

_ROUTING_INSTRUCTION = (
    "[ADAPTIVE ROUTING ENABLED]\n"
    "If a different analytical approach would yield better insights, add a "
    "line of the form:\n"
    "ALTERNATIVE_PATH: <agent-id> - <reason>"
)


@dataclass(frozen=True)
class PromptSection:
    name: str
    text: str


SectionBuilder = Callable[[AgentStep, ContextAccumulator], "PromptSection | None"]


def role_section(step: AgentStep, ctx: ContextAccumulator) -> PromptSection | None:
    if step.sub_team is not None:
        text = f"[SUB-TEAM: sub_team_{step.sub_team}]"
        if ctx.sub_team_task:
            text += f"\nTask: {ctx.sub_team_task}"
        return PromptSection("role", text)
    preamble = _ROLE_PREAMBLES.get(step.role)
    return PromptSection("role", preamble) if preamble else None


def capabilities_section(step: AgentStep, ctx: ContextAccumulator) -> PromptSection | None:
    lines = []
    if step.frameworks:
        lines.append(f"Frameworks: {', '.join(step.frameworks)}")
    if step.modules:
        lines.append(f"Modules: {', '.join(step.modules)}")
    return PromptSection("capabilities", "\n".join(lines)) if lines else None


def knowledge_section(step: AgentStep, ctx: ContextAccumulator) -> PromptSection | None:
    knowledge = ctx.context_flow.knowledge
    if not knowledge.entities:
        return None
    labels = ", ".join(e.label for e in knowledge.entities[:TOP_ENTITY_LABELS])
    lines = [
        "Knowledge Graph Context:",
        f"- {len(knowledge.entities)} relevant entities",
        f"- Impact Score: {knowledge.impact_score}/100",
        f"- Key Entities: {labels}",
    ]
    if knowledge.relationships:
        lines.append(f"- {len(knowledge.relationships)} relationships mapped")
    return PromptSection("knowledge", "\n".join(lines))


def memory_section(step: AgentStep, ctx: ContextAccumulator) -> PromptSection | None:
    memory = ctx.context_flow.memory
    if not memory.summary:
        return None
    text = f"Agent Long-Term Memory:\n{memory.summary}"
    if memory.key_learnings:
        learnings = "\n".join(
            f"{i}. {learning}" for i, learning in enumerate(memory.key_learnings, start=1)
        )
        text += f"\n\nKey Learnings from Past:\n{learnings}"
    return PromptSection("memory", text)


def profile_section(step: AgentStep, ctx: ContextAccumulator) -> PromptSection | None:
    profile = ctx.context_flow.profile
    if not profile:
        return None
    heading = (
        "Stakeholder Behavioral Profile:"
        if BEHAVIORAL_PROFILE in step.input_sources
        else "User Profile:"
    )
    lines = [heading, f"- Archetype: {profile.get('archetype') or 'unknown'}"]
    if profile.get("confidence") is not None:
        lines.append(f"- Archetype Confidence: {profile['confidence']}")
    if profile.get("communication_style"):
        lines.append(f"- Communication Style: {profile['communication_style']}")
    lines.append(f"- Decision Style: {profile.get('decision_style') or 'adaptive'}")
    if profile.get("engagement_patterns"):
        lines.append(f"- Engagement Patterns: {', '.join(profile['engagement_patterns'])}")
    return PromptSection("profile", "\n".join(lines))


def history_section(step: AgentStep, ctx: ContextAccumulator) -> PromptSection | None:
    strategies = ctx.context_flow.similar_strategies
    if not strategies:
        return None
    lines = ["Relevant Past Strategies:"]
    for i, strategy in enumerate(strategies, start=1):
        roi = "n/a" if strategy.roi_estimate is None else f"{strategy.roi_estimate:g}%"
        lines.append(f"{i}. {strategy.title} ({strategy.category or 'uncategorised'}, ROI: {roi})")
    return PromptSection("history", "\n".join(lines))


def prior_outputs_section(step: AgentStep, ctx: ContextAccumulator) -> PromptSection | None:
    if ALL_PREVIOUS_OUTPUTS in step.input_sources:
        outputs = ctx.all_outputs()
        if not outputs:
            return None
        joined = OUTPUT_SEPARATOR.join(f"{key}:\n{text}" for key, text in outputs)
        return PromptSection("prior_outputs", f"--- Previous Analysis ---\n{joined}")

    if PREVIOUS_AGENT_OUTPUT in step.input_sources and ctx.previous_agent_output:
        return PromptSection(
            "prior_outputs",
            f"--- Previous Agent Output ---\n{ctx.previous_agent_output}",
        )
    return None


def routing_section(step: AgentStep, ctx: ContextAccumulator) -> PromptSection | None:
    return PromptSection("routing", _ROUTING_INSTRUCTION) if step.can_propose_alternatives else None


def request_section(step: AgentStep, ctx: ContextAccumulator) -> PromptSection:
    return PromptSection("request", f"--- User Request ---\n{ctx.user_message}")


SECTION_BUILDERS: tuple[SectionBuilder, ...] = (
    role_section,
    capabilities_section,
    knowledge_section,
    memory_section,
    profile_section,
    history_section,
    prior_outputs_section,
    routing_section,
    request_section,
)


def build_sections(
    step: AgentStep,
    ctx: ContextAccumulator,
    builders: Iterable[SectionBuilder] = SECTION_BUILDERS,
) -> list[PromptSection]:
    sections = (build(step, ctx) for build in builders)
    return [section for section in sections if section is not None]


def render_prompt(sections: Iterable[PromptSection]) -> str:
    return "\n\n".join(section.text for section in sections)


def build_prompt(step: AgentStep, ctx: ContextAccumulator) -> str:
    return render_prompt(build_sections(step, ctx))
