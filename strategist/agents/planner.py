# =============================================================================
# Plan Builder
# =============================================================================
#
# Maps an IntentDescriptor (plus context) onto an ExecutionPlan:
#
#   1. Forced agent → one primary step, nothing else.
#   2. primary_intent → 1-3 agents from PlanningConfig.intent_agents
#      (unmapped → default agent).
#   3. First mapped agent is primary ["user_message"]; the rest are
#      supporting ["previous_agent_output"].
#   4. complex / multi_phase → append a synthesizer step
#      ["all_previous_outputs"].
#   5. Behavioral profile + board stakeholder → PREPEND a context_adapter
#      step ["user_message", "behavioral_profile"]; the former first step
#      also consumes "previous_agent_output" (the adaptation).
#   6. Mode from the intent (default sequential). A parallel plan with any
#      step that depends on earlier outputs is promoted to hybrid.
#   7. context_flow: knowledge, profile snippet, capability tags, memories.
#
# Decomposable intents with two or more sub-tasks also get sub-teams, which
# the executor runs before the main steps.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import replace

from strategist.agents.catalog import DEFAULT_PLANNING_CONFIG, PlanningConfig
from strategist.agents.schemas import (
    ALL_PREVIOUS_OUTPUTS,
    BEHAVIORAL_PROFILE,
    PREVIOUS_AGENT_OUTPUT,
    USER_MESSAGE,
    AgentStep,
    ContextFlow,
    ExecutionMode,
    ExecutionPlan,
    IntentDescriptor,
    KnowledgeContext,
    MemoryContext,
    SubTask,
    SubTeam,
    UserContext,
)

logger = logging.getLogger(__name__)

BOARD_STAKEHOLDER = "board"
SYNTHESIS_COMPLEXITIES = frozenset({"complex", "multi_phase"})


def build_plan(
    intent: IntentDescriptor,
    user_context: UserContext,
    knowledge: KnowledgeContext | None = None,
    forced_agent: str | None = None,
    config: PlanningConfig = DEFAULT_PLANNING_CONFIG,
    memory: MemoryContext | None = None,
) -> ExecutionPlan:
    """
    Build the execution plan for one request.

    Args:
        intent: Classified intent.
        user_context: Requesting user's context (profile may be None).
        knowledge: Filtered knowledge context for the plan's context_flow.
        forced_agent: When set, the plan is exactly one primary step for
            this agent and every other rule is skipped.
        config: Intent → agent tables and special agent ids.
        memory: Recalled agent memories for the context_flow.
    """
    if forced_agent:
        logger.info("Forced agent plan: %s", forced_agent)
        return ExecutionPlan(
            mode="sequential",
            steps=(AgentStep(forced_agent, "primary", (USER_MESSAGE,)),),
        )

    frameworks = intent.frameworks_needed
    modules = intent.modules_needed

    steps = [
        AgentStep(
            agent_id=agent_id,
            role="primary" if i == 0 else "supporting",
            input_sources=(USER_MESSAGE,) if i == 0 else (PREVIOUS_AGENT_OUTPUT,),
            frameworks=frameworks,
            modules=modules,
            can_propose_alternatives=True,
        )
        for i, agent_id in enumerate(config.agents_for(intent.primary_intent))
    ]

    if intent.complexity in SYNTHESIS_COMPLEXITIES:
        steps.append(AgentStep(
            agent_id=config.synthesizer_agent,
            role="synthesizer",
            input_sources=(ALL_PREVIOUS_OUTPUTS,),
            frameworks=config.synthesizer_frameworks,
        ))

    if user_context.profile is not None and intent.stakeholder_level == BOARD_STAKEHOLDER:
        first = steps[0]
        if PREVIOUS_AGENT_OUTPUT not in first.input_sources:
            steps[0] = replace(
                first, input_sources=first.input_sources + (PREVIOUS_AGENT_OUTPUT,),
            )
        steps.insert(0, AgentStep(
            agent_id=config.context_adapter_agent,
            role="context_adapter",
            input_sources=(USER_MESSAGE, BEHAVIORAL_PROFILE),
        ))

    mode = resolve_mode(intent.execution_mode or "sequential", steps)

    plan = ExecutionPlan(
        mode=mode,
        steps=tuple(steps),
        context_flow=ContextFlow(
            knowledge=knowledge or KnowledgeContext(),
            profile=user_context.profile_snippet(),
            capability_tags=intent.required_capability_tags,
            memory=memory or MemoryContext(),
        ),
        sub_teams=build_sub_teams(intent, config),
    )
    logger.info(
        "Execution plan: mode=%s, steps=%s, sub_teams=%d",
        plan.mode, plan.agent_ids, len(plan.sub_teams),
    )
    return plan


def resolve_mode(requested: ExecutionMode, steps: list[AgentStep]) -> ExecutionMode:
    """
    Parallel plans cannot deliver prior outputs; promote those to hybrid.
    """
    if requested != "parallel":
        return requested
    dependent = [s.agent_id for s in steps if s.depends_on_prior_outputs]
    if dependent:
        logger.warning(
            "Parallel plan has steps depending on prior outputs (%s); "
            "promoting to hybrid",
            ", ".join(dependent),
        )
        return "hybrid"
    return requested


def build_sub_teams(
    intent: IntentDescriptor,
    config: PlanningConfig = DEFAULT_PLANNING_CONFIG,
) -> tuple[SubTeam, ...]:
    if not intent.decomposable or len(intent.sub_tasks) < 2:
        return ()
    return tuple(
        _sub_team(index, sub_task, config)
        for index, sub_task in enumerate(intent.sub_tasks)
    )


def select_agents_for_task(task: str, config: PlanningConfig) -> list[str]:
    """Keyword match on the sub-task text; no match → default agent."""
    text = task.lower()
    agents = [agent for keyword, agent in config.sub_task_keywords if keyword in text]
    return list(dict.fromkeys(agents)) or [config.default_agent]


def _sub_team(index: int, sub_task: SubTask, config: PlanningConfig) -> SubTeam:
    mode: ExecutionMode = "sequential" if sub_task.complexity == "complex" else "parallel"
    steps = tuple(
        AgentStep(
            agent_id=agent_id,
            role="specialist",
            input_sources=(
                (USER_MESSAGE, PREVIOUS_AGENT_OUTPUT)
                if mode == "sequential" and i > 0
                else (USER_MESSAGE,)
            ),
            sub_team=index,
        )
        for i, agent_id in enumerate(select_agents_for_task(sub_task.task, config))
    )
    return SubTeam(index=index, task=sub_task.task, mode=mode, steps=steps)

