# =============================================================================
# Plan Executor
# =============================================================================
#
# Runs an ExecutionPlan and returns one AgentResult per step invocation.
# Never raises: failed steps are recorded and execution moves on.
#
# MODES:
#   parallel   — every step gets the same frozen snapshot and runs
#                concurrently; nothing is accumulated.
#   sequential — steps run in order; a successful output is recorded as
#                <agent_id>_output and previous_agent_output before the
#                next step starts.
#   hybrid     — the plan is cut into waves, a new wave starting at each
#                step that depends on prior outputs. A wave runs
#                concurrently from a snapshot; its successes are recorded
#                in plan order before the next wave.
#
# Concurrent dispatch is bounded by max_parallel_agents.
#
# Sub-teams run concurrently before the main steps. Their joined outputs
# are recorded as sub_team_<n>_output, except in parallel mode where the
# main steps only ever see the initial snapshot.
#
# Adaptive re-planning (sequential mode only): a successful step that
# proposes ALTERNATIVE_PATH to a known agent, with confidence above the
# threshold, gets one extra "alternative" step right after it.
#
# STEP STATES: queued → running → completed | failed, reported through
# the optional on_transition callback.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Collection, Sequence
from dataclasses import replace
from typing import Literal

from strategist.agents.accumulator import ContextAccumulator
from strategist.agents.invoker import AgentInvoker
from strategist.agents.schemas import AgentResult, AgentStep, ExecutionPlan, SubTeam
from strategist.config import settings

logger = logging.getLogger(__name__)

StepState = Literal["queued", "running", "completed", "failed"]
TransitionCallback = Callable[[AgentStep, StepState], None]


def split_into_waves(steps: Sequence[AgentStep]) -> list[list[AgentStep]]:
    """
    Hybrid-mode waves: a new wave starts at every dependent step.

    [A(user), B(previous), C(user)] → [[A], [B, C]]
    """
    waves: list[list[AgentStep]] = []
    for step in steps:
        if not waves or step.depends_on_prior_outputs:
            waves.append([step])
        else:
            waves[-1].append(step)
    return waves


class PlanExecutor:
    """
    Args:
        invoker: Runs individual steps.
        max_parallel: Bound on concurrently running invocations.
        enable_replanning: Honour ALTERNATIVE_PATH proposals (sequential).
        known_agents: Agents an ALTERNATIVE_PATH may name. Proposals for
            anything else are ignored.
        replanning_threshold: Proposal confidence must exceed this.
        on_transition: Called on every step state change.
    """

    def __init__(
        self,
        invoker: AgentInvoker,
        *,
        max_parallel: int | None = None,
        enable_replanning: bool = True,
        known_agents: Collection[str] = (),
        replanning_threshold: int | None = None,
        on_transition: TransitionCallback | None = None,
    ) -> None:
        self._invoker = invoker
        self._max_parallel = max_parallel or settings.max_parallel_agents
        self._enable_replanning = enable_replanning
        self._known_agents = frozenset(known_agents)
        self._threshold = (
            settings.replanning_confidence_threshold
            if replanning_threshold is None
            else replanning_threshold
        )
        self._on_transition = on_transition

    async def execute(
        self,
        plan: ExecutionPlan,
        user_message: str,
        conversation_ref: str | None = None,
    ) -> list[AgentResult]:
        run = _PlanRun(self, plan, user_message, conversation_ref)
        return await run.execute()

    # -----------------------------------------------------------------------
    # Re-planning
    # -----------------------------------------------------------------------

    def alternative_step(self, step: AgentStep, result: AgentResult) -> AgentStep | None:
        proposal = result.alternative
        if not (self._enable_replanning and result.success and proposal):
            return None
        if not step.can_propose_alternatives:
            return None
        if proposal.confidence <= self._threshold:
            return None
        if proposal.agent_id not in self._known_agents:
            logger.info(
                "Ignoring ALTERNATIVE_PATH from %s to unknown agent %s",
                step.agent_id, proposal.agent_id,
            )
            return None
        logger.info(
            "Re-planning: %s proposed %s (%s)",
            step.agent_id, proposal.agent_id, proposal.reason,
        )
        return replace(
            step,
            agent_id=proposal.agent_id,
            role="alternative",
            can_propose_alternatives=False,
        )


class _PlanRun:
    """State for one execute() call."""

    def __init__(
        self,
        executor: PlanExecutor,
        plan: ExecutionPlan,
        user_message: str,
        conversation_ref: str | None,
    ) -> None:
        self._executor = executor
        self._plan = plan
        self._conversation_ref = conversation_ref
        self._ctx = ContextAccumulator(user_message, plan.context_flow)
        self._semaphore = asyncio.Semaphore(executor._max_parallel)
        # Keyed by identity: a plan may repeat an agent with the same role
        self._step_index = {id(step): i for i, step in enumerate(plan.steps)}

    def _transition(self, step: AgentStep, state: StepState) -> None:
        callback = self._executor._on_transition
        if callback is None:
            return
        try:
            callback(step, state)
        except Exception:
            logger.exception("Step transition callback failed for %s", step.agent_id)

    async def execute(self) -> list[AgentResult]:
        plan = self._plan
        logger.info(
            "Executing plan: mode=%s, steps=%d, sub_teams=%d",
            plan.mode, len(plan.steps), len(plan.sub_teams),
        )
        for team in plan.sub_teams:
            for step in team.steps:
                self._transition(step, "queued")
        for step in plan.steps:
            self._transition(step, "queued")

        results: list[AgentResult] = []
        if plan.sub_teams:
            results.extend(await self._run_sub_teams(plan.sub_teams))

        if plan.mode == "parallel":
            results.extend(await self._run_concurrently(plan.steps, self._ctx.snapshot()))
        elif plan.mode == "hybrid":
            results.extend(await self._run_hybrid(plan.steps))
        else:
            results.extend(await self._run_sequential(plan.steps))

        succeeded = sum(1 for r in results if r.success)
        logger.info(
            "Plan executed: %d/%d steps succeeded", succeeded, len(results),
        )
        return results

    async def _invoke(self, step: AgentStep, ctx: ContextAccumulator) -> AgentResult:
        async with self._semaphore:
            self._transition(step, "running")
            result = await self._executor._invoker.invoke(step, ctx, self._conversation_ref)
        index = self._step_index.get(id(step))
        if index is not None:
            result = replace(result, step_index=index)
        self._transition(step, "completed" if result.success else "failed")
        return result

    async def _run_concurrently(
        self, steps: Sequence[AgentStep], snapshot: ContextAccumulator,
    ) -> list[AgentResult]:
        # gather keeps plan order; invoke never raises, so no sibling is cancelled
        return list(await asyncio.gather(*(self._invoke(s, snapshot) for s in steps)))

    async def _run_sequential(self, steps: Sequence[AgentStep]) -> list[AgentResult]:
        results: list[AgentResult] = []
        for step in steps:
            result = await self._invoke(step, self._ctx)
            results.append(result)
            if not (result.success and result.output):
                continue
            self._ctx.record_output(step.agent_id, result.output)

            alternative = self._executor.alternative_step(step, result)
            if alternative is None:
                continue
            self._transition(alternative, "queued")
            alt_result = replace(await self._invoke(alternative, self._ctx), replanned=True)
            results.append(alt_result)
            if alt_result.success and alt_result.output:
                self._ctx.record_alternative(alt_result.agent_id, alt_result.output)
        return results

    async def _run_hybrid(self, steps: Sequence[AgentStep]) -> list[AgentResult]:
        results: list[AgentResult] = []
        for wave in split_into_waves(steps):
            wave_results = await self._run_concurrently(wave, self._ctx.snapshot())
            for step, result in zip(wave, wave_results):
                if result.success and result.output:
                    self._ctx.record_output(step.agent_id, result.output)
            results.extend(wave_results)
        return results

    async def _run_sub_teams(self, teams: Sequence[SubTeam]) -> list[AgentResult]:
        team_results = await asyncio.gather(*(self._run_sub_team(t) for t in teams))

        results: list[AgentResult] = []
        for team, outcome in zip(teams, team_results):
            results.extend(outcome)
            if self._plan.mode == "parallel":
                continue
            joined = "\n\n".join(r.output for r in outcome if r.success and r.output)
            if joined:
                self._ctx.record_sub_team(team.index, joined)
        return results

    async def _run_sub_team(self, team: SubTeam) -> list[AgentResult]:
        team_ctx = self._ctx.fork(sub_team_task=team.task)
        if team.mode == "parallel":
            return await self._run_concurrently(team.steps, team_ctx.snapshot())

        results: list[AgentResult] = []
        for step in team.steps:
            result = await self._invoke(step, team_ctx)
            results.append(result)
            if result.success and result.output:
                team_ctx.record_output(step.agent_id, result.output)
        return results
