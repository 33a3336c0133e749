# =============================================================================
# Unit Tests — Plan Executor
# =============================================================================
#
# A recording invoker stands in for the conversation round-trip: it builds
# the real prompt for every step, remembers it, and returns a scripted
# reply or failure. That makes the accumulator visibility rules (what each
# step's prompt contains) directly assertable.
# =============================================================================

from __future__ import annotations

import asyncio

from strategist.agents.executor import PlanExecutor, split_into_waves
from strategist.agents.invoker import detect_alternative_path
from strategist.agents.prompts import build_prompt
from strategist.agents.schemas import AgentResult, AgentStep, ExecutionPlan, SubTeam


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class RecordingInvoker:
    """
    Args:
        replies: agent_id → output text, or an Exception to fail the step.
            Agents not listed reply "<agent_id> says hi".
        delay: Seconds each invocation takes.
    """

    def __init__(self, replies=None, delay: float = 0):
        self.replies = replies or {}
        self.delay = delay
        self.prompts: dict[str, str] = {}
        self.order: list[str] = []
        self.active = 0
        self.max_active = 0

    async def invoke(self, step, ctx, conversation_ref=None):
        self.prompts[step.agent_id] = build_prompt(step, ctx)
        self.order.append(step.agent_id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            reply = self.replies.get(step.agent_id, f"{step.agent_id} says hi")
        finally:
            self.active -= 1

        if isinstance(reply, Exception):
            return AgentResult(step.agent_id, step.role, success=False, error=str(reply),
                               sub_team=step.sub_team)
        return AgentResult(
            step.agent_id, step.role, success=True, output=reply,
            sub_team=step.sub_team, alternative=detect_alternative_path(reply),
        )


def _primary(agent_id):
    return AgentStep(agent_id, "primary", ("user_message",), can_propose_alternatives=True)


def _supporting(agent_id):
    return AgentStep(agent_id, "supporting", ("previous_agent_output",), can_propose_alternatives=True)


KNOWN = frozenset({"a", "b", "c", "financial-model-agent"})


def _executor(invoker, **kwargs) -> PlanExecutor:
    kwargs.setdefault("known_agents", KNOWN)
    return PlanExecutor(invoker, **kwargs)


# ---------------------------------------------------------------------------
# Sequential
# ---------------------------------------------------------------------------


class TestSequential:
    def test_step_sees_previous_output(self):
        invoker = RecordingInvoker({"a": "ALPHA-OUTPUT", "b": "BETA-OUTPUT"})
        plan = ExecutionPlan("sequential", (_primary("a"), _supporting("b"), _supporting("c")))

        results = _run(_executor(invoker).execute(plan, "question"))

        assert [r.agent_id for r in results] == ["a", "b", "c"]
        assert "ALPHA-OUTPUT" in invoker.prompts["b"]
        assert "BETA-OUTPUT" in invoker.prompts["c"]
        assert "ALPHA-OUTPUT" not in invoker.prompts["c"]

    def test_failed_step_skipped_and_execution_continues(self):
        invoker = RecordingInvoker({"a": "ALPHA-OUTPUT", "b": RuntimeError("boom")})
        plan = ExecutionPlan("sequential", (_primary("a"), _supporting("b"), _supporting("c")))

        results = _run(_executor(invoker).execute(plan, "question"))

        assert [r.success for r in results] == [True, False, True]
        assert results[1].error == "boom"
        # c still sees a's output, since b recorded nothing
        assert "ALPHA-OUTPUT" in invoker.prompts["c"]

    def test_synthesizer_sees_all_outputs(self):
        invoker = RecordingInvoker({"a": "ALPHA", "b": "BETA"})
        synth = AgentStep("c", "synthesizer", ("all_previous_outputs",))
        plan = ExecutionPlan("sequential", (_primary("a"), _supporting("b"), synth))

        _run(_executor(invoker).execute(plan, "question"))

        assert "a_output:\nALPHA" in invoker.prompts["c"]
        assert "b_output:\nBETA" in invoker.prompts["c"]

    def test_all_failed_returns_all_results(self):
        invoker = RecordingInvoker({"a": RuntimeError("x"), "b": RuntimeError("y")})
        plan = ExecutionPlan("sequential", (_primary("a"), _supporting("b")))

        results = _run(_executor(invoker).execute(plan, "question"))

        assert len(results) == 2
        assert not any(r.success for r in results)


# ---------------------------------------------------------------------------
# Parallel
# ---------------------------------------------------------------------------


class TestParallel:
    def test_parallel_never_passes_outputs(self):
        invoker = RecordingInvoker({"a": "ALPHA-OUTPUT", "b": "BETA-OUTPUT"})
        plan = ExecutionPlan("parallel", (_primary("a"), _supporting("b")))

        results = _run(_executor(invoker).execute(plan, "question"))

        assert [r.agent_id for r in results] == ["a", "b"]
        assert "ALPHA-OUTPUT" not in invoker.prompts["b"]
        assert "Previous Agent Output" not in invoker.prompts["b"]

    def test_steps_run_concurrently(self):
        invoker = RecordingInvoker(delay=0.05)
        plan = ExecutionPlan("parallel", (_primary("a"), _primary("b"), _primary("c")))

        _run(_executor(invoker).execute(plan, "question"))

        assert invoker.max_active == 3

    def test_concurrency_bound(self):
        invoker = RecordingInvoker(delay=0.05)
        plan = ExecutionPlan("parallel", (_primary("a"), _primary("b"), _primary("c")))

        _run(_executor(invoker, max_parallel=2).execute(plan, "question"))

        assert invoker.max_active == 2

    def test_failure_does_not_cancel_siblings(self):
        invoker = RecordingInvoker({"a": RuntimeError("boom")}, delay=0.01)
        plan = ExecutionPlan("parallel", (_primary("a"), _primary("b")))

        results = _run(_executor(invoker).execute(plan, "question"))

        assert [r.success for r in results] == [False, True]


# ---------------------------------------------------------------------------
# Hybrid
# ---------------------------------------------------------------------------


class TestHybrid:
    def test_split_into_waves(self):
        steps = [_primary("a"), _primary("b"), _supporting("c"), _primary("d")]
        waves = split_into_waves(steps)
        assert [[s.agent_id for s in w] for w in waves] == [["a", "b"], ["c", "d"]]

    def test_dependent_wave_sees_earlier_wave(self):
        invoker = RecordingInvoker({"a": "ALPHA", "b": "BETA"})
        synth = AgentStep("c", "synthesizer", ("all_previous_outputs",))
        plan = ExecutionPlan("hybrid", (_primary("a"), _primary("b"), synth))

        results = _run(_executor(invoker).execute(plan, "question"))

        assert [r.agent_id for r in results] == ["a", "b", "c"]
        assert "ALPHA" in invoker.prompts["c"]
        assert "BETA" in invoker.prompts["c"]
        assert "ALPHA" not in invoker.prompts["b"]


# ---------------------------------------------------------------------------
# Adaptive re-planning
# ---------------------------------------------------------------------------


class TestReplanning:
    PROPOSAL = "Base view.\nALTERNATIVE_PATH: financial-model-agent - needs unit economics"

    def test_alternative_step_inserted_after_proposer(self):
        invoker = RecordingInvoker({"a": self.PROPOSAL, "financial-model-agent": "MODEL"})
        plan = ExecutionPlan("sequential", (_primary("a"), _supporting("b")))

        results = _run(_executor(invoker).execute(plan, "question"))

        assert [r.agent_id for r in results] == ["a", "financial-model-agent", "b"]
        assert [r.step_index for r in results] == [0, None, 1]
        alt = results[1]
        assert alt.replanned
        assert alt.role == "alternative"
        assert "[ALTERNATIVE PATH EXECUTION]" in invoker.prompts["financial-model-agent"]
        # The alternative does not replace previous_agent_output
        assert "Base view." in invoker.prompts["b"]

    def test_disabled_replanning_ignores_proposal(self):
        invoker = RecordingInvoker({"a": self.PROPOSAL})
        plan = ExecutionPlan("sequential", (_primary("a"),))

        results = _run(_executor(invoker, enable_replanning=False).execute(plan, "question"))

        assert [r.agent_id for r in results] == ["a"]

    def test_unknown_agent_ignored(self):
        invoker = RecordingInvoker({"a": "ALTERNATIVE_PATH: mystery-agent - why not"})
        plan = ExecutionPlan("sequential", (_primary("a"),))

        results = _run(_executor(invoker).execute(plan, "question"))

        assert [r.agent_id for r in results] == ["a"]

    def test_threshold_must_be_exceeded(self):
        invoker = RecordingInvoker({"a": self.PROPOSAL})
        plan = ExecutionPlan("sequential", (_primary("a"),))

        results = _run(_executor(invoker, replanning_threshold=75).execute(plan, "question"))

        assert len(results) == 1

    def test_parallel_mode_never_replans(self):
        invoker = RecordingInvoker({"a": self.PROPOSAL})
        plan = ExecutionPlan("parallel", (_primary("a"),))

        results = _run(_executor(invoker).execute(plan, "question"))

        assert len(results) == 1


# ---------------------------------------------------------------------------
# Sub-teams and transitions
# ---------------------------------------------------------------------------


class TestSubTeams:
    def _team(self, index, agent_id, task):
        step = AgentStep(agent_id, "specialist", ("user_message",), sub_team=index)
        return SubTeam(index=index, task=task, mode="parallel", steps=(step,))

    def test_sub_team_outputs_feed_sequential_main_steps(self):
        invoker = RecordingInvoker({"a": "TEAM-A", "b": "TEAM-B"})
        synth = AgentStep("c", "synthesizer", ("all_previous_outputs",))
        plan = ExecutionPlan(
            "sequential", (synth,),
            sub_teams=(self._team(0, "a", "market"), self._team(1, "b", "financial")),
        )

        results = _run(_executor(invoker).execute(plan, "question"))

        assert [r.agent_id for r in results] == ["a", "b", "c"]
        assert [r.sub_team for r in results] == [0, 1, None]
        assert [r.step_index for r in results] == [None, None, 0]
        assert "sub_team_0_output:\nTEAM-A" in invoker.prompts["c"]
        assert "[SUB-TEAM: sub_team_1]\nTask: financial" in invoker.prompts["b"]

    def test_sub_team_outputs_not_passed_in_parallel_plan(self):
        invoker = RecordingInvoker({"a": "TEAM-A"})
        plan = ExecutionPlan(
            "parallel", (AgentStep("c", "synthesizer", ("all_previous_outputs",)),),
            sub_teams=(self._team(0, "a", "market"),),
        )

        _run(_executor(invoker).execute(plan, "question"))

        assert "TEAM-A" not in invoker.prompts["c"]


class TestTransitions:
    def test_queued_running_terminal(self):
        events = []
        invoker = RecordingInvoker({"b": RuntimeError("boom")})
        plan = ExecutionPlan("sequential", (_primary("a"), _supporting("b")))

        _run(_executor(
            invoker, on_transition=lambda step, state: events.append((step.agent_id, state)),
        ).execute(plan, "question"))

        assert events == [
            ("a", "queued"), ("b", "queued"),
            ("a", "running"), ("a", "completed"),
            ("b", "running"), ("b", "failed"),
        ]

    def test_callback_errors_do_not_break_execution(self):
        def explode(step, state):
            raise ValueError("listener bug")

        plan = ExecutionPlan("sequential", (_primary("a"),))
        results = _run(_executor(RecordingInvoker(), on_transition=explode).execute(plan, "q"))

        assert results[0].success
