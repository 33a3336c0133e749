# =============================================================================
# Orchestration Exceptions
# =============================================================================
#
# Only SynthesisError is allowed to escape the pipeline. Invocation errors
# are raised inside the invoker and converted into failed AgentResults there.
# StructuredOutputError lives with the LLM primitive (services/llm.py).
# =============================================================================


class OrchestrationError(Exception):
    """Base class for orchestration failures."""


class AgentInvocationError(OrchestrationError):
    """An agent conversation could not be created, written or read."""

    def __init__(self, agent_id: str, message: str) -> None:
        super().__init__(f"{agent_id}: {message}")
        self.agent_id = agent_id


class AgentTimeoutError(AgentInvocationError):
    """No agent reply arrived before the per-step deadline."""

    def __init__(self, agent_id: str, deadline_seconds: float) -> None:
        super().__init__(
            agent_id, f"no reply within {deadline_seconds:g}s deadline"
        )
        self.deadline_seconds = deadline_seconds


class FrozenContextError(OrchestrationError):
    """A write was attempted on a read-only context snapshot."""


class SynthesisError(OrchestrationError):
    """The multi-agent synthesis call failed; no answer can be produced."""
