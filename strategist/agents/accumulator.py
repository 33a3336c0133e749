# =============================================================================
# Context Accumulator
# =============================================================================
#
# The bag of intermediate data agent steps read from and write to:
#
#   outputs                — "<agent_id>_output", "sub_team_<n>_output",
#                            "<agent_id>_alternative" → text, in write order
#   previous_agent_output  — the most recently recorded step output
#   user_message / context_flow / sub_team_task — read-only request context
#
# Sequential execution owns one accumulator and grows it step by step.
# Parallel execution hands every step the same frozen snapshot; writing to
# a snapshot raises FrozenContextError.
# =============================================================================

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from strategist.agents.errors import FrozenContextError
from strategist.agents.schemas import ContextFlow

OUTPUT_SUFFIX = "_output"


class ContextAccumulator:
    def __init__(
        self,
        user_message: str,
        context_flow: ContextFlow | None = None,
        *,
        sub_team_task: str | None = None,
        frozen: bool = False,
        _outputs: Mapping[str, str] | None = None,
        _previous: str | None = None,
    ) -> None:
        self.user_message = user_message
        self.context_flow = context_flow or ContextFlow()
        self.sub_team_task = sub_team_task
        self._frozen = frozen
        self._outputs: dict[str, str] = dict(_outputs or {})
        self._previous = _previous

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def outputs(self) -> Mapping[str, str]:
        return MappingProxyType(self._outputs)

    @property
    def previous_agent_output(self) -> str | None:
        return self._previous

    def get(self, key: str) -> str | None:
        return self._outputs.get(key)

    def all_outputs(self) -> list[tuple[str, str]]:
        """Every `*_output` entry in write order."""
        return [
            (key, text) for key, text in self._outputs.items()
            if key.endswith(OUTPUT_SUFFIX)
        ]

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def _write(self, key: str, text: str) -> None:
        if self._frozen:
            raise FrozenContextError(f"Cannot record '{key}' on a frozen context snapshot")
        self._outputs[key] = text

    def record_output(self, agent_id: str, text: str) -> None:
        """Store a step output and make it the previous_agent_output."""
        self._write(f"{agent_id}{OUTPUT_SUFFIX}", text)
        self._previous = text

    def record_alternative(self, agent_id: str, text: str) -> None:
        self._write(f"{agent_id}_alternative", text)

    def record_sub_team(self, index: int, text: str) -> None:
        self._write(f"sub_team_{index}{OUTPUT_SUFFIX}", text)

    # -----------------------------------------------------------------------
    # Copies
    # -----------------------------------------------------------------------

    def snapshot(self) -> ContextAccumulator:
        """Read-only copy of the current state."""
        return ContextAccumulator(
            self.user_message,
            self.context_flow,
            sub_team_task=self.sub_team_task,
            frozen=True,
            _outputs=self._outputs,
            _previous=self._previous,
        )

    def fork(self, sub_team_task: str | None = None) -> ContextAccumulator:
        """Writable copy, optionally scoped to a sub-team task."""
        return ContextAccumulator(
            self.user_message,
            self.context_flow,
            sub_team_task=sub_team_task if sub_team_task is not None else self.sub_team_task,
            _outputs=self._outputs,
            _previous=self._previous,
        )

    def __repr__(self) -> str:
        return (
            f"<ContextAccumulator(keys={list(self._outputs)}, "
            f"frozen={self._frozen})>"
        )
