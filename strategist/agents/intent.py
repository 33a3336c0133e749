# =============================================================================
# Intent Classifier
# =============================================================================
#
# One structured LLM call turns the user message (plus a short window of
# conversation history) into an IntentDescriptor.
#
# FAILS CLOSED: a provider error, unparseable JSON or a schema violation
# yields IntentDescriptor.default() (general_query / simple / sequential,
# confidence 0). No retries. The request always proceeds to planning.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from strategist.agents.schemas import IntentDescriptor
from strategist.config import settings
from strategist.services.llm import LLMProvider, invoke_llm

logger = logging.getLogger(__name__)

_CLASSIFIER_SYSTEM = (
    "You classify requests sent to a strategic-analysis platform so they "
    "can be routed to specialist agents."
)

_CLASSIFIER_PROMPT = """Multi-dimensional intent analysis for agent routing.

USER MESSAGE: "{user_message}"

CONVERSATION CONTEXT:
{context_window}

Classify the request:
- primary_intent: market_analysis, competitive_intel, financial_modeling,
  tech_assessment, strategic_planning, risk_assessment, fundraising,
  ma_evaluation, behavioral_analysis or general_query
- complexity: simple, moderate, complex or multi_phase
- time_horizon: immediate, short_term, long_term or ongoing
- stakeholder_level: tactical, managerial, executive or board
- frameworks_needed / modules_needed: analytical frameworks and modules
  the answer should apply
- execution_mode: parallel when the agents can work independently,
  sequential when each builds on the previous one, hybrid for a mix
- decomposable + sub_tasks when the request splits into independent parts
- confidence: 0-100"""


def format_history(
    history: Sequence[Mapping[str, str]],
    window: int | None = None,
    max_chars: int | None = None,
) -> str:
    """
    Render the last `window` messages, each truncated to `max_chars`.

    >>> format_history([{"role": "user", "content": "hello"}])
    '1. user: hello'
    """
    window = settings.intent_history_window if window is None else window
    max_chars = settings.intent_history_max_chars if max_chars is None else max_chars
    recent = list(history)[-window:] if window > 0 else []
    return "\n".join(
        f"{i}. {m.get('role', 'user')}: {(m.get('content') or '')[:max_chars]}"
        for i, m in enumerate(recent, start=1)
    )


async def classify(
    user_message: str,
    recent_history: Sequence[Mapping[str, str]],
    llm: LLMProvider,
) -> IntentDescriptor:
    """
    Classify a request. Never raises.

    Args:
        user_message: The raw user request.
        recent_history: Prior conversation messages ({"role", "content"}),
            oldest first. Only the most recent few are used.
        llm: Provider for the classification call.
    """
    prompt = _CLASSIFIER_PROMPT.format(
        user_message=user_message,
        context_window=format_history(recent_history) or "(none)",
    )

    try:
        intent = await invoke_llm(
            llm, prompt, IntentDescriptor, system=_CLASSIFIER_SYSTEM,
        )
    except Exception as e:
        logger.warning(
            "Intent classification failed, using general_query default: %s: %s",
            type(e).__name__, e,
        )
        return IntentDescriptor.default()

    logger.info(
        "Classified intent: %s (complexity=%s, mode=%s, stakeholder=%s, "
        "confidence=%s)",
        intent.primary_intent, intent.complexity, intent.execution_mode,
        intent.stakeholder_level, intent.confidence,
    )
    return intent
