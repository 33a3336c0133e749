# =============================================================================
# Context Assembler
# =============================================================================
#
# Best-effort enrichment gathered before planning:
#
#   assemble(user, profile_id?)  → UserContext
#       profile by explicit id, else by client_name == user.full_name;
#       then ≤20 most recent engagement records, engagement patterns and
#       an inferred decision style.
#
#   relevant_entities(intent)    → [KnowledgeEntity]
#       intent-specific node-type filter, listing order kept, capped at 20.
#
#   gather_knowledge(intent)     → KnowledgeContext
#       relevant entities + relationships among them + up to 5 newest past
#       strategies in the first framework's category + impact score.
#
# Every lookup failure is logged and degrades to "no data". Nothing here
# raises into the pipeline.
# =============================================================================

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Any

from strategist.agents.catalog import DEFAULT_ENTITY_TYPE_FILTERS
from strategist.agents.schemas import (
    BehavioralProfile,
    EngagementRecord,
    IntentDescriptor,
    KnowledgeContext,
    KnowledgeEntity,
    KnowledgeRelationship,
    PastStrategy,
    RequestUser,
    UserContext,
)
from strategist.config import settings
from strategist.services.entity_store import (
    BEHAVIORAL_PROFILE,
    ENGAGEMENT_RECORD,
    KNOWLEDGE_NODE,
    KNOWLEDGE_RELATIONSHIP,
    STRATEGY,
    EntityStore,
)

logger = logging.getLogger(__name__)

FREQUENT_INTERACTION_THRESHOLD = 3

# Archetype keyword → decision style, checked in order
_DECISION_STYLES = (
    ("analytical", "data_driven"),
    ("visionary", "intuitive"),
    ("pragmatic", "balanced"),
)


class ContextAssembler:
    """
    Reads user and knowledge context from an entity store.

    Args:
        store: Entity store to read from.
        entity_type_filters: primary_intent → allowed node types. Intents
            not listed keep every node.
        entity_limit: Cap on knowledge entities attached to a plan.
        engagement_limit: Cap on engagement records read per profile.
        strategy_limit: Cap on past strategies attached to a plan.
    """

    def __init__(
        self,
        store: EntityStore,
        entity_type_filters: Mapping[str, frozenset[str]] | None = None,
        entity_limit: int | None = None,
        engagement_limit: int | None = None,
        strategy_limit: int | None = None,
    ) -> None:
        self._store = store
        self._filters = (
            DEFAULT_ENTITY_TYPE_FILTERS
            if entity_type_filters is None
            else entity_type_filters
        )
        self._entity_limit = entity_limit or settings.knowledge_entity_limit
        self._strategy_limit = strategy_limit or settings.past_strategy_limit
        self._engagement_limit = engagement_limit or settings.engagement_history_limit

    # -----------------------------------------------------------------------
    # User context
    # -----------------------------------------------------------------------

    async def assemble(
        self, user: RequestUser, profile_id: str | None = None,
    ) -> UserContext:
        try:
            profile = await self._find_profile(user, profile_id)
            if profile is None:
                return UserContext(user=user)

            records = await self._store.filter(
                ENGAGEMENT_RECORD,
                {"behavioral_profile_id": profile.id},
                sort="-created_date",
                limit=self._engagement_limit,
            )
        except Exception as e:
            logger.warning(
                "User context lookup failed for %s, continuing without "
                "profile: %s",
                user.email, e,
            )
            return UserContext(user=user)

        engagements = tuple(_to_engagement(r) for r in records)
        context = UserContext(
            user=user,
            profile=profile,
            engagements=engagements,
            engagement_patterns=analyze_engagement_patterns(engagements),
            decision_style=infer_decision_style(profile),
        )
        logger.info(
            "User context: profile=%s, archetype=%s, engagements=%d, "
            "decision_style=%s",
            profile.id, profile.archetype_id, len(engagements),
            context.decision_style,
        )
        return context

    async def _find_profile(
        self, user: RequestUser, profile_id: str | None,
    ) -> BehavioralProfile | None:
        if profile_id:
            record = await self._store.get(BEHAVIORAL_PROFILE, profile_id)
            if record is None:
                logger.info("Behavioral profile %s not found", profile_id)
                return None
            return _to_profile(record)

        records = await self._store.filter(
            BEHAVIORAL_PROFILE, {"client_name": user.full_name}, limit=1,
        )
        return _to_profile(records[0]) if records else None

    # -----------------------------------------------------------------------
    # Knowledge
    # -----------------------------------------------------------------------

    async def relevant_entities(self, intent: IntentDescriptor) -> list[KnowledgeEntity]:
        """Filtered, capped entity subset for the intent. Failure → []."""
        try:
            records = await self._store.filter(KNOWLEDGE_NODE)
        except Exception as e:
            logger.warning("Knowledge entity retrieval failed: %s", e)
            return []

        allowed = self._filters.get(intent.primary_intent)
        entities = [
            _to_entity(r)
            for r in records
            if allowed is None or r.get("node_type") in allowed
        ]
        return entities[:self._entity_limit]

    async def past_strategies(self, intent: IntentDescriptor) -> list[PastStrategy]:
        """
        Newest strategies whose category is the intent's first framework.
        Without frameworks the category is not filtered. Failure → [].
        """
        predicate = (
            {"category": intent.frameworks_needed[0]} if intent.frameworks_needed else None
        )
        try:
            records = await self._store.filter(
                STRATEGY, predicate, sort="-created_date", limit=self._strategy_limit,
            )
        except Exception as e:
            logger.warning("Past strategy retrieval failed: %s", e)
            return []
        return [_to_strategy(r) for r in records]

    async def gather_knowledge(self, intent: IntentDescriptor) -> KnowledgeContext:
        entities = await self.relevant_entities(intent)
        relationships = await self._relationships_among(entities) if entities else ()
        strategies = await self.past_strategies(intent)

        knowledge = KnowledgeContext(
            entities=tuple(entities),
            relationships=relationships,
            relevant_strategies=tuple(strategies),
        )
        logger.info(
            "Knowledge context: %d entities, %d relationships, %d past strategies, impact=%d",
            len(entities), len(relationships), len(strategies), knowledge.impact_score,
        )
        return knowledge

    async def _relationships_among(
        self, entities: Sequence[KnowledgeEntity],
    ) -> tuple[KnowledgeRelationship, ...]:
        try:
            records = await self._store.filter(KNOWLEDGE_RELATIONSHIP)
        except Exception as e:
            logger.warning("Knowledge relationship retrieval failed: %s", e)
            return ()

        ids = {entity.id for entity in entities}
        return tuple(
            _to_relationship(r)
            for r in records
            if r.get("from_node_id") in ids and r.get("to_node_id") in ids
        )


# ---------------------------------------------------------------------------
# Derived signals
# ---------------------------------------------------------------------------


def analyze_engagement_patterns(engagements: Sequence[EngagementRecord]) -> tuple[str, ...]:
    """`frequent_<type>` for every interaction type seen at least 3 times."""
    counts = Counter(e.interaction_type for e in engagements)
    return tuple(
        f"frequent_{interaction_type}"
        for interaction_type, count in counts.items()
        if count >= FREQUENT_INTERACTION_THRESHOLD
    )


def infer_decision_style(profile: BehavioralProfile) -> str:
    confidence = profile.archetype_confidence or 0
    archetype = profile.archetype_id or ""
    if confidence > 80:
        for keyword, style in _DECISION_STYLES:
            if keyword in archetype:
                return style
    return "adaptive"


# ---------------------------------------------------------------------------
# Record mapping
# ---------------------------------------------------------------------------


def _to_profile(record: Mapping[str, Any]) -> BehavioralProfile:
    return BehavioralProfile(
        id=record["id"],
        archetype_id=record.get("primary_archetype_id"),
        archetype_confidence=record.get("archetype_confidence"),
        communication_preferences=dict(record.get("communication_preferences") or {}),
    )


def _to_engagement(record: Mapping[str, Any]) -> EngagementRecord:
    return EngagementRecord(
        id=record["id"],
        interaction_type=record.get("interaction_type") or "unknown",
        created_date=record.get("created_date"),
        details=dict(record.get("details") or {}),
    )


def _to_entity(record: Mapping[str, Any]) -> KnowledgeEntity:
    return KnowledgeEntity(
        id=record["id"],
        type=record.get("node_type") or "",
        label=record.get("label") or "",
        properties=dict(record.get("properties") or {}),
    )


def _to_relationship(record: Mapping[str, Any]) -> KnowledgeRelationship:
    return KnowledgeRelationship(
        id=record["id"],
        source_id=record["from_node_id"],
        target_id=record["to_node_id"],
        relationship_type=record.get("relationship_type") or "related_to",
        strength=record.get("strength"),
    )


def _to_strategy(record: Mapping[str, Any]) -> PastStrategy:
    return PastStrategy(
        id=record["id"],
        title=record.get("title") or "",
        category=record.get("category"),
        roi_estimate=record.get("roi_estimate"),
    )
