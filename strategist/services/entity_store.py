# =============================================================================
# Entity Store — Typed Record Persistence Contract
# =============================================================================
#
# The orchestrator reads behavioral profiles, engagement records, past
# strategies and knowledge-graph nodes/relationships, and writes agent
# memories, through one narrow contract over plain dicts:
#
#   get(type, id)                               -> record | None
#   filter(type, predicate, sort, limit)        -> [record]
#   create(type, fields)                        -> record
#   update(type, id, fields)                    -> record
#
# `predicate` is an equality mapping ({"client_name": "Ada"}); `sort` is a
# field name, "-" prefixed for descending. Without a sort, records come back
# in listing order (creation order), which callers rely on for stable caps.
#
# ARCHITECTURE:
#   EntityStore (Protocol)
#   ├── SQLEntityStore       — SQLAlchemy async sessions, one per call
#   ├── InMemoryEntityStore  — process-local dicts (demos, tests)
#   └── get_entity_store()   — singleton selected by settings.storage_backend
# =============================================================================

from __future__ import annotations

import itertools
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import select

from strategist.config import settings

logger = logging.getLogger(__name__)

# Entity type names used across the orchestrator
BEHAVIORAL_PROFILE = "BehavioralProfile"
ENGAGEMENT_RECORD = "EngagementRecord"
KNOWLEDGE_NODE = "KnowledgeGraphNode"
KNOWLEDGE_RELATIONSHIP = "KnowledgeGraphRelationship"
AGENT_MEMORY = "AgentMemory"
STRATEGY = "Strategy"


class EntityNotFoundError(LookupError):
    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class EntityStore(Protocol):
    async def get(self, entity_type: str, entity_id: str) -> dict[str, Any] | None:
        ...

    async def filter(
        self,
        entity_type: str,
        predicate: Mapping[str, Any] | None = None,
        sort: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        ...

    async def create(self, entity_type: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        ...

    async def update(
        self, entity_type: str, entity_id: str, fields: Mapping[str, Any],
    ) -> dict[str, Any]:
        ...


def _parse_sort(sort: str | None) -> tuple[str | None, bool]:
    """'-created_date' → ('created_date', True)."""
    if not sort:
        return None, False
    if sort.startswith("-"):
        return sort[1:], True
    return sort, False


# ---------------------------------------------------------------------------
# SQL Backend
# ---------------------------------------------------------------------------


class SQLEntityStore:
    """
    Entity store over the SQLAlchemy models in strategist.db.models.

    Each call opens its own session from the async session factory and
    commits writes explicitly.
    """

    def __init__(self, session_factory=None) -> None:
        if session_factory is None:
            from strategist.db.engine import async_session_factory

            session_factory = async_session_factory
        self._session_factory = session_factory

    @staticmethod
    def _model(entity_type: str):
        from strategist.db import models

        model = {
            BEHAVIORAL_PROFILE: models.BehavioralProfile,
            ENGAGEMENT_RECORD: models.EngagementRecord,
            KNOWLEDGE_NODE: models.KnowledgeGraphNode,
            KNOWLEDGE_RELATIONSHIP: models.KnowledgeGraphRelationship,
            AGENT_MEMORY: models.AgentMemory,
            STRATEGY: models.Strategy,
        }.get(entity_type)
        if model is None:
            raise ValueError(f"Unknown entity type: {entity_type}")
        return model

    @staticmethod
    def _column(model, name: str):
        from strategist.db.models import column_attribute_map

        attr_key = column_attribute_map(model).get(name)
        if attr_key is None:
            raise ValueError(f"{model.__name__} has no field '{name}'")
        return getattr(model, attr_key)

    async def get(self, entity_type: str, entity_id: str) -> dict[str, Any] | None:
        from strategist.db.models import row_to_dict

        model = self._model(entity_type)
        async with self._session_factory() as session:
            row = await session.get(model, entity_id)
            return row_to_dict(row) if row is not None else None

    async def filter(
        self,
        entity_type: str,
        predicate: Mapping[str, Any] | None = None,
        sort: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        from strategist.db.models import row_to_dict

        model = self._model(entity_type)
        stmt = select(model)
        for name, value in (predicate or {}).items():
            stmt = stmt.where(self._column(model, name) == value)

        sort_field, descending = _parse_sort(sort)
        if sort_field:
            column = self._column(model, sort_field)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        else:
            stmt = stmt.order_by(model.created_date.asc(), model.id.asc())

        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [row_to_dict(row) for row in result.scalars().all()]

    async def create(self, entity_type: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        from strategist.db.models import column_attribute_map, row_to_dict

        model = self._model(entity_type)
        attr_map = column_attribute_map(model)
        unknown = set(fields) - set(attr_map)
        if unknown:
            raise ValueError(
                f"{entity_type} has no field(s): {', '.join(sorted(unknown))}"
            )

        row = model(**{attr_map[name]: value for name, value in fields.items()})
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row_to_dict(row)

    async def update(
        self, entity_type: str, entity_id: str, fields: Mapping[str, Any],
    ) -> dict[str, Any]:
        from strategist.db.models import column_attribute_map, row_to_dict

        model = self._model(entity_type)
        attr_map = column_attribute_map(model)
        async with self._session_factory() as session:
            row = await session.get(model, entity_id)
            if row is None:
                raise EntityNotFoundError(entity_type, entity_id)
            for name, value in fields.items():
                if name not in attr_map:
                    raise ValueError(f"{entity_type} has no field '{name}'")
                setattr(row, attr_map[name], value)
            await session.commit()
            await session.refresh(row)
            return row_to_dict(row)


# ---------------------------------------------------------------------------
# In-Memory Backend
# ---------------------------------------------------------------------------


class InMemoryEntityStore:
    """
    Process-local entity store.

    Records are kept per type in creation order. Ties in a sort key are
    broken by creation order (newest first for descending sorts).
    """

    def __init__(self, seed: Mapping[str, list[Mapping[str, Any]]] | None = None) -> None:
        self._records: dict[str, dict[str, dict[str, Any]]] = {}
        self._sequence: dict[tuple[str, str], int] = {}
        self._counter = itertools.count()
        self._ids = itertools.count(1)
        for entity_type, records in (seed or {}).items():
            for record in records:
                self._insert(entity_type, dict(record))

    def _insert(self, entity_type: str, record: dict[str, Any]) -> dict[str, Any]:
        record.setdefault("id", f"{entity_type.lower()}-{next(self._ids)}")
        record.setdefault("created_date", datetime.now(timezone.utc).isoformat())
        self._records.setdefault(entity_type, {})[record["id"]] = record
        self._sequence[(entity_type, record["id"])] = next(self._counter)
        return record

    async def get(self, entity_type: str, entity_id: str) -> dict[str, Any] | None:
        record = self._records.get(entity_type, {}).get(entity_id)
        return dict(record) if record is not None else None

    async def filter(
        self,
        entity_type: str,
        predicate: Mapping[str, Any] | None = None,
        sort: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        predicate = predicate or {}
        matches = [
            record
            for record in self._records.get(entity_type, {}).values()
            if all(record.get(name) == value for name, value in predicate.items())
        ]

        sort_field, descending = _parse_sort(sort)
        if sort_field:
            def sort_key(record: dict[str, Any]) -> tuple:
                value = record.get(sort_field)
                # None sorts before every value
                return (
                    value is not None,
                    value if value is not None else "",
                    self._sequence[(entity_type, record["id"])],
                )

            matches.sort(key=sort_key, reverse=descending)

        if limit is not None:
            matches = matches[:limit]
        return [dict(record) for record in matches]

    async def create(self, entity_type: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        return dict(self._insert(entity_type, dict(fields)))

    async def update(
        self, entity_type: str, entity_id: str, fields: Mapping[str, Any],
    ) -> dict[str, Any]:
        record = self._records.get(entity_type, {}).get(entity_id)
        if record is None:
            raise EntityNotFoundError(entity_type, entity_id)
        record.update(fields)
        return dict(record)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_store: SQLEntityStore | InMemoryEntityStore | None = None


def get_entity_store() -> SQLEntityStore | InMemoryEntityStore:
    """Lazy singleton selected by settings.storage_backend."""
    global _store
    if _store is None:
        if settings.storage_backend == "memory":
            _store = InMemoryEntityStore()
        else:
            _store = SQLEntityStore()
        logger.info("Entity store backend: %s", type(_store).__name__)
    return _store
