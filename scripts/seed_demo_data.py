#!/usr/bin/env python3
"""
Seed a demo behavioral profile and knowledge graph.

Creates one profile for the local default user (so board-level requests get
a context-adapter step), a handful of engagement records, and a small
market/competitor graph that market_analysis and competitive_intel requests
will pick up, plus a few past strategies filed under TAM and Porter.
All data is synthetic.

Usage:
    STORAGE_BACKEND=sql uv run python scripts/seed_demo_data.py
"""

import asyncio

from strategist.config import settings
from strategist.db.engine import async_engine
from strategist.db.models import Base
from strategist.services.entity_store import (
    BEHAVIORAL_PROFILE,
    ENGAGEMENT_RECORD,
    KNOWLEDGE_NODE,
    KNOWLEDGE_RELATIONSHIP,
    STRATEGY,
    SQLEntityStore,
)

NODES = [
    ("market", "EU mid-market SaaS", {"size_usd_bn": 4.1, "growth_pct": 18}),
    ("industry", "B2B workflow automation", {}),
    ("company", "Acme Workflows", {"role": "us"}),
    ("competitor", "Globex Flow", {"share_pct": 22}),
    ("competitor", "Initech Ops", {"share_pct": 15}),
    ("technology", "LLM document extraction", {"maturity": "early majority"}),
]

# (from label, to label, type, strength)
RELATIONSHIPS = [
    ("Acme Workflows", "EU mid-market SaaS", "targets", 0.8),
    ("Globex Flow", "EU mid-market SaaS", "competes_in", 0.9),
    ("Initech Ops", "EU mid-market SaaS", "competes_in", 0.6),
    ("EU mid-market SaaS", "B2B workflow automation", "part_of", 1.0),
    ("Acme Workflows", "LLM document extraction", "adopts", 0.5),
]


# (title, category, roi_estimate %)
STRATEGIES = [
    ("DACH-first EU expansion", "TAM", 24.0),
    ("Usage-based pricing pilot", "Porter", 11.5),
    ("Partner-led channel in Nordics", "TAM", 7.0),
]


async def seed() -> None:
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    store = SQLEntityStore()

    profile = await store.create(BEHAVIORAL_PROFILE, {
        "client_name": settings.default_user_name,
        "primary_archetype_id": "analytical_leader",
        "archetype_confidence": 86,
        "communication_preferences": {"style": "data-heavy, short"},
    })
    for interaction_type in ("meeting", "meeting", "meeting", "email", "review"):
        await store.create(ENGAGEMENT_RECORD, {
            "behavioral_profile_id": profile["id"],
            "interaction_type": interaction_type,
        })

    ids: dict[str, str] = {}
    for node_type, label, properties in NODES:
        node = await store.create(KNOWLEDGE_NODE, {
            "node_type": node_type, "label": label, "properties": properties,
        })
        ids[label] = node["id"]

    for source, target, relationship_type, strength in RELATIONSHIPS:
        await store.create(KNOWLEDGE_RELATIONSHIP, {
            "from_node_id": ids[source],
            "to_node_id": ids[target],
            "relationship_type": relationship_type,
            "strength": strength,
        })

    for title, category, roi_estimate in STRATEGIES:
        await store.create(STRATEGY, {
            "title": title, "category": category, "roi_estimate": roi_estimate,
        })

    print(f"Profile {profile['id']} for '{settings.default_user_name}'")
    print(f"{len(NODES)} knowledge nodes, {len(RELATIONSHIPS)} relationships")
    print(f"{len(STRATEGIES)} past strategies")


if __name__ == "__main__":
    asyncio.run(seed())
