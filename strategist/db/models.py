# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# Tables backing the orchestrator's collaborator contracts.
#
# SCHEMA OVERVIEW:
#
#   Entity store (read by the context assembler, written by memory storage)
#   ┌────────────────────────┐     ┌──────────────────────────────┐
#   │ behavioral_profiles    │──1:N▶│ engagement_records           │
#   └────────────────────────┘     └──────────────────────────────┘
#   ┌────────────────────────┐     ┌──────────────────────────────┐
#   │ knowledge_graph_nodes  │◀─N:2─│ knowledge_graph_relationships│
#   └────────────────────────┘     └──────────────────────────────┘
#   ┌────────────────────────┐     ┌──────────────────────────────┐
#   │ agent_memories         │     │ strategies                   │
#   └────────────────────────┘     └──────────────────────────────┘
#
#   Agent conversations (written by the invoker and the responder)
#   ┌────────────────────────┐     ┌──────────────────────────────┐
#   │ agent_conversations    │──1:N▶│ agent_messages               │
#   └────────────────────────┘     └──────────────────────────────┘
#
#   Telemetry & auth
#   orchestration_runs, api_keys
#
# DESIGN DECISIONS:
#
# 1. String UUID primary keys for entity-store records. Records are
#    addressed by id through the generic EntityStore contract and ids are
#    handed to API callers (user_profile_id).
#
# 2. `created_date` on every entity-store table: the store contract sorts
#    by it ("-created_date" = newest first).
#
# 3. Integer autoincrement ids on agent_messages: message order within a
#    conversation is the id order.
# =============================================================================

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    inspect,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


def row_to_dict(obj: Base) -> dict[str, Any]:
    """
    Plain-dict view of an ORM row keyed by column name.

    Column name, not attribute key: `metadata_` is exposed as "metadata".
    Datetimes are rendered as ISO-8601 strings.
    """
    record: dict[str, Any] = {}
    for attr in inspect(obj).mapper.column_attrs:
        value = getattr(obj, attr.key)
        if isinstance(value, datetime):
            value = value.isoformat()
        record[attr.columns[0].name] = value
    return record


def column_attribute_map(model: type[Base]) -> dict[str, str]:
    """Column name → attribute key, for building rows from record dicts."""
    return {
        attr.columns[0].name: attr.key
        for attr in inspect(model).column_attrs
    }


# =============================================================================
# Entity Store Tables
# =============================================================================


class BehavioralProfile(Base):
    """
    A client's behavioral/preference profile.

    Looked up by id, or by client_name matching the requesting user's
    display name.
    """

    __tablename__ = "behavioral_profiles"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    client_name: Mapped[str] = mapped_column(String(300), nullable=False)

    # e.g. "analytical_operator", "visionary_founder"
    primary_archetype_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True,
    )
    archetype_confidence: Mapped[float | None] = mapped_column(
        Float, nullable=True,
    )

    # {"style": "concise", "detail_level": "high", ...}
    communication_preferences: Mapped[dict | None] = mapped_column(
        JSONB, nullable=True, default=dict,
    )

    created_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    updated_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    engagements: Mapped[list["EngagementRecord"]] = relationship(
        "EngagementRecord",
        back_populates="profile",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return (
            f"<BehavioralProfile(id={self.id}, client='{self.client_name}', "
            f"archetype={self.primary_archetype_id})>"
        )


class EngagementRecord(Base):
    """One recorded interaction with a profiled client."""

    __tablename__ = "engagement_records"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    behavioral_profile_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("behavioral_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )

    # e.g. "meeting", "email", "workshop"
    interaction_type: Mapped[str] = mapped_column(String(100), nullable=False)
    details: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    created_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    profile: Mapped["BehavioralProfile"] = relationship(
        "BehavioralProfile", back_populates="engagements",
    )


engagement_profile_idx = Index(
    "idx_engagement_profile_created",
    EngagementRecord.behavioral_profile_id,
    EngagementRecord.created_date,
)


class KnowledgeGraphNode(Base):
    """A typed entity in the shared knowledge graph."""

    __tablename__ = "knowledge_graph_nodes"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)

    # e.g. "market", "industry", "company", "competitor", "technology"
    node_type: Mapped[str] = mapped_column(String(100), nullable=False)
    label: Mapped[str] = mapped_column(String(500), nullable=False)
    properties: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    created_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    def __repr__(self) -> str:
        return f"<KnowledgeGraphNode(id={self.id}, type={self.node_type}, label='{self.label}')>"


knowledge_node_type_idx = Index("idx_knowledge_node_type", KnowledgeGraphNode.node_type)


class KnowledgeGraphRelationship(Base):
    """A directed, typed edge between two knowledge graph nodes."""

    __tablename__ = "knowledge_graph_relationships"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    from_node_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("knowledge_graph_nodes.id", ondelete="CASCADE"),
        nullable=False,
    )
    to_node_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("knowledge_graph_nodes.id", ondelete="CASCADE"),
        nullable=False,
    )
    relationship_type: Mapped[str] = mapped_column(String(100), nullable=False)
    strength: Mapped[float | None] = mapped_column(Float, nullable=True)
    properties: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    created_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )


class Strategy(Base):
    """
    A recorded strategy. The newest ones in the request's category are
    shown to agents as past strategies.
    """

    __tablename__ = "strategies"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(500), nullable=False)

    # Framework name, e.g. "SWOT", "Porter", "TAM"
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    roi_estimate: Mapped[float | None] = mapped_column(Float, nullable=True)  # percent

    created_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Strategy(id={self.id}, category={self.category}, title='{self.title}')>"


strategy_category_created_idx = Index(
    "idx_strategy_category_created", Strategy.category, Strategy.created_date,
)


class AgentMemory(Base):
    """
    Long-term memory written after a successful agent step.

    Recalled before planning for the request's primary agent and user.
    """

    __tablename__ = "agent_memories"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    agent_name: Mapped[str] = mapped_column(String(100), nullable=False)
    user_email: Mapped[str] = mapped_column(String(320), nullable=False)
    conversation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # "insight", "pattern", "strategy", "success"
    memory_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="insight",
    )
    intent: Mapped[str | None] = mapped_column(String(100), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    relevance_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    # "high" when the final response confidence exceeded 80
    outcome_quality: Mapped[str | None] = mapped_column(String(20), nullable=True)

    metadata_: Mapped[dict | None] = mapped_column(
        "metadata", JSONB, nullable=True,
    )

    created_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )


agent_memory_lookup_idx = Index(
    "idx_agent_memory_agent_user_created",
    AgentMemory.agent_name,
    AgentMemory.user_email,
    AgentMemory.created_date,
)


# =============================================================================
# Agent Conversations
# =============================================================================
#
# One conversation per agent step. The invoker writes the user prompt; the
# responder (inline task or Celery worker) appends the assistant reply.
# =============================================================================


class AgentConversation(Base):
    __tablename__ = "agent_conversations"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    agent_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # role, sub_team, frameworks, parent_conversation_id
    metadata_: Mapped[dict | None] = mapped_column(
        "metadata", JSONB, nullable=True,
    )

    created_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    messages: Mapped[list["AgentMessage"]] = relationship(
        "AgentMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="AgentMessage.id",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<AgentConversation(id={self.id}, agent={self.agent_name})>"


class AgentMessage(Base):
    __tablename__ = "agent_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("agent_conversations.id", ondelete="CASCADE"),
        nullable=False,
    )

    # "user" | "assistant"
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    created_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    conversation: Mapped["AgentConversation"] = relationship(
        "AgentConversation", back_populates="messages",
    )


agent_message_conversation_idx = Index(
    "idx_agent_message_conversation",
    AgentMessage.conversation_id,
    AgentMessage.id,
)


# =============================================================================
# Orchestration Runs — Per-Request Telemetry
# =============================================================================
#
# One row per POST /orchestrate, written by a background task after the
# response is sent. Requests that end in an HTTP error are not recorded;
# `error` lists the agent steps that failed within a recorded run.
# =============================================================================


class OrchestrationRun(Base):
    __tablename__ = "orchestration_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_email: Mapped[str] = mapped_column(String(320), nullable=False)
    conversation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_message: Mapped[str] = mapped_column(Text, nullable=False)

    primary_intent: Mapped[str | None] = mapped_column(String(100), nullable=True)
    complexity: Mapped[str | None] = mapped_column(String(20), nullable=True)
    execution_mode: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Ordered agent ids as executed, including sub-team and alternative steps
    agents_used: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    total_steps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    successful_steps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    replanning_events: Mapped[int | None] = mapped_column(Integer, nullable=True)
    knowledge_entities_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
    memories_retrieved: Mapped[int | None] = mapped_column(Integer, nullable=True)
    confidence: Mapped[int | None] = mapped_column(Integer, nullable=True)

    total_latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<OrchestrationRun(id={self.id}, intent={self.primary_intent}, "
            f"latency={self.total_latency_ms}ms)>"
        )


orchestration_run_created_idx = Index(
    "idx_orchestration_run_user_created",
    OrchestrationRun.user_email,
    OrchestrationRun.created_at,
)


# =============================================================================
# API Keys
# =============================================================================
#
# Bearer credentials, SHA-256 hashed. Each key is issued to one user; the
# user's display name doubles as the behavioral-profile lookup key.
# =============================================================================


class ApiKey(Base):
    """
    An API key bound to a requesting user.

    The raw key is only returned once at creation time.
    """

    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Human-readable label (e.g., "strategy-desk", "board-portal")
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # First 8 chars of the key for identification in logs
    key_prefix: Mapped[str] = mapped_column(String(20), nullable=False)

    # SHA-256 hash of the full key — never store plaintext
    key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    user_email: Mapped[str] = mapped_column(String(320), nullable=False)
    user_full_name: Mapped[str] = mapped_column(String(300), nullable=False)
    user_role: Mapped[str] = mapped_column(String(50), nullable=False, default="user")

    # Allowed scopes: ["orchestrate", ...]. Null or empty = all scopes
    scopes: Mapped[list | None] = mapped_column(JSONB, nullable=True, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ApiKey(id={self.id}, name='{self.name}', "
            f"prefix='{self.key_prefix}', active={self.is_active})>"
        )
