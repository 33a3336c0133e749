# =============================================================================
# Strategic Agent Orchestrator
# =============================================================================
# Turns a free-text strategy request into a multi-agent analysis: intent
# classification, behavioral/knowledge/memory context, a planned team of
# specialist agents run in parallel, sequential or hybrid mode, and one
# synthesised response.
#
# Package structure:
#   strategist/
#   ├── api/          → FastAPI route handlers (orchestrate) and dependencies
#   ├── agents/       → Orchestration engine and its LangGraph pipeline
#   ├── db/           → Database engine, sessions and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → LLM providers, entity store, agent conversations, auth
#   └── workers/      → Celery app and the agent reply task
# =============================================================================
