# =============================================================================
# Services Package — Collaborator Adapters
# =============================================================================
#   - llm.py: Multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#     and structured-output invocation
#   - entity_store.py: EntityStore protocol with SQL and in-memory backends
#   - conversations.py: agent conversation primitive and reply generation
#   - auth.py: API key generation, hashing and validation
# =============================================================================
