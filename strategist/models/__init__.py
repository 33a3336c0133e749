# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the API, kept separate from the ORM models
# in strategist/db/models.py and the engine types in agents/schemas.py.
# =============================================================================
