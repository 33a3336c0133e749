# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - orchestrate.py: POST /orchestrate, run-metric persistence
#   - deps.py: API-key authentication and orchestration services
# =============================================================================
