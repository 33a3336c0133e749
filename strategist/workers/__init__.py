# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
#   - celery_app.py: Celery application configuration
#   - tasks.py: generate_agent_reply, which answers one agent conversation
#
# With agent_dispatch="celery" agent replies are generated on workers, so
# slow LLM calls for many parallel agents do not share the API process.
# =============================================================================
