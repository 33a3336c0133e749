# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# With AGENT_DISPATCH=celery, agent replies are generated on workers rather
# than in the API process:
#
# ┌──────────┐     ┌───────┐     ┌──────────────┐     ┌────────────┐
# │ FastAPI  │────▶│ Redis │────▶│ Celery Worker│────▶│ PostgreSQL │
# │ invoker  │     │(broker)│    │ LLM reply    │     │ agent_msgs │
# └──────────┘     └───────┘     └──────────────┘     └────────────┘
#       ▲                                                    │
#       └──────────── polls get_conversation ────────────────┘
#
# The invoker never waits on a Celery result: the reply lands in the
# conversation tables and is picked up by polling. The result backend only
# serves monitoring (Flower).
# =============================================================================

from celery import Celery

from strategist.config import settings

celery_app = Celery(
    "strategist.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # --- Serialization ---
    # JSON only. Task arguments are conversation ids.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Reliability ---
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    # --- Timeouts ---
    # A reply arriving after the invoker's step deadline is useless, so the
    # hard limit sits just above agent_step_deadline_seconds.
    task_soft_time_limit=int(settings.agent_step_deadline_seconds),
    task_time_limit=int(settings.agent_step_deadline_seconds) + 30,

    # --- Results ---
    result_expires=3600,

    include=["strategist.workers.tasks"],
)
