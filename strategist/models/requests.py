# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Shape of data coming INTO the API. FastAPI validates request bodies
# against these models (422 on violation) and publishes them in /docs.
# =============================================================================

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class HistoryMessage(BaseModel):
    """One prior turn of the caller's conversation."""

    role: Literal["user", "assistant", "system"]
    content: str


class OrchestrateRequest(BaseModel):
    """
    Request body for POST /orchestrate.

    Only `user_message` is required. Intent, agents and execution mode are
    chosen by the engine unless `force_agent` pins a single agent.
    """

    user_message: str = Field(
        ...,
        min_length=1,
        max_length=8000,
        description="The free-text request to analyse",
        examples=["Build a competitive analysis for our entry into the EU market"],
    )

    conversation_id: str | None = Field(
        default=None,
        description="Caller's conversation id. Recorded on every agent conversation.",
    )

    # Only the most recent turns are used for intent classification
    conversation_history: list[HistoryMessage] = Field(
        default_factory=list,
        description="Prior turns, oldest first",
    )

    user_profile_id: str | None = Field(
        default=None,
        description="Behavioral profile to adapt to. Looked up by user name if omitted.",
    )

    force_agent: str | None = Field(
        default=None,
        description="Bypass planning and run exactly this agent",
        examples=["market-context-agent"],
    )

    enable_replanning: bool = Field(
        default=True,
        description="Honour ALTERNATIVE_PATH proposals from sequential agents",
    )

    use_memory: bool = Field(
        default=True,
        description="Recall agent memories before planning and store new ones afterwards",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "user_message": "What pricing strategy should we use for the new tier?",
                },
                {
                    "user_message": "Prepare the board presentation on our Q3 strategy",
                    "user_profile_id": "profile-1",
                    "conversation_history": [
                        {"role": "user", "content": "We closed Q3 at 12% growth"},
                    ],
                },
                {
                    "user_message": "Size the APAC opportunity",
                    "force_agent": "market-context-agent",
                    "use_memory": False,
                },
            ]
        }
    )
