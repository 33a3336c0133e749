# =============================================================================
# Agents Package — Orchestration Engine
# =============================================================================
#   - intent.py: LLM intent classification with a safe default
#   - context.py: behavioral profile, engagement and knowledge-graph context
#   - memory.py: agent long-term memory recall and storage
#   - planner.py: ExecutionPlan construction from intent and context
#   - executor.py: parallel / sequential / hybrid plan execution
#   - invoker.py: one agent step over the conversation primitive
#   - synthesizer.py: reduction of agent results to one response
#   - orchestrator.py: LangGraph pipeline wiring all of the above
# =============================================================================
