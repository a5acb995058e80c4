# =============================================================================
# Agents Package — Reasoning and Query Orchestration
# =============================================================================
#   - prompts.py: Static prompt text for each reasoning stage
#   - reasoner.py: Generate candidate thoughts, evaluate them concurrently,
#     synthesize one answer with citations
#   - orchestrator.py: LangGraph graph — retrieve → generate → evaluate →
#     synthesize
# =============================================================================
