# =============================================================================
# Quarterly Earnings Q&A
# =============================================================================
# Ingests a company's quarterly earnings reports and answers questions over
# them with a three-stage reasoning pass (generate → evaluate → synthesize).
#
# Package structure:
#   earnings_qa/
#   ├── api/          → FastAPI route handlers (ingest, ask)
#   ├── agents/       → Reasoner stages, prompts and the LangGraph query graph
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Fetching, extraction, chunking, embedding, indexing,
#   │                    vector stores and LLM providers
#   └── workers/      → Celery task definitions and configuration
# =============================================================================
