# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the API. Internal types (Passage, Answer,
# IngestReport) are dataclasses in services/ and agents/; these models are
# the public contract and never expose embeddings.
# =============================================================================
