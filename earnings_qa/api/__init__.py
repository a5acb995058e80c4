# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - ingest.py: Report range ingestion and status polling
#   - ask.py: Question answering endpoint
# =============================================================================
