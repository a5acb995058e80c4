# =============================================================================
# Services Package — Business Logic
# =============================================================================
#   - fetcher.py: Source descriptors and concurrent, start-spaced fetching
#   - rate_limiter.py: Minimum spacing between request start times
#   - extractor.py: Report body extraction from HTML (BeautifulSoup)
#   - chunker.py: Token-bounded passages with overlap (tiktoken)
#   - embedder.py: OpenAI or local hashing embeddings
#   - vectorstore.py: Vector store protocol (in-memory, Chroma)
#   - indexer.py: Batched embed-and-upsert, similarity search
#   - ingestion.py: Fetch → split → index pipeline and its report
#   - llm.py: Multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
# =============================================================================
