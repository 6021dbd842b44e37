# =============================================================================
# Services Package - Business Logic
# =============================================================================
#   - document_store.py: Drive folder listing and file access
#   - extractor.py: text per document type (Docs, Slides, Sheets, PDF)
#   - chunker.py: character chunking with overlap and page numbers
#   - embedder.py: OpenAI embeddings (batch and query)
#   - vectorstore.py: namespaced vector index protocol (pgvector, Chroma)
#   - indexer.py: idempotent per-document upsert
#   - ingestion.py: whole-library batch runner with orphan cleanup
#   - corpus_cache.py: TTL caches of folder membership and tenant folders
#   - recency.py: document dates from names and metadata
#   - llm.py: multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - slides.py: client for the page rasterization service
# =============================================================================
