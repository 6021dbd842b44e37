# =============================================================================
# Market Research Broker
# =============================================================================
# Grounded, cited Q&A over per-tenant market research libraries. Each tenant
# is a Drive folder; its documents are indexed into a namespace of its own
# and every answer cites the reports it was built from.
#
# Package structure:
#   mr_broker/
#   ├── api/          → FastAPI routers (search, slides, libraries, ingest)
#   ├── agents/       → LangGraph query graph (retrieve → synthesize)
#   ├── db/           → SQLAlchemy engines and the pgvector entry table
#   ├── models/       → Pydantic V2 request/response schemas (camelCase wire)
#   ├── services/     → Drive access, extraction, chunking, embeddings,
#   │                    vector index, caches, ingestion, rendering
#   └── workers/      → Celery app and the library ingestion task
# =============================================================================
