# =============================================================================
# Database Package
# =============================================================================
# Used only when VECTORSTORE_TYPE=pgvector.
#
# Key exports:
#   - engine.py: async engine (queries) and sync engine (Celery ingestion)
#   - models.py: IndexEntryRow, one row per chunk, scoped by namespace
# =============================================================================
