# =============================================================================
# Workers Package - Celery Background Tasks
# =============================================================================
#   - celery_app.py: Celery application configuration
#   - tasks.py: library ingestion task
#
# Ingesting a library means listing a folder tree, extracting every
# document, and embedding every chunk: minutes, not a request's worth.
# The API queues the batch and returns a task id to poll.
# =============================================================================
