# =============================================================================
# Models Package - Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the API, separate from the index entry table
# (mr_broker/db/models.py). Fields are snake_case in Python and camelCase on
# the wire.
# =============================================================================
