# =============================================================================
# API Package - FastAPI Route Handlers
# =============================================================================
# Each module defines an APIRouter; main.py assembles them:
#   - search.py: POST /search, grounded Q&A with references and visuals
#   - slides.py: GET /slides/{file_id}/{page}, rendered page images
#   - libraries.py: tenant folders, index stats and namespace purge
#   - ingest.py: queue a library ingestion and poll its status
#   - deps.py: shared-token auth and shared collaborators
# =============================================================================
