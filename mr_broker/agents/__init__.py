# =============================================================================
# Agents Package - LangGraph Query Graph
# =============================================================================
#   - orchestrator.py: two-node graph, START → retrieve → synthesize → END
#   - retriever.py: embed the question, search the tenant namespace
#     (restricted to documents still in the folder), dedupe, rank by recency
#   - synthesizer.py: cited answer from the ranked sources, free text or
#     structured (headline, supporting bullets, quotes)
# =============================================================================
