# =============================================================================
# LangGraph Orchestrator - Query Pipeline Assembly
# =============================================================================
#
# Wires retrieval and synthesis into a LangGraph StateGraph:
#
#   START ──▶ retrieve ──▶ synthesize ──▶ END
#
# Linear on purpose: every query retrieves, every query synthesizes (the
# synthesizer short-circuits itself when there are no sources). State is a
# plain TypedDict flowing through the pipeline:
#   question -> sources -> answer / structured answer
#
# Collaborators (vector index, membership cache, LLM) are resolved from
# their singletons unless the caller injects them, which is how tests run
# the whole graph without network access.
#
# The graph is compiled once at import and reused by every request.
# =============================================================================

from __future__ import annotations

import logging

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from mr_broker.agents.retriever import Source, retrieve
from mr_broker.agents.synthesizer import StructuredAnswer, synthesize
from mr_broker.services.corpus_cache import CorpusMembershipCache
from mr_broker.services.llm import LLMProvider, get_llm_provider
from mr_broker.services.vectorstore import VectorIndex, get_vector_index

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pipeline State Schema
# ---------------------------------------------------------------------------


class QueryState(TypedDict, total=False):
    """
    State that flows through the graph. total=False so nodes only return
    the keys they update.
    """

    # --- Input (set by caller) ---
    tenant_id: str
    question: str
    top_k: int | None
    structured: bool

    # --- Injected collaborators (not serialisable; no checkpointer is used) ---
    index: VectorIndex | None
    cache: CorpusMembershipCache | None
    llm: LLMProvider | None

    # --- Intermediate ---
    sources: list[Source]

    # --- Output ---
    answer: str
    structured_answer: StructuredAnswer | None
    model: str
    input_tokens: int
    output_tokens: int


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def retrieve_node(state: QueryState) -> dict:
    """Embed, search, dedupe and rank."""
    cache = state.get("cache")
    sources = await retrieve(
        state["tenant_id"],
        state["question"],
        top_k=state.get("top_k"),
        index=state.get("index") or get_vector_index(),
        cache=cache,
        # Without a cache there is no authoritative set to filter against
        filter_enabled=None if cache is not None else False,
    )
    return {"sources": sources}


async def synthesize_node(state: QueryState) -> dict:
    """Generate the cited answer from the ranked sources."""
    sources = state.get("sources", [])
    llm = state.get("llm")
    if llm is None and sources:
        llm = get_llm_provider()

    result = await synthesize(
        state["question"],
        sources,
        structured=state.get("structured", False),
        llm=llm,
    )
    return {
        "answer": result.answer,
        "structured_answer": result.structured,
        "model": result.model,
        "input_tokens": result.input_tokens,
        "output_tokens": result.output_tokens,
    }


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_builder = StateGraph(QueryState)
_builder.add_node("retrieve", retrieve_node)
_builder.add_node("synthesize", synthesize_node)

_builder.add_edge(START, "retrieve")
_builder.add_edge("retrieve", "synthesize")
_builder.add_edge("synthesize", END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def ask(
    tenant_id: str,
    question: str,
    top_k: int | None = None,
    structured: bool = False,
    *,
    index: VectorIndex | None = None,
    cache: CorpusMembershipCache | None = None,
    llm: LLMProvider | None = None,
) -> QueryState:
    """
    Entry point: run the query graph and return the final state.

    Args:
        tenant_id: Tenant whose library is searched.
        question: The user's question.
        top_k: Nearest entries to request from the index.
        structured: Ask for a StructuredAnswer instead of free text.
        index: Vector index override (default: configured singleton).
        cache: Membership cache; None disables the staleness filter.
        llm: LLM override (default: configured singleton).

    Returns:
        The final QueryState with sources, answer and usage.
    """
    initial_state: QueryState = {
        "tenant_id": tenant_id,
        "question": question,
        "top_k": top_k,
        "structured": structured,
        "index": index,
        "cache": cache,
        "llm": llm,
    }

    logger.info(
        "Invoking query graph: tenant=%s, question='%s', structured=%s",
        tenant_id, question[:80], structured,
    )

    result = await graph.ainvoke(initial_state)

    logger.info(
        "Query graph complete: model=%s, sources=%d",
        result.get("model", "n/a"),
        len(result.get("sources", [])),
    )
    return result
