# =============================================================================
# Synthesizer - Grounded, Citation-Mapped Answer Generation
# =============================================================================
#
# Builds ONE prompt from the ranked sources, each labelled with its
# reference number [n], and asks the model to answer only from that
# context, citing claims as [n].
#
# Two response shapes:
#   - unstructured: free text with inline [n] citations
#   - structured:   StructuredAnswer JSON
#       headline   {paragraph, bullets (max 3)}
#       supporting 3-7 bullets close to source wording (max 7)
#       quotes     short verbatim quotes (max 4)
#
# Structured decoding is best effort. The decoder returns a tagged result,
# Parsed(answer) or Fallback(reason); a fallback is logged and becomes an
# empty but valid StructuredAnswer, never a failed request.
#
# Citation hygiene, applied to every text field:
#   - markers outside 1..len(sources) are removed
#   - "[1, 2]" is normalised to "[1][2]"
#   - list items are trimmed of trailing punctuation and whitespace
# superscript_citations() turns [n] into <sup>n</sup> for display.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from mr_broker.agents.retriever import Source
from mr_broker.config import settings
from mr_broker.errors import GenerationServiceError
from mr_broker.services.llm import LLMProvider

logger = logging.getLogger(__name__)

MAX_HEADLINE_BULLETS = 3
MAX_SUPPORTING = 7
MAX_QUOTES = 4

_TRAILING_JUNK = " \t\r\n,;:.-"
_CITATION_RE = re.compile(r"\s*\[(\d+)\]")
_CITATION_GROUP_RE = re.compile(r"\[(\d+(?:\s*,\s*\d+)+)\]")
_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


# ---------------------------------------------------------------------------
# Structured Answer Schema
# ---------------------------------------------------------------------------


def _as_text(value: object) -> object:
    # Models sometimes emit {"text": "..."} objects instead of plain strings
    if isinstance(value, dict):
        return value.get("text", "")
    return value


class Headline(BaseModel):
    paragraph: str = ""
    bullets: list[str] = Field(default_factory=list)

    @field_validator("bullets", mode="before")
    @classmethod
    def _coerce_bullets(cls, value: object) -> object:
        return [_as_text(v) for v in value] if isinstance(value, list) else value


class StructuredAnswer(BaseModel):
    headline: Headline = Field(default_factory=Headline)
    supporting: list[str] = Field(default_factory=list)
    quotes: list[str] = Field(default_factory=list)

    @field_validator("supporting", "quotes", mode="before")
    @classmethod
    def _coerce_items(cls, value: object) -> object:
        return [_as_text(v) for v in value] if isinstance(value, list) else value


# ---------------------------------------------------------------------------
# Tagged Decode Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Parsed:
    value: StructuredAnswer


@dataclass(frozen=True)
class Fallback:
    reason: str


DecodeResult = Parsed | Fallback


def decode_structured(raw: str) -> DecodeResult:
    """Decode model output into a StructuredAnswer, or say why it could not."""
    text = raw.strip()
    fenced = _CODE_FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    if not text:
        return Fallback("empty response")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        return Fallback(f"invalid JSON: {exc.msg}")
    if not isinstance(data, dict):
        return Fallback(f"expected a JSON object, got {type(data).__name__}")

    try:
        return Parsed(StructuredAnswer.model_validate(data))
    except PydanticValidationError as exc:
        return Fallback(f"schema mismatch: {exc.error_count()} errors")


# ---------------------------------------------------------------------------
# Citation Helpers
# ---------------------------------------------------------------------------


def strip_invalid_citations(text: str, source_count: int) -> str:
    """Normalise "[1, 2]" to "[1][2]" and drop markers outside 1..source_count."""
    text = _CITATION_GROUP_RE.sub(
        lambda m: "".join(f"[{n.strip()}]" for n in m.group(1).split(",")), text
    )

    def _keep(match: re.Match) -> str:
        return match.group(0) if 1 <= int(match.group(1)) <= source_count else ""

    return _CITATION_RE.sub(_keep, text)


def trim_item(text: str) -> str:
    return text.strip().rstrip(_TRAILING_JUNK)


def superscript_citations(text: str) -> str:
    """Attach markers to the preceding word and render [n] as <sup>n</sup>."""
    text = re.sub(r"\s+\[(\d+)\]", r"[\1]", text)
    return re.sub(r"\[(\d+)\]", r"<sup>\1</sup>", text)


def clean_structured(answer: StructuredAnswer, source_count: int) -> StructuredAnswer:
    """Truncate lists to their maxima, fix citations, trim every string."""

    def _items(values: Sequence[str], limit: int) -> list[str]:
        cleaned = (trim_item(strip_invalid_citations(v, source_count)) for v in values)
        return [v for v in cleaned if v][:limit]

    return StructuredAnswer(
        headline=Headline(
            paragraph=trim_item(strip_invalid_citations(answer.headline.paragraph, source_count)),
            bullets=_items(answer.headline.bullets, MAX_HEADLINE_BULLETS),
        ),
        supporting=_items(answer.supporting, MAX_SUPPORTING),
        quotes=_items(answer.quotes, MAX_QUOTES),
    )


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_SYSTEM_UNSTRUCTURED = (
    "You are a market research analyst. Answer strictly from the provided "
    "context.\n\n"
    "Rules:\n"
    "- Use ONLY the numbered sources in the context\n"
    "- Cite every claim with bracketed reference numbers like [1], [2] "
    "matching the source numbers\n"
    "- Prefer more recent reports when sources disagree\n"
    "- If the context is insufficient, say so"
)

_SYSTEM_STRUCTURED = (
    "You are a market research analyst. Answer strictly from the provided "
    "context and return a single JSON object with this exact shape:\n"
    '{"headline": {"paragraph": "...", "bullets": ["..."]}, '
    '"supporting": ["..."], "quotes": ["..."]}\n\n'
    "Rules:\n"
    "- headline.paragraph: 2-3 sentence direct answer\n"
    f"- headline.bullets: at most {MAX_HEADLINE_BULLETS} key points\n"
    f"- supporting: 3 to {MAX_SUPPORTING} bullets staying close to the source wording\n"
    f"- quotes: at most {MAX_QUOTES} short verbatim quotes from the sources\n"
    "- Every text field ends with bracketed reference numbers like [1] or [2][3] "
    "matching the source numbers\n"
    "- Use ONLY the numbered sources; prefer more recent reports"
)


def format_context(sources: Sequence[Source]) -> str:
    """
    Number every source for citation.

    Example:
        [1] (Brand Tracker - June 2024 | tracker, page 3):
        Awareness rose to 41% among ...
    """
    sections = []
    for source in sources:
        label = source.file_name
        if source.date_label:
            label += f" - {source.date_label}"
        if source.report_tag:
            label += f" | {source.report_tag}"
        sections.append(f"[{source.ref}] ({label}, page {source.page}):\n{source.text}")
    return "\n\n---\n\n".join(sections)


def build_prompt(question: str, sources: Sequence[Source], structured: bool) -> str:
    instruction = (
        "Return the JSON object described in the instructions."
        if structured
        else "Write a concise answer (4-7 sentences) with [n] citations."
    )
    return (
        f"Question: {question}\n\n"
        f"Context ({len(sources)} sources):\n\n{format_context(sources)}\n\n"
        f"{instruction}"
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


@dataclass
class SynthesisResult:
    answer: str = ""
    structured: StructuredAnswer | None = None
    model: str = "n/a"
    input_tokens: int = 0
    output_tokens: int = 0
    fallback_reason: str | None = None


async def synthesize(
    question: str,
    sources: Sequence[Source],
    *,
    structured: bool = False,
    llm: LLMProvider,
) -> SynthesisResult:
    """
    Generate a cited answer from ranked sources.

    Args:
        question: The user's question.
        sources: Sources in citation order (ref 1..n).
        structured: Return a StructuredAnswer instead of free text.
        llm: Generation provider.

    Returns:
        SynthesisResult. With no sources the model is not called and the
        answer (or structure) is empty.

    Raises:
        GenerationServiceError: The provider failed or timed out.
    """
    if not sources:
        return SynthesisResult(structured=StructuredAnswer() if structured else None)

    logger.info("Synthesizing answer: sources=%d, structured=%s", len(sources), structured)

    try:
        response = await asyncio.wait_for(
            llm.complete(
                messages=[{"role": "user", "content": build_prompt(question, sources, structured)}],
                system=_SYSTEM_STRUCTURED if structured else _SYSTEM_UNSTRUCTURED,
                json_mode=structured,
            ),
            timeout=settings.llm_timeout_seconds,
        )
    except asyncio.TimeoutError as exc:
        raise GenerationServiceError(
            f"Generation timed out after {settings.llm_timeout_seconds}s"
        ) from exc

    result = SynthesisResult(
        model=response.model,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
    )

    if not structured:
        result.answer = strip_invalid_citations(response.content, len(sources)).strip()
        return result

    decoded = decode_structured(response.content)
    if isinstance(decoded, Fallback):
        logger.warning("Structured answer fell back to empty: %s", decoded.reason)
        result.structured = StructuredAnswer()
        result.fallback_reason = decoded.reason
    else:
        result.structured = clean_structured(decoded.value, len(sources))

    logger.info(
        "Synthesis complete: model=%s, tokens=%d+%d",
        response.model, response.input_tokens, response.output_tokens,
    )
    return result
