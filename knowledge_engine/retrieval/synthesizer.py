"""
Answer synthesis with bracket-numbered citations.

The synthesizer numbers the top chunks ``[1]..[n]``, asks the generative
model to answer using those markers, and extracts the markers it used.

Fallbacks (no exception ever leaves synthesize()):
    - no chunks           -> fixed insufficient-context message, no model call
    - no model configured -> the numbered context itself, no citations
    - model failure       -> the numbered context itself, no citations

Usage:
    synthesizer = AnswerSynthesizer(model=model, max_chunks=6)
    result = await synthesizer.synthesize(query, chunks, style="graph")
    result.answer, result.citations
"""

from __future__ import annotations

import re
from collections.abc import Sequence

import structlog

from knowledge_engine.retrieval.interfaces import GenerativeModelProvider
from knowledge_engine.retrieval.models import RankedCandidate, SynthesisResult
from knowledge_engine.utils.generation import GenerationError

logger = structlog.get_logger(__name__)

INSUFFICIENT_CONTEXT_MESSAGE = "目前沒有足夠的檢索結果可以回答這個問題。"

DEFAULT_MAX_CHUNKS = 6

# Graph mode asks for a concise answer that lists the used markers at the end.
GRAPH_PROMPT_TEMPLATE = (
    "根據以下參考資料，回答問題。回答時請引用 [數字] 標記來源。\n\n"
    "問題：{query}\n\n"
    "參考資料：\n{context}\n\n"
    "請用繁體中文回答，簡潔但完整，並在最後列出引用的 [數字]。"
)

HYBRID_PROMPT_TEMPLATE = (
    "根據參考資料回答問題，並使用 [數字] 進行引用。\n\n"
    "問題：{query}\n\n"
    "參考資料：\n{context}\n\n"
    "請用繁體中文回答。"
)

_PROMPTS = {
    "graph": GRAPH_PROMPT_TEMPLATE,
    "hybrid": HYBRID_PROMPT_TEMPLATE,
}

_CITATION_PATTERN = re.compile(r"\[(\d+)\]")


def extract_citations(text: str) -> list[str]:
    """
    Return ``[n]`` markers in first-seen order, without duplicates.

    >>> extract_citations("A [1] and B [2] [1]")
    ['[1]', '[2]']
    """
    seen: dict[str, None] = {}
    for match in _CITATION_PATTERN.finditer(text or ""):
        seen.setdefault(f"[{match.group(1)}]", None)
    return list(seen)


def build_context(chunks: Sequence[RankedCandidate]) -> str:
    """``[i] content`` blocks, 1-based, separated by blank lines."""
    return "\n\n".join(f"[{i}] {chunk.content}" for i, chunk in enumerate(chunks, start=1))


class AnswerSynthesizer:
    """Turns ranked chunks into a cited answer."""

    def __init__(
        self,
        model: GenerativeModelProvider | None,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
    ) -> None:
        self._model = model
        self.max_chunks = max_chunks
        self._log = logger.bind(component="synthesizer")

    async def synthesize(
        self,
        query: str,
        chunks: Sequence[RankedCandidate],
        style: str = "graph",
    ) -> SynthesisResult:
        """
        Args:
            query: The user's question.
            chunks: Ranked chunks, best first; only the first max_chunks are used.
            style: "graph" or "hybrid", selecting the prompt wording.
        """
        if not chunks:
            return SynthesisResult(answer=INSUFFICIENT_CONTEXT_MESSAGE)

        context = build_context(chunks[: self.max_chunks])

        if self._model is None:
            return SynthesisResult(answer=context)

        prompt = _PROMPTS.get(style, GRAPH_PROMPT_TEMPLATE).format(
            query=query, context=context
        )
        try:
            answer = await self._model.generate(prompt)
        except GenerationError as e:
            self._log.warning(
                "synthesis_failed_returning_context",
                error=str(e),
                chunks=min(len(chunks), self.max_chunks),
            )
            return SynthesisResult(answer=context)

        citations = tuple(extract_citations(answer))
        self._log.debug("synthesis_complete", citations=len(citations), style=style)
        return SynthesisResult(answer=answer, citations=citations)


__all__ = [
    "AnswerSynthesizer",
    "INSUFFICIENT_CONTEXT_MESSAGE",
    "build_context",
    "extract_citations",
]
