from __future__ import annotations

import pytest

from knowledge_engine.retrieval.models import RankedCandidate, SourceType
from knowledge_engine.retrieval.synthesizer import (
    GRAPH_PROMPT_TEMPLATE,
    HYBRID_PROMPT_TEMPLATE,
    INSUFFICIENT_CONTEXT_MESSAGE,
    AnswerSynthesizer,
    build_context,
    extract_citations,
)

from .conftest import FakeModel


def _chunks(n: int) -> list[RankedCandidate]:
    return [
        RankedCandidate(
            id=f"c{i}",
            content=f"chunk {i}",
            document_id=f"d{i}",
            score=1.0 / i,
            source_type=SourceType.HYBRID,
        )
        for i in range(1, n + 1)
    ]


def test_extract_citations_dedupes_in_first_seen_order() -> None:
    assert extract_citations("A [1] and B [2] [1]") == ["[1]", "[2]"]


def test_extract_citations_ignores_non_numeric_brackets() -> None:
    assert extract_citations("see [a], [12] and [ 3 ]") == ["[12]"]
    assert extract_citations("") == []


def test_build_context_numbers_from_one() -> None:
    assert build_context(_chunks(2)) == "[1] chunk 1\n\n[2] chunk 2"


@pytest.mark.asyncio
async def test_no_chunks_never_calls_model() -> None:
    model = FakeModel()

    result = await AnswerSynthesizer(model=model).synthesize("q", [])

    assert result.answer == INSUFFICIENT_CONTEXT_MESSAGE
    assert result.citations == ()
    assert model.prompts == []


@pytest.mark.asyncio
async def test_without_model_answer_is_the_context() -> None:
    result = await AnswerSynthesizer(model=None).synthesize("q", _chunks(2))

    assert result.answer == "[1] chunk 1\n\n[2] chunk 2"
    assert result.citations == ()


@pytest.mark.asyncio
async def test_model_failure_falls_back_to_context() -> None:
    model = FakeModel(fail=True)

    result = await AnswerSynthesizer(model=model).synthesize("q", _chunks(1))

    assert result.answer == "[1] chunk 1"
    assert result.citations == ()
    assert len(model.prompts) == 1


@pytest.mark.asyncio
async def test_prompt_uses_at_most_six_chunks() -> None:
    model = FakeModel(reply="答案 [2] [6]")

    result = await AnswerSynthesizer(model=model).synthesize("問題", _chunks(8))

    prompt = model.prompts[0]
    assert "[6] chunk 6" in prompt
    assert "[7] chunk 7" not in prompt
    assert "問題" in prompt
    assert result.answer == "答案 [2] [6]"
    assert result.citations == ("[2]", "[6]")


@pytest.mark.asyncio
async def test_style_selects_prompt() -> None:
    model = FakeModel()
    synthesizer = AnswerSynthesizer(model=model)

    await synthesizer.synthesize("q", _chunks(1), style="graph")
    await synthesizer.synthesize("q", _chunks(1), style="hybrid")

    context = "[1] chunk 1"
    assert model.prompts[0] == GRAPH_PROMPT_TEMPLATE.format(query="q", context=context)
    assert model.prompts[1] == HYBRID_PROMPT_TEMPLATE.format(query="q", context=context)
