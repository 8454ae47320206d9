from typing import List, Sequence

import pytest

from knowledge_index.config import ChunkingSettings
from knowledge_index.core.errors import UnknownStrategyError
from knowledge_index.embeddings.base import EmbeddingProvider
from knowledge_index.ingestion.chunking.base import ChunkingStrategy
from knowledge_index.ingestion.chunking.fixed_size import FixedSizeChunker, find_natural_break
from knowledge_index.ingestion.chunking.recursive import RecursiveChunker
from knowledge_index.ingestion.chunking.registry import ChunkerRegistry
from knowledge_index.ingestion.chunking.semantic import SemanticChunker, sentence_spans
from knowledge_index.ingestion.chunking.tokens import CHARS_PER_TOKEN, estimate_tokens
from knowledge_index.ingestion.models import ParsedDocument

THREE_PARAGRAPHS = "\n\n".join(
    [
        "The finance team reviewed the quarterly numbers in detail. Revenue grew in every "
        "region, led by strong demand in the enterprise segment. Operating costs stayed flat "
        "while headcount increased slightly. The board asked for a deeper look at margins.",
        "Engineering shipped the new ingestion service this quarter. Documents are parsed, "
        "split into chunks, embedded and stored for search. Latency dropped by a third after "
        "the index rebuild. Several customers reported faster answers from the assistant.",
        "Next quarter the company plans to expand into two new markets. Hiring will focus on "
        "sales and support roles. Marketing will run a campaign around the search features. "
        "Leadership expects growth to continue at a similar pace through the end of the year.",
    ]
)


def _settings(**overrides) -> ChunkingSettings:
    values = dict(strategy="FixedSize", max_chunk_size=50, overlap=10, min_chunk_size=0)
    values.update(overrides)
    return ChunkingSettings(**values)


def _assert_offsets(text: str, chunks) -> None:
    for chunk in chunks:
        assert 0 <= chunk.start_offset < chunk.end_offset <= len(text)
        assert chunk.content == text[chunk.start_offset : chunk.end_offset]
        assert chunk.content == chunk.content.strip()


# ---------------------------------------------------------------------
# Token estimate
# ---------------------------------------------------------------------

def test_estimate_tokens_rounds_up_and_ignores_blank():
    assert estimate_tokens("") == 0
    assert estimate_tokens("   \n") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_effective_overlap_falls_back_when_overlap_too_large():
    assert ChunkingStrategy.effective_overlap(_settings(max_chunk_size=40, overlap=40)) == 10
    assert ChunkingStrategy.effective_overlap(_settings(max_chunk_size=40, overlap=5)) == 5


# ---------------------------------------------------------------------
# Fixed size
# ---------------------------------------------------------------------

@pytest.mark.parametrize("content", ["", "a", "ab", "hello world", THREE_PARAGRAPHS])
def test_natural_break_target_past_end_returns_length(content):
    for extra in range(0, 5):
        target = len(content) + extra
        assert find_natural_break(content, 0, target) == len(content)


def test_natural_break_stays_in_range_for_tiny_windows():
    content = "abcdefgh"
    for start in range(len(content) - 1):
        for target in range(start + 1, len(content)):
            end = find_natural_break(content, start, target)
            assert start < end <= len(content)


def test_natural_break_prefers_paragraph_then_line():
    content = "first paragraph here\n\nsecond line\nthird words go on and on"
    end = find_natural_break(content, 0, 24)
    assert content[end - 1 : end + 1] == "\n\n"

    no_paragraph = "first line of text here\nsecond line of text continues"
    end = find_natural_break(no_paragraph, 0, 26)
    assert no_paragraph[end] == "\n"


def test_natural_break_never_passes_target():
    content = "a" * 200 + ". " + "b" * 50
    assert find_natural_break(content, 0, 200) <= 200

    for start in range(0, 40, 3):
        for target in range(start + 1, len(content)):
            assert start < find_natural_break(content, start, target) <= target


@pytest.mark.asyncio
@pytest.mark.parametrize("max_size", [1, 2, 17, 50])
async def test_fixed_size_sentence_at_window_edge_stays_in_budget(max_size):
    width = max_size * CHARS_PER_TOKEN
    text = ("a" * width + ". ") * 4 + "b" * 50
    chunks = await FixedSizeChunker().chunk(
        ParsedDocument(content=text), _settings(max_chunk_size=max_size, overlap=0)
    )

    _assert_offsets(text, chunks)
    assert all(c.token_count <= max_size for c in chunks)
    assert chunks[-1].end_offset == len(text)


@pytest.mark.asyncio
async def test_fixed_size_three_paragraphs_overlap():
    chunks = await FixedSizeChunker().chunk(ParsedDocument(content=THREE_PARAGRAPHS), _settings())

    assert len(chunks) >= 3
    assert [c.index for c in chunks] == list(range(len(chunks)))
    _assert_offsets(THREE_PARAGRAPHS, chunks)

    for chunk in chunks:
        assert chunk.token_count <= 50
        assert chunk.metadata["ChunkingStrategy"] == "FixedSize"

    for previous, current in zip(chunks, chunks[1:]):
        shared = previous.end_offset - current.start_offset
        assert 0 < shared <= 10 * CHARS_PER_TOKEN

    assert chunks[-1].end_offset == len(THREE_PARAGRAPHS.rstrip())


@pytest.mark.asyncio
async def test_fixed_size_blank_document_yields_nothing():
    assert await FixedSizeChunker().chunk(ParsedDocument(content="  \n\n "), _settings()) == []


@pytest.mark.asyncio
async def test_fixed_size_unbroken_text_still_terminates():
    text = "x" * 1000
    chunks = await FixedSizeChunker().chunk(ParsedDocument(content=text), _settings(overlap=49))
    _assert_offsets(text, chunks)
    assert chunks[-1].end_offset == len(text)


# ---------------------------------------------------------------------
# Recursive
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_recursive_offsets_match_source():
    chunks = await RecursiveChunker().chunk(
        ParsedDocument(content=THREE_PARAGRAPHS),
        _settings(strategy="Recursive"),
    )
    assert len(chunks) >= 3
    _assert_offsets(THREE_PARAGRAPHS, chunks)
    assert all(c.token_count <= 50 for c in chunks)


@pytest.mark.asyncio
async def test_recursive_repeated_tail_never_searches_past_end():
    text = "alpha beta gamma. " * 40 + "end end end"
    chunks = await RecursiveChunker().chunk(
        ParsedDocument(content=text),
        _settings(strategy="Recursive", max_chunk_size=8, overlap=6),
    )
    assert chunks
    _assert_offsets(text, chunks)


@pytest.mark.asyncio
async def test_recursive_short_text_is_one_chunk():
    chunks = await RecursiveChunker().chunk(
        ParsedDocument(content="  short note  "),
        _settings(strategy="Recursive"),
    )
    assert len(chunks) == 1
    assert chunks[0].content == "short note"
    assert chunks[0].start_offset == 2


# ---------------------------------------------------------------------
# Semantic
# ---------------------------------------------------------------------

class TopicEmbedder(EmbeddingProvider):
    """Two-dimensional embedder: one axis for cats, one for everything else."""

    @property
    def model_id(self) -> str:
        return "topic"

    @property
    def dimensions(self) -> int:
        return 2

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        return [[1.0, 0.0] if "cat" in t.lower() else [0.0, 1.0] for t in texts]


TWO_TOPICS = (
    "Cats purr when content. Cats sleep most of the day. Cats hunt at night. "
    "Rockets need fuel. Rockets launch from pads. Rockets reach orbit quickly."
)


def test_sentence_spans_split_long_units():
    spans = sentence_spans("a" * 25 + ". Short one.", max_chars=10)
    assert all(e - s <= 10 for s, e in spans)
    assert spans[-1] == (27, 37)


@pytest.mark.asyncio
async def test_semantic_splits_on_topic_shift():
    chunks = await SemanticChunker(TopicEmbedder()).chunk(
        ParsedDocument(content=TWO_TOPICS),
        _settings(strategy="Semantic", max_chunk_size=200, semantic_threshold=0.5),
    )
    assert len(chunks) == 2
    assert chunks[0].content.startswith("Cats purr")
    assert chunks[0].content.endswith("night.")
    assert chunks[1].content.startswith("Rockets need fuel")
    _assert_offsets(TWO_TOPICS, chunks)


@pytest.mark.asyncio
async def test_semantic_min_size_keeps_small_groups_together():
    chunks = await SemanticChunker(TopicEmbedder()).chunk(
        ParsedDocument(content=TWO_TOPICS),
        _settings(strategy="Semantic", max_chunk_size=200, min_chunk_size=100),
    )
    assert len(chunks) == 1
    assert chunks[0].content == TWO_TOPICS


@pytest.mark.asyncio
async def test_semantic_never_exceeds_max_size():
    text = " ".join(["Cats purr loudly."] * 12)
    chunks = await SemanticChunker(TopicEmbedder()).chunk(
        ParsedDocument(content=text),
        _settings(strategy="Semantic", max_chunk_size=10),
    )
    assert len(chunks) > 1
    assert all(c.token_count <= 10 for c in chunks)
    _assert_offsets(text, chunks)


# ---------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------

def test_registry_resolves_case_insensitively(embedder):
    registry = ChunkerRegistry()
    assert isinstance(registry.resolve("fixedsize", embedder), FixedSizeChunker)
    assert isinstance(registry.resolve("RECURSIVE", embedder), RecursiveChunker)
    assert isinstance(registry.resolve("Semantic", embedder), SemanticChunker)


def test_registry_unknown_strategy(embedder):
    with pytest.raises(UnknownStrategyError):
        ChunkerRegistry().resolve("Sentences", embedder)
