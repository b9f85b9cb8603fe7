"""Tests for related-notes ranking."""

from typing import Dict, List, Optional

import pytest

from canvas_ask.core.search import (
    SHORTLIST_SIZE,
    ScoringWeights,
    clamp_result_count,
    compile_token_patterns,
    score_content,
    search_related,
    tokenize_query,
)
from canvas_ask.core.vault import DocumentMetadata, parse_metadata


class FakeCorpus:
    """In-memory corpus; paths listed in `broken` fail to read."""

    def __init__(self, docs: Dict[str, str], broken: Optional[set] = None):
        self.docs = docs
        self.broken = broken or set()

    def list_markdown(self) -> List[str]:
        return list(self.docs)

    def metadata(self, note_path: str) -> Optional[DocumentMetadata]:
        return parse_metadata(note_path, self.docs[note_path])

    async def aread(self, note_path: str) -> str:
        if note_path in self.broken:
            raise OSError("disk on fire")
        return self.docs[note_path]


def test_tokenize_query():
    """Test stop-words, short words, tags and c++ handling."""
    tokens = tokenize_query("The #ai of Rust, C++ and go")
    assert tokens == {"#ai", "rust", "c++"}


def test_tokenize_empty():
    """Test that stop-words alone yield no tokens."""
    assert tokenize_query("the and of") == set()
    assert tokenize_query("") == set()


def test_score_content_whole_words_and_snippet():
    """Test whole-word counting and snippet capture."""
    patterns = compile_token_patterns({"rust"})
    score, snippet = score_content("Rust is not rusty.\nRUST again", patterns, ScoringWeights())
    assert score == 2
    assert snippet.startswith("Rust is not rusty. RUST")


def test_clamp_result_count():
    """Test clamping to [3, 12]."""
    assert clamp_result_count(1) == 3
    assert clamp_result_count(50) == 12
    assert clamp_result_count(None) == 8
    assert clamp_result_count(5) == 5


@pytest.mark.asyncio
async def test_search_ranks_by_metadata_and_content(vault):
    """Test the three-note vault: best match first, unrelated excluded."""
    results = await search_related(vault, "rust async", top_k=8)
    paths = [r.path for r in results]
    assert paths == ["notes/Rust Async.md", "notes/Systems.md"]
    assert results[0].score > results[1].score
    assert results[1].snippet


@pytest.mark.asyncio
async def test_search_excludes_paths(vault):
    """Test that excluded paths never come back."""
    results = await search_related(vault, "rust async", exclude=["notes/Rust Async.md"])
    assert [r.path for r in results] == ["notes/Systems.md"]


@pytest.mark.asyncio
async def test_search_without_tokens_returns_nothing(vault):
    """Test a query made of stop-words."""
    assert await search_related(vault, "the and of") == []


@pytest.mark.asyncio
async def test_search_is_deterministic_on_ties():
    """Test that equal scores keep corpus order."""
    corpus = FakeCorpus({
        "b.md": "# Kafka\n",
        "a.md": "# Kafka\n",
        "c.md": "# Kafka\n",
    })
    first = await search_related(corpus, "kafka")
    second = await search_related(corpus, "kafka")
    assert [r.path for r in first] == ["b.md", "a.md", "c.md"]
    assert [r.path for r in first] == [r.path for r in second]


@pytest.mark.asyncio
async def test_unreadable_note_scores_zero_on_content():
    """Test that a read failure does not fail the search."""
    corpus = FakeCorpus(
        {"ok.md": "# Kafka\nkafka kafka\n", "bad.md": "# Kafka\n"},
        broken={"bad.md"},
    )
    results = await search_related(corpus, "kafka")
    by_path = {r.path: r.score for r in results}
    assert by_path["ok.md"] > by_path["bad.md"] > 0


@pytest.mark.asyncio
async def test_custom_weights():
    """Test that weights change the ranking."""
    corpus = FakeCorpus({
        "title.md": "---\ntitle: kafka\n---\nnothing here\n",
        "body.md": "# kafka\nkafka kafka kafka\n",
    })
    default = await search_related(corpus, "kafka")
    assert default[0].path == "body.md"

    weighted = await search_related(corpus, "kafka", weights=ScoringWeights(title=50))
    assert weighted[0].path == "title.md"


class RecordingCorpus(FakeCorpus):
    """FakeCorpus that records which notes had their content read."""

    def __init__(self, docs: Dict[str, str]):
        super().__init__(docs)
        self.reads: List[str] = []

    async def aread(self, note_path: str) -> str:
        self.reads.append(note_path)
        return await super().aread(note_path)


@pytest.mark.asyncio
async def test_only_shortlist_is_content_scored():
    """Test that only the top metadata hits are read, the rest keep their metadata score."""
    docs = {f"kafka-{i:03d}.md": "# kafka\n" for i in range(SHORTLIST_SIZE)}
    # heading-only metadata hit ranks last, but its body would outscore everyone
    docs["zzz.md"] = "## kafka\n" + "kafka " * 50
    corpus = RecordingCorpus(docs)

    results = await search_related(corpus, "kafka", top_k=12)

    assert len(corpus.reads) == SHORTLIST_SIZE
    assert "zzz.md" not in corpus.reads
    assert "zzz.md" not in [r.path for r in results]
    assert {r.score for r in results} == {5 + 3 + 1}


@pytest.mark.asyncio
async def test_snippet_comes_from_earliest_match():
    """Test that the snippet starts at the first hit in the text, whatever the token."""
    patterns = compile_token_patterns({"alpha", "zulu"})
    text = "zulu first" + " filler" * 20 + " alpha later"
    score, snippet = score_content(text, patterns, ScoringWeights())
    assert score == 2
    assert snippet.startswith("zulu first")
