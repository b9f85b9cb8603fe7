"""Local related-notes search.

Ranks every markdown note in the vault against a query without any remote
call. Ranking is computed fresh per query in two stages:

1. Metadata pass (synchronous, whole corpus): title, headings, aliases and
   tags, all cheap to obtain. Notes scoring zero are dropped; the top 100
   form the shortlist.
2. Content pass (async, shortlist only): the first few thousand characters
   of each note are scanned for whole-word token occurrences, one point per
   occurrence, and the first hit yields a preview snippet.

The two scores are summed per note.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Pattern, Protocol, Sequence, Set

from pydantic import BaseModel

from canvas_ask.core.concurrency import get_concurrency, run_with_concurrency
from canvas_ask.core.vault import DocumentMetadata

logger = logging.getLogger(__name__)

SHORTLIST_SIZE = 100
CONTENT_CHAR_BUDGET = 3000
SNIPPET_RADIUS = 60
MIN_RESULTS = 3
MAX_RESULTS = 12
CONTENT_CONCURRENCY = 10

TOKEN_SPLIT_PATTERN = re.compile(r"[^a-z0-9#+]+")
WHITESPACE_PATTERN = re.compile(r"\s+")

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "if", "then", "else", "when", "at", "by",
    "for", "from", "in", "into", "of", "on", "to", "with", "without", "is", "are",
    "was", "were", "be", "been", "being", "as", "it", "this", "that", "these",
    "those", "we", "you", "they", "i", "me", "my", "our", "your", "their", "can",
    "could", "should", "would", "may", "might", "will", "just", "about", "so", "do",
    "does", "did", "not", "no", "yes",
})


class ScoringWeights(BaseModel):
    """Per-signal score contributions.

    The defaults are an empirical tuning; only their relative order matters
    (title > tag > heading = alias > single content hit).
    """
    title: int = 5
    heading: int = 3
    alias: int = 3
    tag: int = 4
    content_hit: int = 1


@dataclass
class ScoredCandidate:
    """One ranked note."""
    path: str
    score: int
    snippet: Optional[str] = None
    title: str = ""


class DocumentCorpus(Protocol):
    """What the search engine needs from a document repository."""

    def list_markdown(self) -> List[str]: ...

    def metadata(self, note_path: str) -> Optional[DocumentMetadata]: ...

    async def aread(self, note_path: str) -> str: ...


def tokenize_query(text: str) -> Set[str]:
    """Lower-case query tokens with stop-words and short words removed.

    `#` and `+` survive splitting so tags (`#ai`) and names like `c++` stay
    intact; tokens starting with `#` are kept even when shorter than 3.
    """
    tokens: Set[str] = set()
    for raw in TOKEN_SPLIT_PATTERN.split((text or "").lower()):
        token = raw.strip()
        if not token or token in STOP_WORDS:
            continue
        if len(token) < 3 and not token.startswith("#"):
            continue
        tokens.add(token)
    return tokens


def compile_token_patterns(tokens: Iterable[str]) -> List[tuple[str, Pattern[str]]]:
    """One case-insensitive whole-word pattern per token, compiled once per search."""
    return [
        (token, re.compile(rf"(?<![A-Za-z0-9_]){re.escape(token)}(?![A-Za-z0-9_])", re.IGNORECASE))
        for token in sorted(tokens)
    ]


def score_metadata(meta: DocumentMetadata, tokens: Set[str], weights: ScoringWeights) -> int:
    """Stage-1 score for one note."""
    score = 0
    title = meta.title.lower()
    for token in tokens:
        if token in title:
            score += weights.title

    for heading in meta.headings:
        low = heading.lower()
        for token in tokens:
            if token in low:
                score += weights.heading

    for alias in meta.aliases:
        low = alias.lower()
        for token in tokens:
            if token in low:
                score += weights.alias

    for tag in meta.tags:
        if tag in tokens:
            score += weights.tag

    return score


def rank_by_metadata(
    corpus: DocumentCorpus,
    paths: Sequence[str],
    tokens: Set[str],
    weights: ScoringWeights,
) -> List[ScoredCandidate]:
    """Score every note on metadata; zero scores are dropped, best first."""
    ranked: List[ScoredCandidate] = []
    for path in paths:
        meta = corpus.metadata(path)
        if meta is None:
            continue
        score = score_metadata(meta, tokens, weights)
        if score > 0:
            ranked.append(ScoredCandidate(path=path, score=score, title=meta.title))
    ranked.sort(key=lambda c: c.score, reverse=True)
    return ranked


def score_content(
    text: str,
    patterns: Sequence[tuple[str, Pattern[str]]],
    weights: ScoringWeights,
) -> tuple[int, Optional[str]]:
    """Count whole-word occurrences and capture the surroundings of the earliest hit."""
    score = 0
    first_hit: Optional[int] = None
    for _token, pattern in patterns:
        for match in pattern.finditer(text):
            score += weights.content_hit
            if first_hit is None or match.start() < first_hit:
                first_hit = match.start()

    if first_hit is None:
        return score, None
    start = max(0, first_hit - SNIPPET_RADIUS)
    end = min(len(text), first_hit + SNIPPET_RADIUS)
    chunk = WHITESPACE_PATTERN.sub(" ", text[start:end]).strip()
    return score, chunk or None


async def rank_by_content(
    corpus: DocumentCorpus,
    paths: Sequence[str],
    tokens: Set[str],
    weights: ScoringWeights,
    max_chars: int = CONTENT_CHAR_BUDGET,
) -> List[ScoredCandidate]:
    """Score shortlisted notes on their leading content.

    A note that cannot be read scores zero instead of failing the batch.
    Results are returned in `paths` order.
    """
    patterns = compile_token_patterns(tokens)

    def make_job(path: str) -> Callable[[], Awaitable[ScoredCandidate]]:
        async def job() -> ScoredCandidate:
            try:
                raw = await corpus.aread(path)
            except (OSError, UnicodeDecodeError, ValueError) as e:
                logger.debug(f"Skipping unreadable note {path}: {e}")
                return ScoredCandidate(path=path, score=0)
            score, snippet = score_content(raw[:max_chars], patterns, weights)
            return ScoredCandidate(path=path, score=score, snippet=snippet)
        return job

    jobs = [make_job(path) for path in paths]
    return await run_with_concurrency(jobs, get_concurrency(CONTENT_CONCURRENCY))


def clamp_result_count(configured: Optional[int], default: int = 8) -> int:
    """Number of results to show, kept within [3, 12]."""
    value = configured if configured else default
    return max(MIN_RESULTS, min(MAX_RESULTS, value))


async def search_related(
    corpus: DocumentCorpus,
    query_text: str,
    top_k: Optional[int] = None,
    exclude: Iterable[str] = (),
    weights: Optional[ScoringWeights] = None,
) -> List[ScoredCandidate]:
    """Rank the corpus against free text and return the best notes.

    Args:
        corpus: Document repository to search
        query_text: Free text the query tokens are extracted from
        top_k: Configured result count (clamped to [3, 12])
        exclude: Paths never returned (the canvas itself, the query's own note)
        weights: Score contributions (defaults to ScoringWeights())

    Returns:
        Candidates with a positive merged score, best first; ties keep corpus order
    """
    weights = weights or ScoringWeights()
    tokens = tokenize_query(query_text)
    if not tokens:
        logger.info("Query has no searchable tokens")
        return []

    paths = corpus.list_markdown()
    order: Dict[str, int] = {path: i for i, path in enumerate(paths)}

    meta_ranked = rank_by_metadata(corpus, paths, tokens, weights)
    shortlist = [c.path for c in meta_ranked[:SHORTLIST_SIZE]]
    logger.info(
        f"Related search: {len(tokens)} tokens, {len(paths)} notes, "
        f"{len(meta_ranked)} metadata hits, {len(shortlist)} shortlisted"
    )

    content_ranked = await rank_by_content(corpus, shortlist, tokens, weights)

    merged: Dict[str, ScoredCandidate] = {
        c.path: ScoredCandidate(path=c.path, score=c.score, title=c.title) for c in meta_ranked
    }
    for scored in content_ranked:
        entry = merged.setdefault(scored.path, ScoredCandidate(path=scored.path, score=0))
        entry.score += scored.score
        if scored.snippet and not entry.snippet:
            entry.snippet = scored.snippet

    excluded = {p for p in exclude if p}
    results = [c for c in merged.values() if c.score > 0 and c.path not in excluded]
    results.sort(key=lambda c: (-c.score, order.get(c.path, len(order))))
    return results[:clamp_result_count(top_k)]


__all__ = [
    "ScoredCandidate",
    "ScoringWeights",
    "DocumentCorpus",
    "tokenize_query",
    "compile_token_patterns",
    "score_metadata",
    "score_content",
    "rank_by_metadata",
    "rank_by_content",
    "clamp_result_count",
    "search_related",
]
