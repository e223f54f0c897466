"""Free-text ranking of catalog entries.

The score stacks several overlapping signals on top of a similarity base:

    base      simName*100 + simDesc*50
    exact     +50 name == q, else +30 description == q
    prefix    +30 name startswith q, +15 description startswith q  (no exact)
    substring +20 name contains q, +10 description contains q     (no exact/prefix)
    tokens    multi-word queries only: +15/+8 per token found in name/description,
              otherwise token similarity averaged into +20/+10, and +25/+15
              when every token was found

Candidates scoring <= 10 are discarded. The best score wins; ties keep the
first candidate in catalog order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from databox.catalog.similarity import compare_two_strings
from databox.core.models import CatalogEntry
from databox.errors import ValidationError

logger = logging.getLogger(__name__)

MIN_SCORE = 10.0


@dataclass(slots=True, frozen=True)
class Match:
    entry: CatalogEntry
    score: float


@dataclass(slots=True, frozen=True)
class NotFound:
    """No candidate cleared the threshold; carries the caller's query."""

    query: str


SearchResult = Match | NotFound


def normalize_query(query: str) -> str:
    q = (query or "").strip().lower()
    if not q:
        raise ValidationError("query", "search query must not be empty")
    return q


def score_entry(query: str, entry: CatalogEntry) -> float:
    """Score one entry against an already normalized query."""
    name = entry.name.strip().lower()
    desc = entry.description.strip().lower()

    score = compare_two_strings(query, name) * 100 + compare_two_strings(query, desc) * 50

    exact = False
    if name == query:
        score += 50
        exact = True
    elif desc == query:
        score += 30
        exact = True

    prefix = False
    if not exact:
        if name.startswith(query):
            score += 30
            prefix = True
        if desc.startswith(query):
            score += 15
            prefix = True

    if not exact and not prefix:
        if query in name:
            score += 20
        if query in desc:
            score += 10

    tokens = query.split()
    if len(tokens) > 1:
        name_hits = desc_hits = 0
        name_sim = desc_sim = 0.0
        for token in tokens:
            if token in name:
                score += 15
                name_hits += 1
            else:
                name_sim += compare_two_strings(token, name)
            if token in desc:
                score += 8
                desc_hits += 1
            else:
                desc_sim += compare_two_strings(token, desc)
        score += (name_sim / len(tokens)) * 20
        score += (desc_sim / len(tokens)) * 10
        if name_hits == len(tokens):
            score += 25
        if desc_hits == len(tokens):
            score += 15

    return score


def rank(query: str, catalog: Iterable[CatalogEntry]) -> list[Match]:
    """All candidates above the threshold, best first (stable on ties)."""
    q = normalize_query(query)
    scored = [Match(e, s) for e in catalog if (s := score_entry(q, e)) > MIN_SCORE]
    scored.sort(key=lambda m: m.score, reverse=True)
    return scored


def find_best_match(query: str, catalog: Sequence[CatalogEntry]) -> SearchResult:
    """Pick the single best entry for `query`, or `NotFound(query)`."""
    q = normalize_query(query)
    best: Match | None = None
    for entry in catalog:
        s = score_entry(q, entry)
        if s > MIN_SCORE and (best is None or s > best.score):
            best = Match(entry, s)
    if best is None:
        logger.debug("no catalog entry matches %r (%d candidates)", query, len(catalog))
        return NotFound(query)
    return best
