"""Lexical relevance filter that trims the inventory before prompting.

Scores are deliberately simple: token hits against a text blob of the
descriptive columns, plus boosts for the two most common staff questions
(Riesling, and what is open by the glass).
"""

from __future__ import annotations

import re
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from .config import RelevanceConfig
from .utils import lookup, normalize_key

HAYSTACK_FIELDS = ["Name", "Winemaker", "Grapes", "Region", "Country", "Notes", "Colour"]
GLASS_INTENT_TERMS = ["by the glass", "glass", "glas"]

# Split on anything that is not a digit or a (Nordic/Western European) letter.
_TOKEN_SPLIT_RE = re.compile(r"[^0-9a-zæøåäöüéèêëàáâçñóòôíìîúùûß]+")

DEFAULT_RELEVANCE = RelevanceConfig()


def tokenize_query(query: str, config: RelevanceConfig = DEFAULT_RELEVANCE) -> List[str]:
    """Purpose: Split a free-text question into scoring tokens.
    Inputs/Outputs: Input is the raw query; output is up to max_tokens lowercase tokens
        at least min_token_length characters long, in query order.
    Side Effects / State: None.
    Dependencies: Uses normalize_key and _TOKEN_SPLIT_RE.
    Failure Modes: Empty or punctuation-only queries return an empty list.
    If Removed: select_relevant has nothing to score with.
    Testing Notes: "Do you have Rødvin?" -> ["you", "have", "rødvin"].
    """
    normalized = normalize_key(query)
    tokens = [token for token in _TOKEN_SPLIT_RE.split(normalized) if len(token) >= config.min_token_length]
    return tokens[: config.max_tokens]


def has_glass_intent(query: str) -> bool:
    normalized = normalize_key(query)
    return any(term in normalized for term in GLASS_INTENT_TERMS)


def build_haystack(record: Mapping[str, Any]) -> str:
    """Purpose: Build the lowercase text blob a record is matched against.
    Inputs/Outputs: Input is an inventory record; output is a normalized string.
    Side Effects / State: None.
    Dependencies: Uses lookup and normalize_key over HAYSTACK_FIELDS.
    Failure Modes: Missing columns contribute nothing.
    If Removed: Token scoring cannot see name, producer, grape, or origin text.
    Testing Notes: Price/Stock/Glass must not appear in the blob.
    """
    return " ".join(normalize_key(lookup(record, name)) for name in HAYSTACK_FIELDS)


def score_record(
    record: Mapping[str, Any],
    tokens: Sequence[str],
    query_norm: str,
    glass_intent: bool,
    config: RelevanceConfig = DEFAULT_RELEVANCE,
) -> int:
    haystack = build_haystack(record)
    score = 0
    for token in tokens:
        if token in haystack:
            score += config.token_score

    if "riesling" in query_norm:
        grapes = normalize_key(lookup(record, "Grapes"))
        name = normalize_key(lookup(record, "Name"))
        if "riesling" in grapes or "riesling" in name:
            score += config.riesling_boost

    if glass_intent and lookup(record, "Glass"):
        score += config.glass_boost
    return score


def select_relevant(
    records: Sequence[Mapping[str, Any]],
    query: str,
    cap: Optional[int] = None,
    config: RelevanceConfig = DEFAULT_RELEVANCE,
) -> List[Mapping[str, Any]]:
    """Purpose: Reduce the inventory to a bounded subset relevant to a question.
    Inputs/Outputs: Inputs are the snapshot records, the user query, an optional cap
        overriding both configured caps, and the heuristic config; output is a list of
        records ordered by descending score, ties kept in inventory order.
    Side Effects / State: None; records are not copied or mutated.
    Dependencies: Uses tokenize_query, has_glass_intent, and score_record.
    Failure Modes: None; empty inventory or query falls back to the first records.
    If Removed: The whole inventory is sent to the model, blowing the context budget.
    Testing Notes: Check the cap, the riesling boost, and the empty-query fallback order.
    """
    match_cap = config.match_cap if cap is None else cap
    fallback_cap = config.fallback_cap if cap is None else cap

    query_norm = normalize_key(query)
    tokens = tokenize_query(query, config)
    glass_intent = has_glass_intent(query)

    scored: List[Tuple[int, int, Mapping[str, Any]]] = []
    for index, record in enumerate(records):
        score = score_record(record, tokens, query_norm, glass_intent, config)
        if score > 0:
            scored.append((score, index, record))

    if scored:
        scored.sort(key=lambda entry: (-entry[0], entry[1]))
        return [record for _, _, record in scored[:match_cap]]

    if glass_intent:
        by_glass = [record for record in records if lookup(record, "Glass")]
        return by_glass[:fallback_cap]
    return list(records[:fallback_cap])
