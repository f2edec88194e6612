"""
Exact and approximate keyword detection.

Matching Algorithm:
1. Exact substring containment (always attempted, distance 0)
2. Stop there for keywords that disallow fuzzy matching
3. Single-word keywords: Levenshtein distance against every word in the text
4. Multi-word keywords: distance against every equal-length window of words
5. Keep the closest candidate within ``max_distance``

Guards against spurious matches:
- Words shorter than 3 characters are skipped unless the keyword is short too
- Single-word candidates must satisfy ``distance <= 1`` or
  ``|len(keyword) - len(candidate)| <= distance``
"""

import logging
from typing import Iterable, List, Optional, Union

from voices_router.models import Keyword, KeywordMatch, MatchKind
from voices_router.normalizer import normalize

logger = logging.getLogger(__name__)

# Words shorter than this are ignored as fuzzy candidates for longer keywords
MIN_CANDIDATE_LENGTH = 3

KeywordSpec = Union[Keyword, str, dict]


def levenshtein_distance(first: str, second: str) -> int:
    """
    Edit distance with unit cost insert/delete/substitute (no transpositions).

    Uses the standard dynamic-programming table, keeping only two rows.
    """
    if first == second:
        return 0
    if not first:
        return len(second)
    if not second:
        return len(first)

    previous = list(range(len(second) + 1))
    for i, char_a in enumerate(first, start=1):
        current = [i] + [0] * len(second)
        for j, char_b in enumerate(second, start=1):
            substitution = previous[j - 1] + (0 if char_a == char_b else 1)
            current[j] = min(
                previous[j] + 1,  # deletion
                current[j - 1] + 1,  # insertion
                substitution,
            )
        previous = current
    return previous[-1]


def _as_keyword(spec: KeywordSpec) -> Keyword:
    if isinstance(spec, Keyword):
        return spec
    return Keyword.from_entry(spec)


def _best_word_match(
    needle: str,
    words: List[str],
    max_distance: int,
) -> Optional[tuple]:
    best = None
    best_distance = max_distance + 1
    for word in words:
        # Skip very short words unless keyword is also short
        if len(word) < MIN_CANDIDATE_LENGTH and len(needle) >= MIN_CANDIDATE_LENGTH:
            continue
        distance = levenshtein_distance(needle, word)
        if distance <= max_distance and distance < best_distance:
            length_diff = abs(len(needle) - len(word))
            if distance <= 1 or length_diff <= distance:
                best = (word, distance)
                best_distance = distance
    return best


def _best_phrase_match(
    needle_words: List[str],
    words: List[str],
    max_distance: int,
) -> Optional[tuple]:
    needle = " ".join(needle_words)
    width = len(needle_words)
    best = None
    best_distance = max_distance + 1
    for start in range(len(words) - width + 1):
        phrase = " ".join(words[start:start + width])
        distance = levenshtein_distance(needle, phrase)
        if distance <= max_distance and distance < best_distance:
            best = (phrase, distance)
            best_distance = distance
    return best


def match_keyword(text: str, spec: KeywordSpec, max_distance: int = 1) -> Optional[KeywordMatch]:
    """
    Match a single keyword against normalized text.

    Args:
        text: Normalized message text
        spec: Keyword, bare string or ``{word, fuzzy}`` dict
        max_distance: Maximum accepted edit distance for fuzzy matches

    Returns:
        KeywordMatch (exact or fuzzy) or None
    """
    keyword = _as_keyword(spec)
    needle = normalize(keyword.word)
    if not needle or not text:
        return None

    haystack = text.lower()
    position = haystack.find(needle)
    if position >= 0:
        return KeywordMatch(
            keyword=keyword.word,
            matched_text=needle,
            kind=MatchKind.EXACT,
            distance=0,
            position=position,
        )

    if not keyword.fuzzy or max_distance <= 0:
        return None

    words = haystack.split()
    needle_words = needle.split()
    if len(needle_words) == 1:
        best = _best_word_match(needle, words, max_distance)
    else:
        best = _best_phrase_match(needle_words, words, max_distance)

    if best is None:
        return None

    matched_text, distance = best
    return KeywordMatch(
        keyword=keyword.word,
        matched_text=matched_text,
        kind=MatchKind.FUZZY,
        distance=distance,
        position=haystack.find(matched_text),
    )


def find_keyword_matches(
    text: str,
    keywords: Iterable[KeywordSpec],
    max_distance: int = 1,
) -> List[KeywordMatch]:
    """
    Find at most one match per keyword in normalized text.

    Args:
        text: Normalized message text (see ``normalizer.normalize``)
        keywords: Keyword specs to test
        max_distance: Maximum edit distance (1 = conservative, 2 = lenient)

    Returns:
        Matches in keyword order
    """
    matches = []
    for spec in keywords:
        match = match_keyword(text, spec, max_distance)
        if match is not None:
            matches.append(match)
    if matches:
        logger.debug(
            f"Keyword matches (max_distance={max_distance}): "
            f"{[(m.keyword, m.kind.value, m.distance) for m in matches]}"
        )
    return matches
