from __future__ import annotations

import re

from reading_log.core.models import RawBook
from reading_log.core.normalize import swap_last_first

SAME_BOOK_THRESHOLD = 0.92

_LEADING_ARTICLE_RE = re.compile(r"^(the|a|an)\s+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WS_RE = re.compile(r"\s+")


def normalize_for_match(s: str) -> str:
    s = (s or "").lower()
    s = _LEADING_ARTICLE_RE.sub("", s, count=1)
    s = _NON_ALNUM_RE.sub("", s)
    s = _WS_RE.sub(" ", s)
    return s.strip()


def normalize_author_for_match(s: str) -> str:
    return normalize_for_match(swap_last_first((s or "").strip()))


def _jaccard(s1: str, s2: str) -> float:
    if s1 == s2:
        return 1.0
    words1 = set(s1.split())
    words2 = set(s2.split())
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def similarity(a: str, b: str) -> float:
    """Word-level Jaccard similarity in [0, 1] after match normalization."""
    return _jaccard(normalize_for_match(a), normalize_for_match(b))


def author_similarity(a: str, b: str) -> float:
    return _jaccard(normalize_author_for_match(a), normalize_author_for_match(b))


def is_same_book(a: RawBook, b: RawBook, threshold: float = SAME_BOOK_THRESHOLD) -> bool:
    """
    Author must match, then either the titles match or one title contains
    the other ("Dune" vs "Dune: Deluxe Edition").
    """
    if author_similarity(a.author, b.author) <= threshold:
        return False
    t1 = normalize_for_match(a.title)
    t2 = normalize_for_match(b.title)
    if _jaccard(t1, t2) > threshold:
        return True
    return t1 in t2 or t2 in t1
