"""
Deterministic keyword extraction.

This is the post-processing step that attestation claims are made
about, so its output must be byte-stable: ties keep first-seen order.
"""

import re
from typing import Dict, List, Sequence

from .models import Keyword

# ASCII word characters only, as a JavaScript /\W+/ split sees them
_SPLIT_RE = re.compile(r'\W+', re.ASCII)

MIN_WORD_LENGTH = 4
TOP_KEYWORDS = 10
SUMMARY_KEYWORDS = 3


def extract_keywords(text: str, limit: int = TOP_KEYWORDS) -> List[Keyword]:
    """
    Top ``limit`` words by frequency.

    Lowercases, splits on non-word runs, drops tokens of three
    characters or fewer, then sorts by descending count.
    """
    counts: Dict[str, int] = {}
    for word in _SPLIT_RE.split(text.lower()):
        if len(word) >= MIN_WORD_LENGTH:
            counts[word] = counts.get(word, 0) + 1
    ranked = sorted(counts.items(), key=lambda kv: -kv[1])
    return [Keyword(word=w, count=c) for w, c in ranked[:limit]]


def keyword_summary(keywords: Sequence[Keyword], n: int = SUMMARY_KEYWORDS) -> str:
    return "Key topics: " + ", ".join(k.word for k in keywords[:n])
