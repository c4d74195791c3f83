"""Credits keyword parsing and matching against OCR text."""

import re
from typing import List

from rapidfuzz import fuzz

_DELIMITERS = re.compile(r"[,;]")


def parse_keywords(raw: str) -> List[str]:
    """
    Split a comma or semicolon delimited keyword list.

    Entries are stripped and lower-cased; blanks and duplicates are dropped,
    keeping first-seen order.
    """
    if not raw:
        return []
    seen = set()
    keywords = []
    for part in _DELIMITERS.split(raw):
        keyword = part.strip().lower()
        if keyword and keyword not in seen:
            seen.add(keyword)
            keywords.append(keyword)
    return keywords


def find_keyword_matches(text: str, keywords: List[str], fuzzy_threshold: float = 0.0) -> List[str]:
    """
    Return the keywords found in OCR text.

    Args:
        text: Text extracted from a frame
        keywords: Lower-cased keywords from parse_keywords
        fuzzy_threshold: 0 for exact substring matching only. Otherwise a
            0.0-1.0 partial-ratio threshold applied to keywords longer than
            3 characters, to tolerate OCR noise.

    Returns:
        Matched keywords in keyword-list order
    """
    if not text or not keywords:
        return []

    normalized = " ".join(text.lower().split())
    matches = []
    for keyword in keywords:
        if keyword in normalized:
            matches.append(keyword)
        elif fuzzy_threshold > 0 and len(keyword) > 3:
            score = fuzz.partial_ratio(keyword, normalized) / 100.0
            if score >= fuzzy_threshold:
                matches.append(keyword)
    return matches
