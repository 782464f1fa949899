"""
Text Matching Utilities

Label normalization and similarity measures shared by the heuristic
scorer, the selector memory store and the semantic index.
"""

import re
import math
import unicodedata
from collections import Counter
from typing import Dict, List, Optional

from Levenshtein import distance as levenshtein_distance


# German digraphs are folded before generic accent stripping so that
# "Bestätigen" and "bestaetigen" normalize identically.
DIGRAPH_MAP: Dict[str, str] = {
    "ä": "ae",
    "ö": "oe",
    "ü": "ue",
    "ß": "ss",
}

_NON_WORD = re.compile(r"[^\w\s]", re.ASCII)
_WHITESPACE = re.compile(r"\s+")
_HREF_SPLIT = re.compile(r"[/#?&]+")


def fold_diacritics(text: str) -> str:
    """Map digraph umlauts, then drop any remaining combining marks"""
    folded = "".join(DIGRAPH_MAP.get(ch, ch) for ch in text)
    decomposed = unicodedata.normalize("NFKD", folded)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(text: Optional[str]) -> str:
    """
    Normalize text for comparison.

    Lowercases, folds diacritics to ASCII, turns punctuation into
    spaces and collapses whitespace.
    """
    if not text:
        return ""
    lowered = fold_diacritics(text.lower())
    spaced = _NON_WORD.sub(" ", lowered)
    return _WHITESPACE.sub(" ", spaced).strip()


def fuzzy_similarity(a: str, b: str) -> float:
    """
    Similarity of two normalized strings.

    1.0 for equality, 0.8 when one contains the other, otherwise
    1 - levenshtein / max_len.
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    if a in b or b in a:
        return 0.8
    return 1.0 - (levenshtein_distance(a, b) / max(len(a), len(b)))


def token_cosine(a: str, b: str) -> float:
    """Cosine similarity of whitespace token count vectors"""
    if a == b:
        return 1.0
    ta = Counter(a.split())
    tb = Counter(b.split())
    if not ta or not tb:
        return 0.0
    dot = sum(ta[t] * tb[t] for t in ta.keys() & tb.keys())
    na = math.sqrt(sum(v * v for v in ta.values()))
    nb = math.sqrt(sum(v * v for v in tb.values()))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


def href_to_label(href: Optional[str]) -> Optional[str]:
    """Turn '/settings/profile?tab=1' into 'settings profile tab=1'"""
    if not href:
        return None
    parts = [p for p in _HREF_SPLIT.split(href) if p]
    return " ".join(parts) or None


def best_similarity(target: str, candidates: List[str]) -> float:
    """Max of fuzzy and token cosine similarity over all candidates"""
    best = 0.0
    for candidate in candidates:
        score = max(fuzzy_similarity(target, candidate), token_cosine(target, candidate))
        if score > best:
            best = score
    return best
