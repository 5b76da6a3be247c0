from __future__ import annotations

import re
from typing import Iterator, List, Tuple

QUOTE_GLYPHS = "\"“”'‘’"
# (opening, closing) pairs tried when a quote is re-wrapped for searching.
QUOTE_PAIRS: Tuple[Tuple[str, str], ...] = (('"', '"'), ("“", "”"), ("'", "'"))
OPENING_GLYPHS = "\"“'‘"
_CLOSERS = {'"': '"', "“": "”", "'": "'", "‘": "’"}
_APOSTROPHES = "'’"
_EDGE_PUNCTUATION = ".,;:!?…—–-"
_KEY_EDGES = QUOTE_GLYPHS + _EDGE_PUNCTUATION + " \t\r\n"

_WORD_RE = re.compile(r"[a-z0-9]+(?:['’][a-z]+)*")
_QUOTED_REGION_RE = re.compile(r'"[^"]+"|“[^”]+”')


def strip_quotes(text: str) -> str:
    """Trim whitespace and any leading/trailing quote glyphs."""
    return text.strip().strip(QUOTE_GLYPHS).strip()


def preview(text: str, limit: int = 40) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[:limit] + "..."


def prefix_overlap(actual: str, quote: str, prefix_chars: int) -> bool:
    """True when either string's prefix appears inside the other (case-insensitive).

    Both inputs are expected to be glyph-stripped already. An empty side never
    matches, since the empty string is a substring of everything.
    """
    if not actual or not quote:
        return False
    actual_l = actual.lower()
    quote_l = quote.lower()
    return quote_l[:prefix_chars] in actual_l or actual_l[:prefix_chars] in quote_l


def edges_match(left: str, right: str, edge_chars: int) -> bool:
    """Same opening and closing characters; only the interior wording drifted."""
    left_l = left.lower()
    right_l = right.lower()
    if len(left_l) < edge_chars or len(right_l) < edge_chars:
        return False
    return left_l[:edge_chars] == right_l[:edge_chars] and left_l[-edge_chars:] == right_l[-edge_chars:]


def words(text: str) -> List[str]:
    return _WORD_RE.findall(text.lower())


def word_overlap(reference: str, candidate: str) -> float:
    """Share of the distinct words of `reference` that also occur in `candidate`."""
    ref = set(words(reference))
    if not ref:
        return 0.0
    return len(ref & set(words(candidate))) / len(ref)


def distinctive_words(text: str, min_len: int = 5, count: int = 3) -> List[str]:
    """Longest distinct words of at least `min_len` characters, longest first."""
    seen: List[str] = []
    for word in words(text):
        if len(word) >= min_len and word not in seen:
            seen.append(word)
    # stable sort keeps first-seen order among equal lengths
    seen.sort(key=len, reverse=True)
    return seen[:count]


def dedup_key(text: str) -> str:
    """Case-folded, whitespace-collapsed text with quote glyphs and edge punctuation removed."""
    return " ".join(text.lower().split()).strip(_KEY_EDGES)


def is_apostrophe(text: str, index: int) -> bool:
    """A ' or ’ between two word characters (don't, O’Neil) is not a quote mark."""
    if text[index] not in _APOSTROPHES:
        return False
    return 0 < index < len(text) - 1 and text[index - 1].isalnum() and text[index + 1].isalnum()


def find_closing_quote(text: str, open_index: int) -> int:
    """Index of the glyph closing the quote opened at `open_index`, or -1.

    Same-style openers met on the way raise the nesting depth; straight
    double quotes cannot nest, so the next one closes.
    """
    if open_index < 0 or open_index >= len(text):
        return -1
    opener = text[open_index]
    closer = _CLOSERS.get(opener)
    if closer is None:
        return -1
    depth = 0
    for i in range(open_index + 1, len(text)):
        ch = text[i]
        if ch == closer and not is_apostrophe(text, i):
            if depth == 0:
                return i
            depth -= 1
        elif ch == opener and opener != closer:
            depth += 1
    return -1


def iter_quoted_regions(text: str, start: int = 0) -> Iterator[Tuple[int, int, str]]:
    """Yield (start, end, inner_text) for each double-quoted region at or after `start`."""
    for match in _QUOTED_REGION_RE.finditer(text):
        if match.start() < start:
            continue
        yield match.start(), match.end(), match.group()[1:-1]


def is_all_punctuation(text: str) -> bool:
    stripped = text.strip()
    return not stripped or all(not ch.isalnum() for ch in stripped)
