from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from dialogue_segments.config import DEFAULT_CONFIG, DedupMode, SegmentationConfig
from dialogue_segments.errors import SegmentationIntegrityError
from dialogue_segments.models import DialogueSegment, NarratorSegment, Segment, VerifiedSpan
from dialogue_segments.text import (
    OPENING_GLYPHS,
    QUOTE_GLYPHS,
    dedup_key,
    edges_match,
    find_closing_quote,
    is_all_punctuation,
    preview,
    strip_quotes,
    word_overlap,
)

_LEADING_WORD_RE = re.compile(r"^['’]?[a-z][a-z'’]*")
# Suffix left behind by a boundary that cut a word: no vowels, optional 's.
_SUFFIX_FRAGMENT_RE = re.compile(r"^[^aeiouy'’]*(['’]s?)?$")
_LEADING_PUNCTUATION_RE = re.compile(r"^[.,;:!?…'\"“”‘’]+\s*")
_TRAILING_QUOTE_RE = re.compile(r"[,;:\s]*[\"“”]?\s*$")
_EMPTY_QUOTE_PAIR_RE = re.compile(r"[\"“”]\s*[\"“”]")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([.,;:!?])")
_REPEATED_PUNCT_RE = re.compile(r"([.,;:!?])[.,;:!?]+")
_NARRATOR_QUOTE_GLYPHS = "\"“”"


# ---------- Narrator clean-up ----------


def quote_keys(quotes: Sequence[str]) -> List[str]:
    keys: List[str] = []
    for quote in quotes:
        key = dedup_key(quote)
        if key and key not in keys:
            keys.append(key)
    return keys


def _cut_phrase(text: str, key: str) -> str:
    pattern = re.compile(r"\s+".join(re.escape(part) for part in key.split()), re.IGNORECASE)
    text = pattern.sub("", text)
    text = _EMPTY_QUOTE_PAIR_RE.sub("", text)
    text = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", text)
    text = _REPEATED_PUNCT_RE.sub(r"\1", text)
    return " ".join(text.split()).strip(QUOTE_GLYPHS + " ")


def suppress_duplicates(
    candidate: str,
    keys: Sequence[str],
    config: Optional[SegmentationConfig] = None,
    next_quote: Optional[str] = None,
) -> Tuple[str, Optional[str]]:
    """Strip narrator text that repeats dialogue; returns (text, note).

    Exact repeats always go. Conservative mode drops a candidate only when a
    contained quote dominates it and otherwise leaves echoes alone; aggressive
    mode cuts every contained quote and truncates at a leaked half-quote.
    """
    config = config or DEFAULT_CONFIG
    candidate_key = dedup_key(candidate)
    if not candidate_key:
        return candidate, None
    if candidate_key in keys:
        return "", "exact duplicate of dialogue"

    contained = [
        key for key in keys if len(key) >= config.duplicate_min_chars and key in candidate_key
    ]

    if config.dedup_mode == DedupMode.CONSERVATIVE:
        for key in contained:
            share = len(key) / len(candidate_key)
            if share > config.dominant_duplicate_ratio:
                return "", f"dominant duplicate ({share:.0%}) of {preview(key, 30)!r}"
        return candidate, None

    text = candidate
    note = None
    for key in contained:
        text = _cut_phrase(text, key)
        note = f"removed repeated dialogue {preview(key, 30)!r}"

    if text and next_quote:
        quote = strip_quotes(next_quote)
        if len(quote) > config.partial_duplicate_min_chars:
            first_half = quote[: len(quote) // 2].lower()
            idx = text.lower().find(first_half)
            if idx != -1:
                text = _TRAILING_QUOTE_RE.sub("", text[:idx]).strip()
                note = f"truncated at leaked start of {preview(quote, 20)!r}"
    return text, note


def trim_fragments(
    text: str, cut_mid_word: bool = False, config: Optional[SegmentationConfig] = None
) -> Tuple[str, Optional[str]]:
    """Drop an orphaned word suffix (``ensen?`` from ``Jensen?``) and punctuation-only leftovers."""
    config = config or DEFAULT_CONFIG
    note = None
    match = _LEADING_WORD_RE.match(text)
    if match:
        word = match.group()
        if len(word) <= config.fragment_max_chars and (
            cut_mid_word or _SUFFIX_FRAGMENT_RE.match(word)
        ):
            text = _LEADING_PUNCTUATION_RE.sub("", text[len(word) :].lstrip()).strip()
            note = f"removed orphan fragment {word!r}"
    if text and len(text) <= config.punctuation_only_max_chars and is_all_punctuation(text):
        return "", f"dropped punctuation-only narration {text!r}"
    return text, note


def _narrator_segment(
    prose: str,
    start: int,
    end: int,
    keys: Sequence[str],
    config: SegmentationConfig,
    warnings: List[str],
    next_quote: Optional[str] = None,
) -> Optional[NarratorSegment]:
    # a span that starts or ends just inside its glyphs leaves them orphaned here
    text = prose[start:end].strip().strip(_NARRATOR_QUOTE_GLYPHS).strip()
    if not text:
        return None

    text, note = suppress_duplicates(text, keys, config, next_quote)
    if note:
        logger.warning("build.dedup range=[{start}-{end}] {note}", start=start, end=end, note=note)
        warnings.append(f"Narration [{start}-{end}]: {note}")

    if text:
        cut_mid_word = (
            0 < start < len(prose) and prose[start - 1].isalnum() and prose[start].isalnum()
        )
        text, note = trim_fragments(text, cut_mid_word, config)
        if note:
            logger.warning(
                "build.fragment range=[{start}-{end}] {note}", start=start, end=end, note=note
            )
            warnings.append(f"Narration [{start}-{end}]: {note}")

    if not text:
        return None
    if any(glyph in text for glyph in _NARRATOR_QUOTE_GLYPHS):
        logger.warning(
            "build.narrator_has_quotes range=[{start}-{end}] text={text!r}",
            start=start,
            end=end,
            text=preview(text, 80),
        )
    return NarratorSegment(text=text)


# ---------- Dialogue extraction ----------


def true_end(prose: str, start: int, claimed_end: int) -> int:
    """End offset taken from the prose's own closing glyph when the span opens on one."""
    if start < len(prose) and prose[start] in OPENING_GLYPHS:
        close = find_closing_quote(prose, start)
        if close != -1:
            return close + 1
    return claimed_end


def match_level(
    extracted: str, quote: str, config: Optional[SegmentationConfig] = None
) -> Tuple[str, float]:
    """Classify how well prose text agrees with a claimed quote.

    Levels escalate exact → substring → fuzzy edges → word overlap; only the
    last one carries a score below 1.0.
    """
    config = config or DEFAULT_CONFIG
    found = extracted.lower()
    claimed = quote.lower()
    if found == claimed:
        return "exact", 1.0
    if found and claimed and (found in claimed or claimed in found):
        return "substring", 1.0
    if edges_match(extracted, quote, config.fuzzy_edge_chars):
        return "fuzzy", 1.0
    return "word_overlap", word_overlap(quote, extracted)


def _dialogue_segment(
    prose: str, span: VerifiedSpan, config: SegmentationConfig
) -> DialogueSegment:
    start = span.start_char
    end = true_end(prose, start, span.end_char)
    extracted = strip_quotes(prose[start:end])
    claimed = strip_quotes(span.quote)

    level, score = match_level(extracted, claimed, config)
    if score < config.min_word_overlap:
        message = (
            f"Dialogue for {span.speaker!r} at [{start}-{end}] does not match its claim: "
            f"found {preview(extracted, 30)!r}, expected {preview(claimed, 30)!r} "
            f"(word overlap {score:.0%} < {config.min_word_overlap:.0%})"
        )
        logger.error("build.content_mismatch {message}", message=message)
        raise SegmentationIntegrityError(
            message, speaker=span.speaker, quote=span.quote, metric=score
        )
    if level != "exact":
        logger.debug(
            "build.dialogue_drift speaker={speaker} level={level} extracted={extracted!r} claimed={claimed!r}",
            speaker=span.speaker,
            level=level,
            extracted=preview(extracted),
            claimed=preview(claimed),
        )
    return DialogueSegment(
        speaker=span.speaker,
        text=extracted,
        emotion=span.claim.emotion or "neutral",
        delivery=span.claim.delivery,
        start_char=start,
        end_char=end,
    )


# ---------- Builder ----------


def build_segments(
    prose: str,
    spans: Sequence[VerifiedSpan],
    config: Optional[SegmentationConfig] = None,
    known_quotes: Optional[Sequence[str]] = None,
    warnings: Optional[List[str]] = None,
) -> List[Segment]:
    """Walk positioned spans once, emitting narrator gaps and dialogue in prose order."""
    config = config or DEFAULT_CONFIG
    warnings = warnings if warnings is not None else []
    unplaced = [span for span in spans if not span.positioned]
    if unplaced:
        raise ValueError(
            f"build_segments takes positioned spans only; got {len(unplaced)} "
            f"{unplaced[0].resolution.value} span(s)"
        )

    ordered = sorted(spans, key=lambda span: span.start_char)
    keys = quote_keys(known_quotes if known_quotes is not None else [s.quote for s in ordered])
    logger.info(
        "build.start spans={count} prose_chars={chars} dedup={mode}",
        count=len(ordered),
        chars=len(prose),
        mode=config.dedup_mode.value,
    )

    segments: List[Segment] = []
    last_index = 0
    for idx, span in enumerate(ordered):
        if span.start_char < last_index:
            message = (
                f"Position overlap: span {idx} for {span.speaker!r} starts at "
                f"{span.start_char} but the previous dialogue ends at {last_index} "
                f"({last_index - span.start_char} chars): {preview(span.quote, 30)!r}"
            )
            logger.error("build.overlap {message}", message=message)
            raise SegmentationIntegrityError(
                message,
                speaker=span.speaker,
                quote=span.quote,
                metric=float(last_index - span.start_char),
            )

        if span.start_char > last_index:
            narrator = _narrator_segment(
                prose, last_index, span.start_char, keys, config, warnings, next_quote=span.quote
            )
            if narrator is not None:
                segments.append(narrator)

        dialogue = _dialogue_segment(prose, span, config)
        segments.append(dialogue)
        logger.debug(
            "build.dialogue idx={idx} speaker={speaker} pos=[{start}-{end}] text={text!r}",
            idx=idx,
            speaker=dialogue.speaker,
            start=dialogue.start_char,
            end=dialogue.end_char,
            text=preview(dialogue.text),
        )
        last_index = dialogue.end_char

    if last_index < len(prose):
        narrator = _narrator_segment(prose, last_index, len(prose), keys, config, warnings)
        if narrator is not None:
            segments.append(narrator)

    logger.info(
        "build.done segments={count} narrator={narrator} dialogue={dialogue}",
        count=len(segments),
        narrator=sum(1 for s in segments if s.role == "narrator"),
        dialogue=sum(1 for s in segments if s.role == "dialogue"),
    )
    return segments


def check_integrity(
    prose: str,
    segments: Sequence[Segment],
    config: Optional[SegmentationConfig] = None,
    warnings: Optional[List[str]] = None,
) -> Tuple[int, bool]:
    """Return (segment_chars, duplication_detected); duplication is reported, not raised."""
    config = config or DEFAULT_CONFIG
    total = sum(len(segment.text) for segment in segments)
    limit = len(prose) * (1 + config.duplication_tolerance)
    if total > limit:
        message = (
            f"Text duplication detected: segments total {total} chars but the prose "
            f"is only {len(prose)}"
        )
        logger.error("build.duplication {message}", message=message)
        if warnings is not None:
            warnings.append(message)
        return total, True
    return total, False
