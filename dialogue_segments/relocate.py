"""
Position relocation for claimed dialogue spans.

Claimed offsets are computed on an earlier prose snapshot, so any span the
verifier rejects is searched for again, strategy by strategy:

exact pattern → fuzzy prefix → from start → distinctive words → synthetic / failed

All searches are bounded below by `floor`, the end of the last accepted span,
so resolved ranges never overlap. `reconcile` threads that bound through the
claims as an explicit accumulator instead of a captured variable.
"""

from __future__ import annotations

import re
from functools import partial, reduce
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union

from loguru import logger

from dialogue_segments.config import DEFAULT_CONFIG, SegmentationConfig
from dialogue_segments.errors import SegmentationIntegrityError
from dialogue_segments.models import ClaimedSpan, RelocationMethod, Resolution, VerifiedSpan
from dialogue_segments.text import (
    OPENING_GLYPHS,
    QUOTE_PAIRS,
    distinctive_words,
    find_closing_quote,
    iter_quoted_regions,
    preview,
    strip_quotes,
    word_overlap,
    words,
)
from dialogue_segments.verify import slice_matches, verify


class Location(NamedTuple):
    start: int
    end: int
    method: RelocationMethod


# ---------- Search strategies ----------


def _find_exact(prose: str, quote: str, start: int) -> Optional[Tuple[int, int]]:
    """Earliest occurrence at or after `start` of the quote in any glyph style."""
    best: Optional[Tuple[int, int]] = None
    for opener, closer in QUOTE_PAIRS:
        pattern = f"{opener}{quote}{closer}"
        idx = prose.find(pattern, start)
        if idx != -1 and (best is None or idx < best[0]):
            best = (idx, idx + len(pattern))
    return best


def _find_by_prefix(
    prose: str, quote: str, start: int, prefix_chars: int
) -> Optional[Tuple[int, int]]:
    """Opening glyph + quote prefix, closed by the matching glyph (handles truncated quotes)."""
    prefix = quote[:prefix_chars]
    if not prefix:
        return None
    best: Optional[Tuple[int, int]] = None
    for opener in OPENING_GLYPHS:
        pattern = re.compile(re.escape(opener + prefix), re.IGNORECASE)
        pos = start
        while True:
            match = pattern.search(prose, pos)
            if match is None or (best is not None and match.start() >= best[0]):
                break
            close = find_closing_quote(prose, match.start())
            if close != -1:
                best = (match.start(), close + 1)
                break
            pos = match.start() + 1
    return best


def _find_by_words(
    prose: str, quote: str, floor: int, config: SegmentationConfig
) -> Optional[Tuple[int, int]]:
    targets = distinctive_words(
        quote, config.distinctive_word_min_len, config.distinctive_word_count
    )
    if len(targets) < config.min_distinctive_hits:
        return None
    for start, end, inner in iter_quoted_regions(prose, floor):
        present = set(words(inner))
        hits = sum(1 for word in targets if word in present)
        if hits >= config.min_distinctive_hits:
            return start, end
    return None


def locate(
    prose: str,
    quote: str,
    search_start: int,
    floor: int = 0,
    config: Optional[SegmentationConfig] = None,
) -> Optional[Location]:
    """Run the positional strategies in order; None when the quote cannot be placed."""
    config = config or DEFAULT_CONFIG
    normalized = strip_quotes(quote)
    if not normalized:
        return None
    search_start = max(search_start, floor)

    found = _find_exact(prose, normalized, search_start)
    if found:
        return Location(*found, RelocationMethod.EXACT_PATTERN)

    found = _find_by_prefix(prose, normalized, search_start, config.relocate_prefix_chars)
    if found:
        return Location(*found, RelocationMethod.FUZZY_PREFIX)

    # Retry from the top of the document for text that moved backwards; the
    # first hit at or past `floor` is the only acceptable one.
    if search_start > floor:
        found = _find_exact(prose, normalized, floor)
        if found:
            return Location(*found, RelocationMethod.FROM_START)

    found = _find_by_words(prose, normalized, floor, config)
    if found:
        return Location(*found, RelocationMethod.FUZZY_WORD_MATCH)
    return None


def relocate(
    prose: str,
    span: ClaimedSpan,
    search_start: int,
    floor: int = 0,
    config: Optional[SegmentationConfig] = None,
    reason: str = "invalid_position",
) -> VerifiedSpan:
    """Resolve a span whose claimed position failed verification."""
    config = config or DEFAULT_CONFIG
    location = locate(prose, span.quote, search_start, floor, config)
    if location is not None:
        logger.info(
            "relocate.found speaker={speaker} method={method} old=[{old_start}-{old_end}] new=[{start}-{end}]",
            speaker=span.speaker,
            method=location.method.value,
            old_start=span.start_char,
            old_end=span.end_char,
            start=location.start,
            end=location.end,
        )
        return VerifiedSpan(
            claim=span,
            resolution=Resolution.RELOCATED,
            method=location.method,
            start_char=location.start,
            end_char=location.end,
            reason=reason,
        )

    normalized = strip_quotes(span.quote)
    if not normalized:
        logger.warning("relocate.empty_quote speaker={speaker}", speaker=span.speaker)
        return VerifiedSpan(claim=span, resolution=Resolution.FAILED, reason="empty_quote")

    coverage = word_overlap(normalized, prose)
    if (
        config.synthetic_fallback
        and len(normalized) > config.synthetic_min_chars
        and coverage >= config.min_word_overlap
    ):
        logger.warning(
            "relocate.synthetic speaker={speaker} quote={quote!r} coverage={coverage:.2f}",
            speaker=span.speaker,
            quote=preview(normalized),
            coverage=coverage,
        )
        return VerifiedSpan(
            claim=span,
            resolution=Resolution.SYNTHETIC,
            reason=f"not_located (word coverage {coverage:.2f})",
        )

    logger.warning(
        "relocate.failed speaker={speaker} quote={quote!r} search_start={search_start} coverage={coverage:.2f}",
        speaker=span.speaker,
        quote=preview(normalized, 50),
        search_start=search_start,
        coverage=coverage,
    )
    return VerifiedSpan(
        claim=span,
        resolution=Resolution.FAILED,
        reason=f"not_located (word coverage {coverage:.2f})",
    )


# ---------- Reconciliation fold ----------


class _Accumulator(NamedTuple):
    cursor: int
    resolved: Tuple[VerifiedSpan, ...]


def _repeats_accepted_text(
    prose: str, span: ClaimedSpan, acc: _Accumulator, config: SegmentationConfig
) -> bool:
    """True when an unplaced claim points at, or repeats, text already accepted for other spans."""
    if slice_matches(prose, span, config):
        return True
    quote = strip_quotes(span.quote).lower()
    return bool(quote) and quote in prose[: acc.cursor].lower()


def _reconcile_step(
    prose: str, config: SegmentationConfig, acc: _Accumulator, span: ClaimedSpan
) -> _Accumulator:
    check = verify(prose, span, acc.cursor, config)
    if check.valid:
        logger.debug(
            "reconcile.verified speaker={speaker} pos=[{start}-{end}]",
            speaker=span.speaker,
            start=span.start_char,
            end=span.end_char,
        )
        resolved = VerifiedSpan(
            claim=span,
            resolution=Resolution.VERIFIED,
            start_char=span.start_char,
            end_char=span.end_char,
            reason=check.reason,
        )
    else:
        # Claimed offsets are stale, so only the cursor bounds the search; the
        # earliest occurrence past it wins.
        resolved = relocate(prose, span, acc.cursor, acc.cursor, config, reason=check.reason)

    if not resolved.positioned:
        if check.reason == "behind_cursor" and _repeats_accepted_text(prose, span, acc, config):
            message = (
                f"Span for {span.speaker!r} at [{span.start_char}-{span.end_char}] overlaps "
                f"dialogue accepted up to {acc.cursor}: {preview(span.quote, 30)!r}"
            )
            logger.error("reconcile.overlap {message}", message=message)
            raise SegmentationIntegrityError(
                message,
                speaker=span.speaker,
                quote=span.quote,
                metric=float(acc.cursor - span.start_char),
            )
        return _Accumulator(acc.cursor, acc.resolved + (resolved,))
    if resolved.start_char < acc.cursor:
        message = (
            f"Resolved span for {span.speaker!r} starts at {resolved.start_char}, "
            f"before the previous span ends at {acc.cursor}: {preview(span.quote, 30)!r}"
        )
        logger.error("reconcile.overlap {message}", message=message)
        raise SegmentationIntegrityError(message, speaker=span.speaker, quote=span.quote)
    return _Accumulator(resolved.end_char, acc.resolved + (resolved,))


def coerce_spans(spans: Iterable[Union[ClaimedSpan, dict]]) -> List[ClaimedSpan]:
    return [
        span if isinstance(span, ClaimedSpan) else ClaimedSpan.model_validate(span)
        for span in spans
    ]


def reconcile(
    prose: str,
    spans: Sequence[Union[ClaimedSpan, dict]],
    config: Optional[SegmentationConfig] = None,
) -> List[VerifiedSpan]:
    """Verify or relocate every claim, in claimed-position order."""
    config = config or DEFAULT_CONFIG
    claims = sorted(coerce_spans(spans), key=lambda span: span.start_char)
    logger.info(
        "reconcile.start spans={count} prose_chars={chars}",
        count=len(claims),
        chars=len(prose),
    )
    final = reduce(partial(_reconcile_step, prose, config), claims, _Accumulator(0, ()))
    resolved = list(final.resolved)
    logger.info(
        "reconcile.done verified={verified} relocated={relocated} synthetic={synthetic} failed={failed}",
        verified=sum(1 for item in resolved if item.resolution == Resolution.VERIFIED),
        relocated=sum(1 for item in resolved if item.resolution == Resolution.RELOCATED),
        synthetic=sum(1 for item in resolved if item.resolution == Resolution.SYNTHETIC),
        failed=sum(1 for item in resolved if item.resolution == Resolution.FAILED),
    )
    return resolved


def enforce_failure_policy(
    resolved: Sequence[VerifiedSpan], config: Optional[SegmentationConfig] = None
) -> List[str]:
    """Abort on structurally broken maps; otherwise return one warning per dropped span."""
    config = config or DEFAULT_CONFIG
    total = len(resolved)
    if total == 0:
        return []
    failed = [item for item in resolved if item.resolution == Resolution.FAILED]
    rate = len(failed) / total

    if len(failed) == total:
        message = f"All {total} dialogue spans failed verification; cannot build segments."
        logger.error("reconcile.all_failed {message}", message=message)
        raise SegmentationIntegrityError(message, metric=rate)
    if rate > config.failure_threshold:
        message = (
            f"{len(failed)}/{total} dialogue spans ({rate:.0%}) could not be located in "
            f"the prose (threshold {config.failure_threshold:.0%}); first: "
            f"{failed[0].speaker!r} {preview(strip_quotes(failed[0].quote), 30)!r}"
        )
        logger.error("reconcile.failure_rate {message}", message=message)
        raise SegmentationIntegrityError(
            message, speaker=failed[0].speaker, quote=failed[0].quote, metric=rate
        )

    warnings = [
        f"Dropped span for {item.speaker!r} ({item.reason}): {preview(strip_quotes(item.quote))!r}"
        for item in failed
    ]
    for warning in warnings:
        logger.warning("reconcile.dropped {warning}", warning=warning)
    return warnings
