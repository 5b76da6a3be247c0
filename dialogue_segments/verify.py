from __future__ import annotations

from typing import NamedTuple, Optional

from loguru import logger

from dialogue_segments.config import DEFAULT_CONFIG, SegmentationConfig
from dialogue_segments.models import ClaimedSpan
from dialogue_segments.text import prefix_overlap, preview, strip_quotes


class Verification(NamedTuple):
    valid: bool
    reason: str


def slice_matches(
    prose: str, span: ClaimedSpan, config: Optional[SegmentationConfig] = None
) -> bool:
    """Text check alone: the claimed slice holds the quote, wherever the cursor is."""
    config = config or DEFAULT_CONFIG
    actual = strip_quotes(prose[max(span.start_char, 0) : span.end_char])
    return prefix_overlap(actual, strip_quotes(span.quote), config.verify_prefix_chars)


def verify(
    prose: str,
    span: ClaimedSpan,
    cursor: int = 0,
    config: Optional[SegmentationConfig] = None,
) -> Verification:
    """Check whether the claimed offsets still hold the claimed quote.

    Validity is relative to `cursor`, the end of the previously accepted span:
    a span that reaches back behind it is rejected even if its text matches.
    The function is pure; callers advance the cursor themselves.
    """
    config = config or DEFAULT_CONFIG
    if not 0 <= span.start_char < span.end_char <= len(prose):
        return Verification(False, "out_of_bounds")
    if span.start_char < cursor:
        return Verification(False, "behind_cursor")

    actual = strip_quotes(prose[span.start_char : span.end_char])
    if not actual:
        return Verification(False, "empty_slice")
    if not slice_matches(prose, span, config):
        logger.debug(
            "verify.mismatch speaker={speaker} expected={expected!r} found={found!r}",
            speaker=span.speaker,
            expected=preview(strip_quotes(span.quote), 30),
            found=preview(actual, 30),
        )
        return Verification(False, "text_mismatch")
    return Verification(True, "ok")
