"""
Dialogue map → audio segments.

Entry points used by the scene orchestrator:

* ``convert_dialogue_map_to_segments`` / ``segment_scene`` — verify, relocate
  and build segments from the *current* prose. Raises
  ``SegmentationIntegrityError`` rather than emit mis-attributed dialogue.
* ``validate_dialogue_map`` — read-only pre-flight before a map is stored.
* ``find_missing_speakers`` — speakers that would have no voice at synthesis.

Every call is a pure function of its inputs; nothing is cached between scenes.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Union

from loguru import logger
from pydantic import ValidationError

from dialogue_segments.builder import build_segments, check_integrity
from dialogue_segments.config import DEFAULT_CONFIG, SegmentationConfig
from dialogue_segments.models import (
    NARRATOR,
    ClaimedSpan,
    DialogueMapValidation,
    NarratorSegment,
    Resolution,
    Segment,
    SegmentationReport,
    SegmentationResult,
    SyntheticSegment,
    VerifiedSpan,
)
from dialogue_segments.relocate import coerce_spans, enforce_failure_policy, reconcile
from dialogue_segments.text import preview, strip_quotes

SpanLike = Union[ClaimedSpan, dict]


def _place_synthetic(
    resolved: Sequence[VerifiedSpan], segments: List[Segment], warnings: List[str]
) -> List[Segment]:
    """Slot unanchored dialogue after the dialogue of the nearest preceding placed claim."""
    anchored: Dict[int, List[Segment]] = {}
    placed = -1
    for item in resolved:
        if item.positioned:
            placed += 1
        elif item.resolution == Resolution.SYNTHETIC:
            anchored.setdefault(placed, []).append(
                SyntheticSegment(
                    speaker=item.speaker,
                    text=strip_quotes(item.quote),
                    emotion=item.claim.emotion or "neutral",
                    delivery=item.claim.delivery,
                )
            )
            warnings.append(
                f"Kept unplaced dialogue for {item.speaker!r} as synthetic: "
                f"{preview(strip_quotes(item.quote))!r}"
            )
    if not anchored:
        return segments

    merged: List[Segment] = []
    leading = anchored.pop(-1, [])
    dialogue_seen = -1
    for segment in segments:
        if segment.role == "dialogue":
            if dialogue_seen == -1 and leading:
                merged.extend(leading)
                leading = []
            dialogue_seen += 1
            merged.append(segment)
            merged.extend(anchored.get(dialogue_seen, []))
        else:
            merged.append(segment)
    # no placed dialogue at all: unanchored lines follow the narration
    merged.extend(leading)
    return merged


def segment_scene(
    prose: str,
    dialogue_map: Optional[Sequence[SpanLike]],
    config: Optional[SegmentationConfig] = None,
) -> SegmentationResult:
    """Full pipeline with an audit report of every resolution and warning."""
    config = config or DEFAULT_CONFIG
    if not dialogue_map:
        logger.debug("segment.no_dialogue prose_chars={chars}", chars=len(prose))
        return SegmentationResult(
            segments=[NarratorSegment(text=prose)],
            report=SegmentationReport(prose_chars=len(prose), segment_chars=len(prose)),
        )

    resolved = reconcile(prose, dialogue_map, config)
    warnings = enforce_failure_policy(resolved, config)

    positioned = [item for item in resolved if item.positioned]
    known_quotes = [item.quote for item in resolved if item.resolution != Resolution.FAILED]
    segments = build_segments(prose, positioned, config, known_quotes, warnings)
    segments = _place_synthetic(resolved, segments, warnings)
    segment_chars, duplicated = check_integrity(prose, segments, config, warnings)

    counts = {resolution: 0 for resolution in Resolution}
    for item in resolved:
        counts[item.resolution] += 1
    report = SegmentationReport(
        total=len(resolved),
        verified=counts[Resolution.VERIFIED],
        relocated=counts[Resolution.RELOCATED],
        synthetic=counts[Resolution.SYNTHETIC],
        failed=counts[Resolution.FAILED],
        failure_rate=counts[Resolution.FAILED] / len(resolved),
        prose_chars=len(prose),
        segment_chars=segment_chars,
        duplication_detected=duplicated,
        warnings=warnings,
        resolutions=resolved,
    )
    logger.info(
        "segment.done segments={segments} verified={verified} relocated={relocated} "
        "synthetic={synthetic} failed={failed} chars={chars}/{prose_chars}",
        segments=len(segments),
        verified=report.verified,
        relocated=report.relocated,
        synthetic=report.synthetic,
        failed=report.failed,
        chars=segment_chars,
        prose_chars=len(prose),
    )
    return SegmentationResult(segments=segments, report=report)


def convert_dialogue_map_to_segments(
    prose: str,
    dialogue_map: Optional[Sequence[SpanLike]],
    config: Optional[SegmentationConfig] = None,
) -> List[Segment]:
    """Ordered narrator/dialogue segments for `prose`; see `segment_scene` for the report."""
    return segment_scene(prose, dialogue_map, config).segments


def validate_dialogue_map(
    dialogue_map: Optional[Sequence[SpanLike]], known_speakers: Iterable[str]
) -> DialogueMapValidation:
    """Check speakers and offsets of a stored map without looking at the prose."""
    if not dialogue_map:
        return DialogueMapValidation(valid=True)

    names = {name.strip().lower() for name in known_speakers if name and name.strip()}
    errors: List[str] = []
    for idx, raw in enumerate(dialogue_map):
        try:
            span = raw if isinstance(raw, ClaimedSpan) else ClaimedSpan.model_validate(raw)
        except ValidationError as exc:
            errors.append(f"Dialogue {idx} is malformed ({exc.error_count()} field error(s))")
            continue
        label = preview(strip_quotes(span.quote), 30)
        speaker = span.speaker.strip()
        if not speaker:
            errors.append(f'Dialogue "{label}" has no speaker')
        elif speaker.lower() not in names:
            errors.append(f'Speaker "{speaker}" not found in character list')
        if span.start_char < 0 or span.end_char < span.start_char:
            errors.append(
                f'Invalid positions [{span.start_char}-{span.end_char}] for dialogue "{label}"'
            )

    if errors:
        logger.warning(
            "validate.failed spans={count} errors={errors}",
            count=len(dialogue_map),
            errors=len(errors),
        )
    return DialogueMapValidation(valid=not errors, errors=errors)


def find_missing_speakers(
    dialogue_map: Optional[Sequence[SpanLike]], voiced_speakers: Iterable[str]
) -> List[str]:
    """Lower-cased non-narrator speakers with no voice, in first-seen order."""
    if not dialogue_map:
        return []
    voiced = {name.strip().lower() for name in voiced_speakers}
    missing: List[str] = []
    for span in coerce_spans(dialogue_map):
        speaker = span.speaker.strip().lower()
        if speaker and speaker != NARRATOR and speaker not in voiced and speaker not in missing:
            missing.append(speaker)
    return missing
