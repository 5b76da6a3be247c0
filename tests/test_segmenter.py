from typing import Dict, List

import pytest

from dialogue_segments.config import DedupMode, SegmentationConfig
from dialogue_segments.errors import SegmentationIntegrityError
from dialogue_segments.models import (
    DialogueSegment,
    NarratorSegment,
    Resolution,
    SyntheticSegment,
)
from dialogue_segments.segmenter import (
    convert_dialogue_map_to_segments,
    find_missing_speakers,
    segment_scene,
    validate_dialogue_map,
)
from dialogue_segments.text import words

STRICT = SegmentationConfig(synthetic_fallback=False)
PARAPHRASED_ANA = {
    "speaker": "Ana",
    "quote": '"I will wait by the river until nightfall."',
    "start_char": 0,
    "end_char": 10,
    "emotion": "calm",
}
GARBLED = [
    '"Zebras juggle quantum pineapples nightly."',
    '"Purple elephants dance across frozen mountains."',
    '"Seventeen violins echo through empty cathedrals."',
]


def _roles(segments) -> List[str]:
    return [segment.role for segment in segments]


def test_verified_span_builds_three_segments(jensen_prose: str, jensen_span: Dict) -> None:
    segments = convert_dialogue_map_to_segments(jensen_prose, [jensen_span])
    assert segments == [
        NarratorSegment(text="Jensen walked in."),
        DialogueSegment(
            speaker="Jensen", text="We need to move,", emotion="urgent", start_char=17, end_char=36
        ),
        NarratorSegment(text=", she said, glancing back."),
    ]


def test_stale_offsets_are_relocated(jensen_prose: str, jensen_span: Dict) -> None:
    prose = "\n" * 5 + jensen_prose
    result = segment_scene(prose, [jensen_span])
    assert [segment.text for segment in result.segments] == [
        "Jensen walked in.",
        "We need to move,",
        ", she said, glancing back.",
    ]
    dialogue = result.segments[1]
    assert (dialogue.start_char, dialogue.end_char) == (23, 41)
    assert result.report.relocated == 1
    assert result.report.verified == 0
    assert result.report.resolutions[0].reason == "text_mismatch"


@pytest.mark.parametrize("dialogue_map", [None, []])
def test_scene_without_dialogue_is_all_narration(dialogue_map) -> None:
    prose = "The house was quiet."
    assert convert_dialogue_map_to_segments(prose, dialogue_map) == [NarratorSegment(text=prose)]


@pytest.mark.parametrize(
    "mode, expected",
    [
        (DedupMode.CONSERVATIVE, ["Come here,", "she said. Come here."]),
        (DedupMode.AGGRESSIVE, ["Come here,", "she said."]),
    ],
)
def test_dedup_modes_on_echoed_dialogue(mode: DedupMode, expected: List[str]) -> None:
    prose = '"Come here," she said. Come here.'
    span = {"speaker": "Mara", "quote": '"Come here,"', "start_char": 0, "end_char": 12}
    segments = convert_dialogue_map_to_segments(
        prose, [span], SegmentationConfig(dedup_mode=mode)
    )
    assert [segment.text for segment in segments] == expected


@pytest.mark.parametrize("config", [SegmentationConfig(), STRICT])
def test_too_many_unlocatable_spans_abort(storm_scene, config: SegmentationConfig) -> None:
    prose, spans = storm_scene
    garbled = [
        {"speaker": "Mara", "quote": quote, "start_char": 5 + idx, "end_char": 40 + idx}
        for idx, quote in enumerate(GARBLED)
    ]
    with pytest.raises(SegmentationIntegrityError) as excinfo:
        convert_dialogue_map_to_segments(prose, spans[:7] + garbled, config)
    assert excinfo.value.metric == pytest.approx(0.3)
    assert "3/10" in str(excinfo.value)


def test_lenient_mode_keeps_paraphrase_as_synthetic(storm_scene) -> None:
    prose, spans = storm_scene
    result = segment_scene(prose, spans + [PARAPHRASED_ANA])

    synthetic = [s for s in result.segments if isinstance(s, SyntheticSegment)]
    assert synthetic == [
        SyntheticSegment(
            speaker="Ana", text="I will wait by the river until nightfall.", emotion="calm"
        )
    ]
    # no placed claim precedes it, so it leads the dialogue
    assert _roles(result.segments)[:3] == ["narrator", "synthetic", "dialogue"]
    assert result.report.synthetic == 1
    assert result.report.failed == 0
    assert any("as synthetic" in warning for warning in result.report.warnings)


def test_strict_mode_drops_paraphrase_with_warning(storm_scene) -> None:
    prose, spans = storm_scene
    result = segment_scene(prose, spans + [PARAPHRASED_ANA], STRICT)

    assert "synthetic" not in _roles(result.segments)
    assert _roles(result.segments).count("dialogue") == len(spans)
    assert result.report.failed == 1
    assert result.report.failure_rate == pytest.approx(0.1)
    assert any(warning.startswith("Dropped span for 'Ana'") for warning in result.report.warnings)


def test_synthetic_follows_the_preceding_placed_claim(jensen_prose: str, jensen_span: Dict) -> None:
    prose = jensen_prose + " She wanted to leave before the patrol came back."
    paraphrase = {
        "speaker": "Jensen",
        "quote": '"We have to leave before the patrol comes back."',
        "start_char": 40,
        "end_char": 60,
    }
    segments = convert_dialogue_map_to_segments(prose, [jensen_span, paraphrase])
    assert _roles(segments) == ["narrator", "dialogue", "synthetic", "narrator"]


def test_segmentation_invariants_hold(storm_scene) -> None:
    prose, spans = storm_scene
    result = segment_scene(prose, spans)
    segments = result.segments

    # every word of the prose survives, in order
    assert words(" ".join(segment.text for segment in segments)) == words(prose)
    dialogue = [s for s in segments if isinstance(s, DialogueSegment)]
    assert [s.speaker for s in dialogue] == [span["speaker"] for span in spans]
    for left, right in zip(dialogue, dialogue[1:]):
        assert left.end_char <= right.start_char
    assert result.report.segment_chars <= 1.05 * result.report.prose_chars
    assert not result.report.duplication_detected
    assert result.report.verified == len(spans)


def test_segmentation_is_repeatable_and_order_independent(storm_scene) -> None:
    prose, spans = storm_scene
    first = convert_dialogue_map_to_segments(prose, spans)
    assert convert_dialogue_map_to_segments(prose, spans) == first
    assert convert_dialogue_map_to_segments(prose, list(reversed(spans))) == first


def test_extra_claim_fields_pass_through(jensen_prose: str, jensen_span: Dict) -> None:
    claim = {**jensen_span, "confidence": 0.92, "reasoning": "tag follows", "id": "d-1"}
    result = segment_scene(jensen_prose, [claim])
    assert result.report.resolutions[0].claim.confidence == pytest.approx(0.92)
    assert result.report.resolutions[0].resolution == Resolution.VERIFIED


# ---------- Pre-flight checks ----------


def test_validate_accepts_known_speakers_case_insensitively(storm_scene) -> None:
    _, spans = storm_scene
    result = validate_dialogue_map(spans, ["MARA", "tomas", " Ana "])
    assert result.valid
    assert result.errors == []
    assert validate_dialogue_map(None, []).valid


def test_validate_collects_every_problem() -> None:
    dialogue_map = [
        {"speaker": "Zed", "quote": '"Hi there"', "start_char": 0, "end_char": 5},
        {"speaker": "  ", "quote": '"Hi there"', "start_char": 0, "end_char": 5},
        {"speaker": "Mara", "quote": '"Hi there"', "start_char": 10, "end_char": 5},
        {"quote": "x"},
    ]
    result = validate_dialogue_map(dialogue_map, ["Mara"])
    assert not result.valid
    assert result.errors == [
        'Speaker "Zed" not found in character list',
        'Dialogue "Hi there" has no speaker',
        'Invalid positions [10-5] for dialogue "Hi there"',
        "Dialogue 3 is malformed (3 field error(s))",
    ]


def test_find_missing_speakers(storm_scene) -> None:
    _, spans = storm_scene
    narrated = {"speaker": "Narrator", "quote": '"Aside"', "start_char": 0, "end_char": 7}
    assert find_missing_speakers(spans + [narrated], ["Mara"]) == ["tomas", "ana"]
    assert find_missing_speakers(spans, ["mara", "TOMAS", "ana"]) == []
    assert find_missing_speakers(None, []) == []


def test_overlapping_claims_abort_instead_of_repeating_dialogue() -> None:
    prose = 'A said "one two three four five six" and B left.'
    inner = prose.index("three")
    dialogue_map = [
        {
            "speaker": "A",
            "quote": '"one two three four five six"',
            "start_char": 7,
            "end_char": 36,
        },
        {
            "speaker": "B",
            "quote": '"three four five six"',
            "start_char": inner,
            "end_char": inner + 19,
        },
    ]
    for config in (SegmentationConfig(), STRICT):
        with pytest.raises(SegmentationIntegrityError):
            convert_dialogue_map_to_segments(prose, dialogue_map, config)


def test_repeated_line_after_deletion_is_voiced_once_per_speaker() -> None:
    prose = 'X "Stop right there." Y waited. "Stop right there." Z'
    first = prose.index('"Stop')
    second = prose.index('"Stop', first + 1)
    dialogue_map = [
        {
            "speaker": speaker,
            "quote": '"Stop right there."',
            "start_char": at + 12,
            "end_char": at + 30,
        }
        for speaker, at in (("Guard", first), ("Thief", second))
    ]
    result = segment_scene(prose, dialogue_map)
    assert [(s.role, s.speaker, s.text) for s in result.segments] == [
        ("narrator", "narrator", "X"),
        ("dialogue", "Guard", "Stop right there."),
        ("narrator", "narrator", "Y waited."),
        ("dialogue", "Thief", "Stop right there."),
        ("narrator", "narrator", "Z"),
    ]
    assert result.report.relocated == 2
    assert not result.report.duplication_detected


def test_null_quote_is_dropped_as_empty(storm_scene) -> None:
    prose, spans = storm_scene
    unquoted = {"speaker": "Ana", "quote": None, "start_char": 0, "end_char": 0}
    result = segment_scene(prose, spans + [unquoted])
    assert result.report.failed == 1
    assert result.report.resolutions[0].reason == "empty_quote"
    assert any("empty_quote" in warning for warning in result.report.warnings)
    assert _roles(result.segments).count("dialogue") == len(spans)
