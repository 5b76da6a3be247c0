from typing import Callable, Dict, List, Sequence, Tuple

import pytest

Part = Tuple[str, ...]
Scene = Tuple[str, List[Dict[str, object]]]

JENSEN_PROSE = 'Jensen walked in. "We need to move," she said, glancing back.'


def _compose(parts: Sequence[Part]) -> Scene:
    """Concatenate ("n", text) narration and ("d", speaker, line) dialogue parts.

    Dialogue lines are wrapped in straight quotes and get exact offsets.
    """
    prose = ""
    spans: List[Dict[str, object]] = []
    for part in parts:
        if part[0] == "n":
            prose += part[1]
            continue
        _, speaker, line = part
        quote = f'"{line}"'
        start = len(prose)
        prose += quote
        spans.append(
            {"speaker": speaker, "quote": quote, "start_char": start, "end_char": len(prose)}
        )
    return prose, spans


@pytest.fixture()
def compose() -> Callable[[Sequence[Part]], Scene]:
    return _compose


@pytest.fixture()
def jensen_prose() -> str:
    return JENSEN_PROSE


@pytest.fixture()
def jensen_span() -> Dict[str, object]:
    return {
        "speaker": "Jensen",
        "quote": '"We need to move,"',
        "start_char": 17,
        "end_char": 36,
        "emotion": "urgent",
    }


@pytest.fixture()
def storm_scene() -> Scene:
    """Nine cleanly placed lines plus narration that paraphrases a tenth, unquoted."""
    return _compose(
        [
            ("n", "Rain hammered the roof. "),
            ("d", "Mara", "Get the lamps lit,"),
            ("n", " she said. "),
            ("d", "Tomas", "Where did you put the matches?"),
            ("n", " Tomas asked, patting his coat. "),
            ("d", "Mara", "Top drawer, behind the bread tin."),
            ("n", " He found them. "),
            ("d", "Tomas", "They are damp."),
            ("n", " The flame sputtered and died. "),
            ("d", "Mara", "Try the candle stubs instead."),
            ("n", " Ana said she would wait by the river until nightfall. "),
            ("d", "Ana", "Someone should check the cellar door."),
            ("n", " Nobody moved. "),
            ("d", "Tomas", "Fine. I'll go myself."),
            ("n", " The stairs creaked beneath him. "),
            ("d", "Mara", "Take the iron poker with you!"),
            ("n", " she called after him. "),
            ("d", "Tomas", "Found it. The latch was open."),
            ("n", " Silence settled over the house."),
        ]
    )
