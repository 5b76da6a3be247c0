from __future__ import annotations

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

NARRATOR = "narrator"

# ---------- Claims (untrusted input) ----------


class ClaimedSpan(BaseModel):
    """One quotation as reported by the upstream extraction step.

    Offsets refer to the prose snapshot the extractor saw and are not trusted
    against the current prose.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    speaker: str = Field(description="Display name of the attributed character.")
    quote: str = Field(
        description="Text believed to sit at the offsets, usually with quote glyphs; null reads as empty."
    )
    start_char: int = Field(description="Claimed start offset (inclusive).")
    end_char: int = Field(description="Claimed end offset (exclusive).")
    emotion: Optional[str] = Field(default=None)
    delivery: Optional[str] = Field(default=None)
    confidence: Optional[float] = Field(
        default=None, description="Extractor confidence, passed through."
    )
    reasoning: Optional[str] = Field(
        default=None, description="Extractor justification, passed through."
    )

    @field_validator("quote", mode="before")
    @classmethod
    def _null_quote_is_empty(cls, value: object) -> object:
        # stored maps may carry a null quote; it resolves as an empty one
        return "" if value is None else value


# ---------- Resolution ----------


class Resolution(str, Enum):
    VERIFIED = "verified"  # claimed offsets hold
    RELOCATED = "relocated"  # offsets corrected
    SYNTHETIC = "synthetic"  # text kept, no position
    FAILED = "failed"  # dropped


class RelocationMethod(str, Enum):
    EXACT_PATTERN = "exact_pattern"
    FUZZY_PREFIX = "fuzzy_prefix"
    FROM_START = "from_start"
    FUZZY_WORD_MATCH = "fuzzy_word_match"


_POSITIONED = {Resolution.VERIFIED, Resolution.RELOCATED}


class VerifiedSpan(BaseModel):
    """A claim annotated with how (and whether) its position was resolved."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    claim: ClaimedSpan
    resolution: Resolution
    method: Optional[RelocationMethod] = Field(default=None)
    start_char: Optional[int] = Field(default=None)
    end_char: Optional[int] = Field(default=None)
    reason: Optional[str] = Field(default=None)

    @model_validator(mode="after")
    def _validate_position_shape(self) -> "VerifiedSpan":
        has_position = self.start_char is not None and self.end_char is not None
        if self.resolution in _POSITIONED:
            if not has_position:
                raise ValueError(f"{self.resolution.value} spans need start_char and end_char")
            if self.start_char < 0 or self.end_char <= self.start_char:
                raise ValueError(
                    f"invalid resolved range [{self.start_char}, {self.end_char})"
                )
        elif self.start_char is not None or self.end_char is not None:
            raise ValueError(f"{self.resolution.value} spans carry no position")
        if (self.method is not None) != (self.resolution == Resolution.RELOCATED):
            raise ValueError("method is set for relocated spans only")
        return self

    @property
    def positioned(self) -> bool:
        return self.resolution in _POSITIONED

    @property
    def speaker(self) -> str:
        return self.claim.speaker

    @property
    def quote(self) -> str:
        return self.claim.quote


# ---------- Segments (output) ----------


class NarratorSegment(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    role: Literal["narrator"] = "narrator"
    speaker: Literal["narrator"] = NARRATOR
    text: str
    emotion: str = "neutral"
    delivery: Optional[str] = None


class DialogueSegment(BaseModel):
    """Dialogue anchored to the prose range it was cut from."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    role: Literal["dialogue"] = "dialogue"
    speaker: str
    text: str
    emotion: str = "neutral"
    delivery: Optional[str] = None
    start_char: int = Field(ge=0)
    end_char: int = Field(ge=0)


class SyntheticSegment(BaseModel):
    """Dialogue kept for its content although no position could be found."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    role: Literal["synthetic"] = "synthetic"
    speaker: str
    text: str
    emotion: str = "neutral"
    delivery: Optional[str] = None


Segment = Annotated[
    Union[NarratorSegment, DialogueSegment, SyntheticSegment],
    Field(discriminator="role"),
]


# ---------- Reports ----------


class SegmentationReport(BaseModel):
    """Audit trail for one segmentation call; warnings are never silent."""

    model_config = ConfigDict(extra="forbid")

    total: int = 0
    verified: int = 0
    relocated: int = 0
    synthetic: int = 0
    failed: int = 0
    failure_rate: float = 0.0
    prose_chars: int = 0
    segment_chars: int = 0
    duplication_detected: bool = False
    warnings: List[str] = Field(default_factory=list)
    resolutions: List[VerifiedSpan] = Field(default_factory=list)


class SegmentationResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    segments: List[Segment]
    report: SegmentationReport


class DialogueMapValidation(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    valid: bool
    errors: List[str] = Field(default_factory=list)


# ---------- On-disk artifacts ----------


class SceneArtifact(BaseModel):
    """Scene prose plus its persisted dialogue map, as written by the orchestrator."""

    model_config = ConfigDict(extra="forbid")

    scene_id: str = Field(min_length=1)
    prose: str
    dialogue_map: Optional[List[ClaimedSpan]] = Field(default=None)
    speakers: List[str] = Field(
        default_factory=list, description="Known character names for pre-flight checks."
    )


class SegmentedScene(BaseModel):
    model_config = ConfigDict(extra="forbid")

    scene_id: str
    segments: List[Segment]
    report: SegmentationReport
