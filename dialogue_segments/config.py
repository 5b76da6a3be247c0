from __future__ import annotations

import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------- Deduplication policy ----------


class DedupMode(str, Enum):
    """How hard the builder strips narrator text that echoes dialogue."""

    CONSERVATIVE = "conservative"  # exact or dominant duplicates only
    AGGRESSIVE = "aggressive"  # legacy: cut every contained quote


_TRUE_VALUES = {"1", "true", "yes", "on"}


# ---------- Tunables ----------


class SegmentationConfig(BaseModel):
    """
    Policy knobs for verification, relocation and segment building.
    Defaults match the production settings; every similarity threshold is
    tunable rather than baked into the matching code.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    failure_threshold: float = Field(
        0.15,
        ge=0.0,
        le=1.0,
        description="Abort when failed spans / total spans exceeds this ratio.",
    )
    dedup_mode: DedupMode = Field(
        DedupMode.CONSERVATIVE,
        description="Narrator deduplication strategy.",
    )
    synthetic_fallback: bool = Field(
        True,
        description="Keep unlocatable but substantial quotes as unanchored segments (lenient mode).",
    )
    verify_prefix_chars: int = Field(
        20, ge=1, description="Prefix length compared by the position verifier."
    )
    relocate_prefix_chars: int = Field(
        30, ge=1, description="Quote prefix length used by fuzzy-prefix relocation."
    )
    fuzzy_edge_chars: int = Field(
        20,
        ge=1,
        description="Leading/trailing characters that must agree for a fuzzy content match.",
    )
    min_word_overlap: float = Field(
        0.6,
        ge=0.0,
        le=1.0,
        description="Minimum share of quote words found in the resolved text.",
    )
    dominant_duplicate_ratio: float = Field(
        0.7,
        ge=0.0,
        le=1.0,
        description="Contained quote share above which a narrator candidate is dropped.",
    )
    duplicate_min_chars: int = Field(
        8, ge=1, description="Shortest quote key considered for containment checks."
    )
    partial_duplicate_min_chars: int = Field(
        20,
        ge=1,
        description="Aggressive mode: quotes longer than this are checked for half-quote leaks.",
    )
    distinctive_word_min_len: int = Field(
        5, ge=1, description="Words at least this long are distinctive."
    )
    distinctive_word_count: int = Field(
        3, ge=1, description="How many of the longest distinctive words to match on."
    )
    min_distinctive_hits: int = Field(
        2, ge=1, description="Distinctive words a quoted region must contain."
    )
    synthetic_min_chars: int = Field(
        10,
        ge=0,
        description="Quotes must be longer than this to survive as synthetic segments.",
    )
    fragment_max_chars: int = Field(
        6, ge=1, description="Longest leading word treated as an orphaned fragment."
    )
    punctuation_only_max_chars: int = Field(
        4, ge=0, description="Punctuation-only narrator text up to this length is dropped."
    )
    duplication_tolerance: float = Field(
        0.05,
        ge=0.0,
        description="Allowed growth of total segment text over the prose length.",
    )

    @classmethod
    def from_env(cls, prefix: str = "DIALOGUE_SEGMENTS_") -> "SegmentationConfig":
        """Build a config from environment overrides, keeping defaults otherwise."""
        overrides = {}
        threshold: Optional[str] = os.environ.get(f"{prefix}FAILURE_THRESHOLD")
        if threshold:
            overrides["failure_threshold"] = float(threshold)
        mode = os.environ.get(f"{prefix}DEDUP_MODE")
        if mode:
            overrides["dedup_mode"] = DedupMode(mode.strip().lower())
        synthetic = os.environ.get(f"{prefix}SYNTHETIC_FALLBACK")
        if synthetic:
            overrides["synthetic_fallback"] = synthetic.strip().lower() in _TRUE_VALUES
        return cls(**overrides)


DEFAULT_CONFIG = SegmentationConfig()
