from __future__ import annotations

from typing import Optional


class SegmentationIntegrityError(ValueError):
    """Raised when a dialogue map cannot be turned into trustworthy segments."""

    def __init__(
        self,
        message: str,
        speaker: Optional[str] = None,
        quote: Optional[str] = None,
        metric: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.speaker = speaker
        self.quote = quote
        self.metric = metric
