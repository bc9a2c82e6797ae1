"""Script segmentation schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

SegmentType = Literal["hook", "aroll", "broll"]


class ScriptSegment(BaseModel):
    index: int = Field(ge=1)
    text: str
    type: SegmentType = "aroll"
    duration_estimate_seconds: float = 0.0


class ChunkedSegment(BaseModel):
    """Shape the model is asked to return for one segment."""

    text: str
    type: str = "aroll"


class ChunkedScript(BaseModel):
    segments: list[ChunkedSegment] = Field(default_factory=list)
