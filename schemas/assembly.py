"""Edit-assembly schemas: finished clips in, editing guide and clip reviews out."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ClipKind = Literal["aroll", "broll"]


class ClipAsset(BaseModel):
    """A finished clip and, when available, one representative frame."""

    segment: int = Field(ge=1)
    kind: ClipKind = "aroll"
    video_url: str = ""
    frame: bytes | None = None


class ClipReview(BaseModel):
    rating: int = Field(ge=1, le=10)
    matches_script: bool | None = None
    needs_regeneration: bool = False
    issues: list[str] = Field(default_factory=list)
    notes: str = ""


class AssemblyPlan(BaseModel):
    editing_guide: str
    timeline: str | None = None
    aroll_count: int = 0
    broll_count: int = 0
    frames_attached: int = 0
