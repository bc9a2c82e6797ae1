"""Persisted project state (one record per in-progress ad)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from schemas.research import ProductAnalysis, ResearchBrief
from schemas.script import ScriptSegment


class AssetRef(BaseModel):
    """Reference to a generated asset; the bytes live elsewhere."""

    kind: str
    segment_index: int | None = None
    uri: str = ""
    provider: str = ""
    qc_score: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ProjectState(BaseModel):
    project_id: str = ""
    name: str = "Untitled Project"
    version: int = 0
    product: ProductAnalysis | None = None
    target_audience: str = ""
    research: ResearchBrief | None = None
    character_prompt: str = ""
    script: str = ""
    segments: list[ScriptSegment] = Field(default_factory=list)
    assets: list[AssetRef] = Field(default_factory=list)
    voice_id: str = ""
    advanced_settings: dict[str, Any] = Field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""
