"""Research schemas: product analysis, customer avatar, research brief, pipeline status."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ResearchSource = Literal["search-provider", "synthesis-fallback", "product-analysis", "single-call"]


# ---------------------------------------------------------------------------
# Product analysis (vision pass over the product image)
# ---------------------------------------------------------------------------

class VisualFeatures(BaseModel):
    colors: list[str] = Field(default_factory=list)
    materials: list[str] = Field(default_factory=list)
    design_style: str = ""
    size: str = ""


class ProductBenefits(BaseModel):
    primary: str = ""
    secondary: list[str] = Field(default_factory=list)
    emotional: list[str] = Field(default_factory=list)


class TargetDemographic(BaseModel):
    age_range: str = ""
    gender: str = ""
    lifestyle: str = ""
    pain_points: list[str] = Field(default_factory=list)


class Positioning(BaseModel):
    price_point: str = ""
    competitor_category: str = ""
    usp: str = ""


class ProductAnalysis(BaseModel):
    name: str = ""
    category: str = ""
    subcategory: str = ""
    description: str = ""
    visual_features: VisualFeatures = Field(default_factory=VisualFeatures)
    functional_features: list[str] = Field(default_factory=list)
    usage: str = ""
    problem_solved: str = ""
    benefits: ProductBenefits = Field(default_factory=ProductBenefits)
    target_demographic: TargetDemographic = Field(default_factory=TargetDemographic)
    positioning: Positioning = Field(default_factory=Positioning)
    ad_hooks: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Customer avatar
# ---------------------------------------------------------------------------

class Demographics(BaseModel):
    name: str = ""
    age: str = ""
    location: str = ""
    income: str = ""
    occupation: str = ""


class Psychographics(BaseModel):
    values: list[str] = Field(default_factory=list)
    fears: list[str] = Field(default_factory=list)
    aspirations: list[str] = Field(default_factory=list)
    frustrations: list[str] = Field(default_factory=list)


class ProblemProfile(BaseModel):
    experience: str = ""
    worst_moment: str = ""
    tried_before: list[str] = Field(default_factory=list)


class BuyingJourney(BaseModel):
    trigger: str = ""
    alternatives: list[str] = Field(default_factory=list)
    objections: list[str] = Field(default_factory=list)
    convinced: str = ""


class LanguageProfile(BaseModel):
    problem_descriptions: list[str] = Field(default_factory=list)
    resonant_phrases: list[str] = Field(default_factory=list)
    search_terms: list[str] = Field(default_factory=list)


class CustomerAvatar(BaseModel):
    demographics: Demographics = Field(default_factory=Demographics)
    psychographics: Psychographics = Field(default_factory=Psychographics)
    problem: ProblemProfile = Field(default_factory=ProblemProfile)
    buying_journey: BuyingJourney = Field(default_factory=BuyingJourney)
    language_profile: LanguageProfile = Field(default_factory=LanguageProfile)
    day_in_life: str = ""

    @property
    def is_empty(self) -> bool:
        return self == CustomerAvatar()


# ---------------------------------------------------------------------------
# Angles + brief
# ---------------------------------------------------------------------------

class HookAngle(BaseModel):
    angle: str
    hook_line: str
    why_it_works: str = ""
    visual_suggestion: str = ""


class AngleSet(BaseModel):
    hook_angles: list[HookAngle] = Field(default_factory=list)
    objection_busters: list[str] = Field(default_factory=list)


class Transformation(BaseModel):
    before: str = ""
    after: str = ""


class ResearchBrief(BaseModel):
    customer_avatar: CustomerAvatar = Field(default_factory=CustomerAvatar)
    pain_points: list[str] = Field(default_factory=list)
    purchase_triggers: list[str] = Field(default_factory=list)
    objections: list[str] = Field(default_factory=list)
    language_patterns: list[str] = Field(default_factory=list)
    hook_angles: list[HookAngle] = Field(default_factory=list)
    transformation: Transformation = Field(default_factory=Transformation)
    # section name -> which strategy produced it
    provenance: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Free-text extraction + multi-step pipeline status
# ---------------------------------------------------------------------------

class TransformationLists(BaseModel):
    before: list[str] = Field(default_factory=list)
    after: list[str] = Field(default_factory=list)


class VoiceOfCustomer(BaseModel):
    """Sections mined from community / review research."""

    pain_points: list[str] = Field(default_factory=list)
    praises: list[str] = Field(default_factory=list)
    questions: list[str] = Field(default_factory=list)
    objections: list[str] = Field(default_factory=list)
    language_patterns: list[str] = Field(default_factory=list)
    purchase_triggers: list[str] = Field(default_factory=list)
    customer_profiles: list[str] = Field(default_factory=list)
    transformations: TransformationLists = Field(default_factory=TransformationLists)

    @property
    def is_empty(self) -> bool:
        return self == VoiceOfCustomer()


StepName = Literal["community_search", "review_search", "avatar", "angles"]
StepStatus = Literal["complete", "failed", "skipped"]


class StrategyAttempt(BaseModel):
    source: str
    status: Literal["complete", "failed"]
    error: str = ""


class ResearchStepStatus(BaseModel):
    step: StepName
    status: StepStatus = "skipped"
    source: str = ""
    error: str = ""
    attempts: list[StrategyAttempt] = Field(default_factory=list)
    duration_seconds: float = 0.0
    cost: float = 0.0
    citations: list[str] = Field(default_factory=list)


class MultiStepResearch(BaseModel):
    brief: ResearchBrief = Field(default_factory=ResearchBrief)
    steps: list[ResearchStepStatus] = Field(default_factory=list)
    status: Literal["complete", "failed"] = "failed"
    partial: bool = False
    sources: list[str] = Field(default_factory=list)
    total_cost: float = 0.0
    duration_seconds: float = 0.0

    def step(self, name: str) -> ResearchStepStatus | None:
        for row in self.steps:
            if row.step == name:
                return row
        return None
