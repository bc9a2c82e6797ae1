"""Customer research synthesis.

Two modes:

- `synthesize`: one structured call over the product analysis, the supporting
  documents and the audience hint; returns the whole ResearchBrief.
- `run_multi_step`: community search -> review search -> avatar -> angles.
  Each step tries an ordered list of strategies (search provider first when
  one is configured, then a structured-synthesis fallback) and records which
  one produced its output. Community and review failures are not fatal; the
  avatar and angle steps run on whatever evidence exists.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import config
from pipeline.cancellation import CancelToken, check_cancelled
from pipeline.errors import (
    CapabilityError,
    ErrorKind,
    OperationCancelled,
    ParseFailure,
    PipelineError,
    StageResult,
    TaskTimeoutError,
)
from pipeline.evidence_extractor import EvidenceExtractor, KeywordEvidenceExtractor, parse_avatar_text
from pipeline.product_analysis import build_product_context
from pipeline.providers import SearchProvider, StructuredProvider
from prompts.research_system import (
    ANGLES_FALLBACK_SYSTEM,
    ANGLES_SEARCH_QUERY,
    ANGLES_SEARCH_SYSTEM,
    ANGLES_STRUCTURE_SYSTEM,
    AVATAR_FALLBACK_SYSTEM,
    AVATAR_SEARCH_QUERY,
    AVATAR_SEARCH_SYSTEM,
    COMMUNITY_FALLBACK_SYSTEM,
    COMMUNITY_SEARCH_QUERY,
    COMMUNITY_SEARCH_SYSTEM,
    REVIEW_FALLBACK_SYSTEM,
    REVIEW_SEARCH_QUERY,
    REVIEW_SEARCH_SYSTEM,
    SUBREDDITS_BY_CATEGORY,
    SYNTHESIS_SYSTEM_PROMPT,
)
from schemas.research import (
    AngleSet,
    CustomerAvatar,
    MultiStepResearch,
    ProductAnalysis,
    ResearchBrief,
    ResearchStepStatus,
    StrategyAttempt,
    Transformation,
    VoiceOfCustomer,
)

logger = logging.getLogger(__name__)

STAGE = "research"
STEPS = ("community_search", "review_search", "avatar", "angles")


# ---------------------------------------------------------------------------
# Evidence rendering
# ---------------------------------------------------------------------------

def render_product_analysis(analysis: ProductAnalysis | None) -> str:
    if analysis is None:
        return ""
    lines = [build_product_context(analysis)]
    demo = analysis.target_demographic
    audience = ", ".join(part for part in (demo.age_range, demo.gender, demo.lifestyle) if part)
    if audience:
        lines.append(f"Target Demographic: {audience}")
    if demo.pain_points:
        lines.append("Known Pain Points: " + "; ".join(demo.pain_points))
    if analysis.ad_hooks:
        lines.append("Ad Hook Ideas: " + "; ".join(analysis.ad_hooks))
    return "\n".join(lines)


def build_evidence_block(
    product_analysis: ProductAnalysis | None,
    supporting_documents: list[str] | None,
    target_audience_hint: str = "",
    *,
    max_documents: int | None = None,
    char_budget: int | None = None,
) -> str:
    """Product analysis + capped, truncated documents + audience hint."""
    max_documents = config.RESEARCH_MAX_DOCUMENTS if max_documents is None else max_documents
    char_budget = config.RESEARCH_DOC_CHAR_BUDGET if char_budget is None else char_budget

    parts: list[str] = []
    product = render_product_analysis(product_analysis)
    if product:
        parts.append("PRODUCT ANALYSIS:\n" + product)

    docs = [doc.strip() for doc in (supporting_documents or []) if doc and doc.strip()]
    if len(docs) > max_documents:
        logger.info("Research: using %d of %d supporting documents", max_documents, len(docs))
        docs = docs[:max_documents]
    for i, doc in enumerate(docs, start=1):
        if len(doc) > char_budget:
            logger.debug("Research: document %d truncated from %d to %d chars", i, len(doc), char_budget)
            doc = doc[:char_budget]
        parts.append(f"SUPPORTING DOCUMENT {i}:\n{doc}")

    if target_audience_hint.strip():
        parts.append(f"TARGET AUDIENCE HINT: {target_audience_hint.strip()}")
    return "\n\n".join(parts)


def subreddits_for(category: str) -> list[str]:
    lowered = (category or "").strip().lower()
    for key, subreddits in SUBREDDITS_BY_CATEGORY.items():
        if key != "general" and key in lowered:
            return subreddits
    return SUBREDDITS_BY_CATEGORY["general"]


def _dedupe_cap(items: list[str], cap: int) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for item in items:
        cleaned = (item or "").strip()
        key = " ".join(cleaned.lower().split())
        if not cleaned or key in seen:
            continue
        seen.add(key)
        out.append(cleaned)
        if len(out) >= cap:
            break
    return out


def _bullets(items: list[str], limit: int = 10) -> str:
    return "\n".join(f"- {item}" for item in items[:limit]) or "- (none found)"


def summarize_avatar(avatar: CustomerAvatar | None) -> str:
    if avatar is None or avatar.is_empty:
        return "(no avatar yet)"
    demo = avatar.demographics
    lines = [f"{demo.name or 'Unnamed'}, {demo.age or '?'}, {demo.occupation or 'unknown occupation'}"]
    if demo.location:
        lines.append(f"Lives in: {demo.location}")
    if avatar.problem.experience:
        lines.append(f"Problem: {avatar.problem.experience}")
    if avatar.psychographics.frustrations:
        lines.append("Frustrations: " + "; ".join(avatar.psychographics.frustrations[:5]))
    if avatar.language_profile.resonant_phrases:
        lines.append("Says things like: " + "; ".join(avatar.language_profile.resonant_phrases[:5]))
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

@dataclass
class StepContext:
    """Inputs shared by every step; filled in as earlier steps complete."""

    product_name: str
    category: str
    target_audience: str
    evidence: str
    product_analysis: ProductAnalysis | None = None
    community: VoiceOfCustomer | None = None
    reviews: VoiceOfCustomer | None = None
    avatar: CustomerAvatar | None = None

    def voice(self) -> VoiceOfCustomer:
        merged = VoiceOfCustomer()
        for voc in (self.community, self.reviews):
            if voc is None:
                continue
            merged.pain_points += voc.pain_points
            merged.praises += voc.praises
            merged.objections += voc.objections
            merged.language_patterns += voc.language_patterns
        return merged

    def research_summary(self) -> str:
        voc = self.voice()
        return (
            f"PAIN POINTS:\n{_bullets(voc.pain_points)}\n\n"
            f"WHAT CUSTOMERS LOVE:\n{_bullets(voc.praises)}\n\n"
            f"OBJECTIONS:\n{_bullets(voc.objections)}\n\n"
            f"CUSTOMER PHRASES:\n{_bullets(voc.language_patterns)}"
        )


@dataclass
class StepOutput:
    value: Any
    cost: float = 0.0
    citations: list[str] = field(default_factory=list)


class ResearchStrategy(Protocol):
    source: str

    def available(self) -> bool:
        """False when the strategy cannot run at all (e.g. no provider configured)."""

    def run(self, step: str, ctx: StepContext, cancel: CancelToken | None = None) -> StepOutput:
        """Produce the step's value or raise a PipelineError."""


def _structured(
    structured: StructuredProvider,
    *,
    system_prompt: str,
    user_prompt: str,
    response_model: type,
    cancel: CancelToken | None,
) -> Any:
    result = structured.generate_structured(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        response_model=response_model,
        cancel=cancel,
    )
    return result.unwrap()


class SearchProviderStrategy:
    """Live web research; prose is structured with the evidence extractor."""

    source = "search-provider"

    def __init__(
        self,
        search: SearchProvider | None,
        structured: StructuredProvider,
        extractor: EvidenceExtractor | None = None,
    ):
        self.search = search
        self.structured = structured
        self.extractor = extractor or KeywordEvidenceExtractor()

    def available(self) -> bool:
        return self.search is not None

    def _search(self, step: str, query: str, system_prompt: str, cancel: CancelToken | None) -> tuple[str, dict]:
        result = self.search.search(query=query, system_prompt=system_prompt, cancel=cancel)
        if not result.success:
            raise CapabilityError(result.error_message or "search failed", stage=step, provider=result.provider)
        text = result.text.strip()
        if not text:
            raise CapabilityError("search returned an empty answer", stage=step, provider=result.provider)
        return text, dict(result.metadata or {})

    def run(self, step: str, ctx: StepContext, cancel: CancelToken | None = None) -> StepOutput:
        if step == "community_search":
            query = COMMUNITY_SEARCH_QUERY.format(
                subreddits=", ".join(f"r/{name}" for name in subreddits_for(ctx.category)),
                product_name=ctx.product_name,
                category=ctx.category or "similar",
            )
            text, meta = self._search(step, query, COMMUNITY_SEARCH_SYSTEM, cancel)
            value: Any = self._extract(step, text)
        elif step == "review_search":
            query = REVIEW_SEARCH_QUERY.format(product_name=ctx.product_name, category=ctx.category or "similar")
            text, meta = self._search(step, query, REVIEW_SEARCH_SYSTEM, cancel)
            value = self._extract(step, text)
        elif step == "avatar":
            query = AVATAR_SEARCH_QUERY.format(
                product_name=ctx.product_name,
                target_audience=ctx.target_audience,
                existing_research=ctx.research_summary(),
            )
            text, meta = self._search(step, query, AVATAR_SEARCH_SYSTEM, cancel)
            value = parse_avatar_text(text)
        elif step == "angles":
            voc = ctx.voice()
            query = ANGLES_SEARCH_QUERY.format(
                product_name=ctx.product_name,
                pain_points=_bullets(voc.pain_points),
                praises=_bullets(voc.praises),
                avatar=summarize_avatar(ctx.avatar),
            )
            text, meta = self._search(step, query, ANGLES_SEARCH_SYSTEM, cancel)
            value = _structured(
                self.structured,
                system_prompt=ANGLES_STRUCTURE_SYSTEM,
                user_prompt=f"Structure these hooks for {ctx.product_name}:\n\n{text}",
                response_model=AngleSet,
                cancel=cancel,
            )
            if not value.hook_angles:
                raise ParseFailure("no hook angles in structured search answer", stage=step)
        else:
            raise ValueError(f"Unknown research step: {step}")

        citations = [str(c) for c in meta.get("citations") or []]
        return StepOutput(value=value, cost=float(meta.get("cost") or 0.0), citations=citations)

    def _extract(self, step: str, text: str) -> VoiceOfCustomer:
        voc = self.extractor.extract(text)
        if voc.is_empty:
            raise ParseFailure("no recognisable sections in search answer", stage=step, raw=text[:500])
        return voc


class SynthesisFallbackStrategy:
    """Derives each step from the structured model and the evidence on hand."""

    source = "synthesis-fallback"

    def __init__(self, structured: StructuredProvider):
        self.structured = structured

    def available(self) -> bool:
        return self.structured is not None

    def run(self, step: str, ctx: StepContext, cancel: CancelToken | None = None) -> StepOutput:
        evidence = ctx.evidence or f"PRODUCT: {ctx.product_name}"
        if step == "community_search":
            subreddits = ", ".join(f"r/{name}" for name in subreddits_for(ctx.category))
            value: Any = _structured(
                self.structured,
                system_prompt=COMMUNITY_FALLBACK_SYSTEM,
                user_prompt=(
                    f"How do people in {subreddits} talk about products like \"{ctx.product_name}\"?\n"
                    f"Target audience: {ctx.target_audience}\n\n{evidence}"
                ),
                response_model=VoiceOfCustomer,
                cancel=cancel,
            )
            empty = value.is_empty
        elif step == "review_search":
            value = _structured(
                self.structured,
                system_prompt=REVIEW_FALLBACK_SYSTEM,
                user_prompt=(
                    f"What do reviews of \"{ctx.product_name}\" and similar {ctx.category or ''} products say?\n"
                    f"Target audience: {ctx.target_audience}\n\n{evidence}"
                ),
                response_model=VoiceOfCustomer,
                cancel=cancel,
            )
            empty = value.is_empty
        elif step == "avatar":
            value = _structured(
                self.structured,
                system_prompt=AVATAR_FALLBACK_SYSTEM,
                user_prompt=(
                    f"Build the customer avatar for \"{ctx.product_name}\" targeting {ctx.target_audience}.\n\n"
                    f"{evidence}\n\n{ctx.research_summary()}"
                ),
                response_model=CustomerAvatar,
                cancel=cancel,
            )
            empty = value.is_empty
        elif step == "angles":
            value = _structured(
                self.structured,
                system_prompt=ANGLES_FALLBACK_SYSTEM,
                user_prompt=(
                    f"Generate hook angles for \"{ctx.product_name}\".\n\n"
                    f"CUSTOMER AVATAR:\n{summarize_avatar(ctx.avatar)}\n\n{ctx.research_summary()}\n\n{evidence}"
                ),
                response_model=AngleSet,
                cancel=cancel,
            )
            empty = not value.hook_angles
        else:
            raise ValueError(f"Unknown research step: {step}")

        if empty:
            raise ParseFailure(f"structured synthesis returned nothing for {step}", stage=step)
        return StepOutput(value=value)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class ResearchSynthesisPipeline:
    def __init__(
        self,
        structured: StructuredProvider,
        search: SearchProvider | None = None,
        extractor: EvidenceExtractor | None = None,
        strategies: list[ResearchStrategy] | None = None,
    ):
        self.structured = structured
        self.search = search
        self.extractor = extractor or KeywordEvidenceExtractor()
        if strategies is None:
            strategies = [
                SearchProviderStrategy(search, structured, self.extractor),
                SynthesisFallbackStrategy(structured),
            ]
        self.strategies = strategies

    # -- single call --------------------------------------------------------

    def synthesize(
        self,
        product_analysis: ProductAnalysis | None,
        supporting_documents: list[str] | None = None,
        target_audience_hint: str = "",
        cancel: CancelToken | None = None,
    ) -> StageResult:
        """One structured call producing the whole brief. No partial extraction."""
        evidence = build_evidence_block(product_analysis, supporting_documents, target_audience_hint)
        logger.info("=== Research synthesis starting (%d chars of evidence) ===", len(evidence))
        try:
            result = self.structured.generate_structured(
                system_prompt=SYNTHESIS_SYSTEM_PROMPT,
                user_prompt=f"Build the complete research brief from this evidence.\n\n{evidence}",
                response_model=ResearchBrief,
                cancel=cancel,
            )
        except PipelineError as exc:
            return StageResult.from_error(STAGE, exc)
        if not result.success:
            logger.error("Research synthesis failed: %s", result.error_message)
            return StageResult.fail(
                STAGE,
                result.error_kind or ErrorKind.CAPABILITY,
                result.error_message or "research synthesis failed",
                provider=result.provider,
            )

        brief: ResearchBrief = result.value
        brief.provenance = {
            section: "single-call"
            for section in (
                "customer_avatar",
                "pain_points",
                "purchase_triggers",
                "objections",
                "language_patterns",
                "hook_angles",
                "transformation",
            )
        }
        logger.info(
            "Research synthesis complete: %d pain points, %d phrases, %d hooks",
            len(brief.pain_points), len(brief.language_patterns), len(brief.hook_angles),
        )
        return StageResult.ok(STAGE, brief, provider=result.provider)

    # -- multi step ---------------------------------------------------------

    def _run_step(
        self, step: str, ctx: StepContext, cancel: CancelToken | None
    ) -> tuple[ResearchStepStatus, StepOutput | None]:
        status = ResearchStepStatus(step=step)
        t0 = time.time()
        output: StepOutput | None = None
        for strategy in self.strategies:
            if not strategy.available():
                continue
            try:
                check_cancelled(cancel, step)
                output = strategy.run(step, ctx, cancel)
            except (OperationCancelled, TaskTimeoutError):
                raise
            except Exception as exc:
                logger.warning("Research step %s: %s failed: %s", step, strategy.source, exc)
                status.attempts.append(StrategyAttempt(source=strategy.source, status="failed", error=str(exc)))
                continue
            status.attempts.append(StrategyAttempt(source=strategy.source, status="complete"))
            status.status = "complete"
            status.source = strategy.source
            status.cost = output.cost
            status.citations = output.citations
            break

        if output is None:
            status.status = "failed"
            status.error = "; ".join(f"{a.source}: {a.error}" for a in status.attempts) or "no strategy available"
        status.duration_seconds = round(max(time.time() - t0, 0.0), 2)
        logger.info(
            "Research step %s: %s via %s (%.1fs)",
            step, status.status, status.source or "-", status.duration_seconds,
        )
        return status, output

    def run_multi_step(
        self,
        product_analysis: ProductAnalysis | None,
        supporting_documents: list[str] | None = None,
        target_audience_hint: str = "",
        product_name: str = "",
        cancel: CancelToken | None = None,
    ) -> StageResult:
        """Four-step research; always returns the merged brief (value) even on failure."""
        start_ts = time.time()
        analysis = product_analysis or ProductAnalysis()
        demo = analysis.target_demographic
        ctx = StepContext(
            product_name=product_name or analysis.name or "the product",
            category=analysis.category,
            target_audience=(
                target_audience_hint.strip()
                or ", ".join(p for p in (demo.age_range, demo.gender, demo.lifestyle) if p)
                or "general consumers"
            ),
            evidence=build_evidence_block(product_analysis, supporting_documents, target_audience_hint),
            product_analysis=product_analysis,
        )
        research = MultiStepResearch()
        logger.info(
            "=== Multi-step research starting: %s (search=%s) ===",
            ctx.product_name, "yes" if self.search is not None else "no",
        )

        outputs: dict[str, StepOutput | None] = {}
        interrupted: PipelineError | None = None
        for step in STEPS:
            if interrupted is not None:
                research.steps.append(ResearchStepStatus(step=step, status="skipped", error=str(interrupted)))
                continue
            try:
                status, output = self._run_step(step, ctx, cancel)
            except (OperationCancelled, TaskTimeoutError) as exc:
                logger.warning("Research step %s interrupted: %s", step, exc)
                interrupted = exc
                research.steps.append(ResearchStepStatus(step=step, status="failed", error=str(exc)))
                continue
            research.steps.append(status)
            outputs[step] = output
            if output is None:
                continue
            if step == "community_search":
                ctx.community = output.value
            elif step == "review_search":
                ctx.reviews = output.value
            elif step == "avatar":
                ctx.avatar = output.value

        research.brief = self._merge(ctx, research, outputs)
        research.partial = any(s.status != "complete" for s in research.steps)
        produced = {s.step for s in research.steps if s.status == "complete"}
        research.status = "complete" if {"avatar", "angles"} & produced else "failed"
        research.sources = list(dict.fromkeys(s.source for s in research.steps if s.source))
        research.total_cost = round(sum(s.cost for s in research.steps), 4)
        research.duration_seconds = round(time.time() - start_ts, 2)
        diagnostics = [f"{s.step}: {s.error}" for s in research.steps if s.status != "complete"]

        if interrupted is not None:
            research.status = "failed"
            logger.warning(
                "Multi-step research stopped after %.1fs: %s", research.duration_seconds, interrupted
            )
            return StageResult.fail(STAGE, interrupted.kind, str(interrupted), value=research, diagnostics=diagnostics)

        logger.info(
            "Multi-step research %s%s in %.1fs (cost $%.4f)",
            research.status, " (partial)" if research.partial else "",
            research.duration_seconds, research.total_cost,
        )
        if research.status == "complete":
            return StageResult.ok(STAGE, research, diagnostics=diagnostics)
        return StageResult.fail(
            STAGE,
            ErrorKind.CAPABILITY,
            "research produced neither an avatar nor hook angles",
            value=research,
            diagnostics=diagnostics,
        )

    def _merge(
        self,
        ctx: StepContext,
        research: MultiStepResearch,
        outputs: dict[str, StepOutput | None],
    ) -> ResearchBrief:
        sources = {s.step: s.source for s in research.steps if s.status == "complete"}
        voc_steps = [
            (name, voc)
            for name, voc in (("community_search", ctx.community), ("review_search", ctx.reviews))
            if voc is not None
        ]
        list_cap = config.RESEARCH_LIST_CAP
        brief = ResearchBrief()
        provenance: dict[str, list[str]] = {}

        def _add(section: str, source: str) -> None:
            tags = provenance.setdefault(section, [])
            if source not in tags:
                tags.append(source)

        analysis_pains = ctx.product_analysis.target_demographic.pain_points if ctx.product_analysis else []
        pains = list(analysis_pains)
        if analysis_pains:
            _add("pain_points", "product-analysis")
        triggers: list[str] = []
        objections: list[str] = []
        language: list[str] = []
        before: list[str] = []
        after: list[str] = []
        for name, voc in voc_steps:
            for section, items, target in (
                ("pain_points", voc.pain_points, pains),
                ("purchase_triggers", voc.purchase_triggers, triggers),
                ("objections", voc.objections, objections),
                ("language_patterns", voc.language_patterns, language),
                ("transformation", voc.transformations.before + voc.transformations.after, None),
            ):
                if items:
                    _add(section, sources[name])
                    if target is not None:
                        target.extend(items)
            before += voc.transformations.before
            after += voc.transformations.after

        avatar = ctx.avatar
        if avatar is not None:
            brief.customer_avatar = avatar
            _add("customer_avatar", sources["avatar"])
            if avatar.buying_journey.objections:
                objections += avatar.buying_journey.objections
                _add("objections", sources["avatar"])
            if avatar.language_profile.resonant_phrases:
                language += avatar.language_profile.resonant_phrases
                _add("language_patterns", sources["avatar"])

        angles = outputs.get("angles")
        if angles is not None:
            brief.hook_angles = list(angles.value.hook_angles)
            _add("hook_angles", sources["angles"])

        brief.pain_points = _dedupe_cap(pains, list_cap)
        brief.purchase_triggers = _dedupe_cap(triggers, list_cap)
        brief.objections = _dedupe_cap(objections, list_cap)
        brief.language_patterns = _dedupe_cap(language, config.RESEARCH_LANGUAGE_CAP)
        brief.transformation = Transformation(
            before="; ".join(_dedupe_cap(before, 3)),
            after="; ".join(_dedupe_cap(after, 3)),
        )
        brief.provenance = {section: ",".join(tags) for section, tags in provenance.items()}
        return brief

