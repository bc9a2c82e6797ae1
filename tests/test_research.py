from __future__ import annotations

import unittest
from unittest.mock import patch

from pipeline.cancellation import CancelToken
from pipeline.errors import ErrorKind, StageResult
from pipeline.providers import MockSearchProvider, MockStructuredProvider
from pipeline.research import (
    ResearchSynthesisPipeline,
    SearchProviderStrategy,
    StepOutput,
    SynthesisFallbackStrategy,
    build_evidence_block,
    subreddits_for,
)
from schemas.generation import GenerationResult
from schemas.research import (
    AngleSet,
    CustomerAvatar,
    HookAngle,
    ProductAnalysis,
    ResearchBrief,
    TargetDemographic,
    VoiceOfCustomer,
)

REVIEW_ANSWER = """## FIVE-STAR REVIEW THEMES
- Finally comfortable through long meetings

## NEGATIVE REVIEW PATTERNS
- Strap slips on leather chairs

## PURCHASE DECISION TRIGGERS
- Physical therapist recommended lumbar support

## LANGUAGE PATTERNS
- "worth every penny"
"""

AVATAR_ANSWER = """Her name is Dana, a 38 year old who lives in Austin. She works as a project manager.

## PSYCHOGRAPHICS
Fears
- Needing surgery someday
"""

HOOKS_ANSWER = """1. "My chair was the problem the whole time"
2. "POV: you finally sat through a full meeting"
"""

ANGLES = AngleSet(
    hook_angles=[
        HookAngle(angle="problem-agitate", hook_line="My chair was the problem the whole time"),
        HookAngle(angle="pov", hook_line="POV: you finally sat through a full meeting"),
    ]
)


class _RoutedSearch:
    """Answers by query topic; a topic mapped to None fails."""

    name = "routed_search"

    def __init__(self, answers: dict[str, str | None]):
        self.answers = answers
        self.queries: list[str] = []

    def search(self, *, query, system_prompt="", max_tokens=4000, cancel=None):
        self.queries.append(query)
        for topic, answer in self.answers.items():
            if topic in query:
                if answer is None:
                    return GenerationResult.failure(self.name, f"{topic} search timed out", error_kind="timeout")
                return GenerationResult(
                    success=True,
                    payload=answer,
                    payload_kind="text",
                    provider=self.name,
                    metadata={"citations": [f"https://example.com/{topic}"], "cost": 0.25},
                )
        return GenerationResult.failure(self.name, "no route")


class _RecordingStructured:
    def __init__(self, result: StageResult):
        self.result = result
        self.user_prompts: list[str] = []

    def generate_structured(self, *, system_prompt, user_prompt, response_model, max_tokens=None, temperature=None, cancel=None):
        self.user_prompts.append(user_prompt)
        return self.result


class _CancellingStrategy:
    """Answers every step, cancelling the shared token after `cancel_on`."""

    source = "stub"

    def __init__(self, token: CancelToken, cancel_on: str):
        self.token = token
        self.cancel_on = cancel_on

    def available(self) -> bool:
        return True

    def run(self, step, ctx, cancel=None):
        if step == self.cancel_on:
            self.token.cancel("user stopped research")
        return StepOutput(VoiceOfCustomer(pain_points=["sore hips"]))


def _product() -> ProductAnalysis:
    return ProductAnalysis(
        name="LumbarPro",
        category="wellness",
        target_demographic=TargetDemographic(age_range="30-50", pain_points=["back pain when sitting"]),
    )


class SingleCallSynthesisTests(unittest.TestCase):
    def test_returns_brief_with_provenance(self):
        canned = ResearchBrief(pain_points=["stiff back"], language_patterns=["my back is killing me"])
        pipeline = ResearchSynthesisPipeline(MockStructuredProvider({ResearchBrief: canned}))
        result = pipeline.synthesize(_product(), ["Review: love it"], "remote workers")

        self.assertTrue(result.success)
        self.assertEqual(result.value.pain_points, ["stiff back"])
        self.assertEqual(result.value.provenance["pain_points"], "single-call")

    def test_parse_failure_is_fatal(self):
        structured = _RecordingStructured(StageResult.fail("research", ErrorKind.PARSE, "invalid JSON"))
        result = ResearchSynthesisPipeline(structured).synthesize(_product(), [], "")

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.PARSE)
        self.assertIsNone(result.value)

    def test_evidence_block_truncates_and_caps_documents(self):
        structured = _RecordingStructured(StageResult.ok("research", ResearchBrief()))
        docs = ["A" * 9000] + [f"doc {i}" for i in range(15)]
        ResearchSynthesisPipeline(structured).synthesize(_product(), docs, "night-shift nurses")

        prompt = structured.user_prompts[0]
        self.assertIn("A" * 8000, prompt)
        self.assertNotIn("A" * 8001, prompt)
        self.assertIn("SUPPORTING DOCUMENT 10:", prompt)
        self.assertNotIn("SUPPORTING DOCUMENT 11:", prompt)
        self.assertIn("TARGET AUDIENCE HINT: night-shift nurses", prompt)
        self.assertIn("PRODUCT: LumbarPro", prompt)

    def test_evidence_block_respects_config(self):
        with patch("pipeline.research.config.RESEARCH_DOC_CHAR_BUDGET", 5), patch(
            "pipeline.research.config.RESEARCH_MAX_DOCUMENTS", 1
        ):
            block = build_evidence_block(None, ["abcdefgh", "second"], "")
        self.assertEqual(block, "SUPPORTING DOCUMENT 1:\nabcde")


class MultiStepResearchTests(unittest.TestCase):
    def test_community_failure_keeps_avatar_and_angles(self):
        search = _RoutedSearch(
            {
                "Reddit": None,
                "Amazon": REVIEW_ANSWER,
                "customer avatar": AVATAR_ANSWER,
                "UGC video hooks": HOOKS_ANSWER,
            }
        )
        # no VoiceOfCustomer canned: the community fallback comes back empty and fails too
        structured = MockStructuredProvider({AngleSet: ANGLES})
        result = ResearchSynthesisPipeline(structured, search=search).run_multi_step(
            _product(), [], "desk workers", product_name="LumbarPro"
        )

        self.assertTrue(result.success)
        research = result.value
        self.assertEqual(research.status, "complete")
        self.assertTrue(research.partial)

        community = research.step("community_search")
        self.assertEqual(community.status, "failed")
        self.assertIn("timed out", community.error)
        self.assertEqual([a.source for a in community.attempts], ["search-provider", "synthesis-fallback"])
        self.assertTrue(all(a.status == "failed" for a in community.attempts))

        for name in ("review_search", "avatar", "angles"):
            self.assertEqual(research.step(name).status, "complete", name)
            self.assertEqual(research.step(name).source, "search-provider", name)

        brief = research.brief
        self.assertEqual(brief.customer_avatar.demographics.name, "Dana")
        self.assertEqual(len(brief.hook_angles), 2)
        self.assertEqual(brief.pain_points[0], "back pain when sitting")
        self.assertIn("Strap slips on leather chairs", brief.objections)
        self.assertIn("worth every penny", brief.language_patterns)
        self.assertEqual(brief.provenance["pain_points"], "product-analysis")
        self.assertEqual(brief.provenance["customer_avatar"], "search-provider")
        self.assertEqual(research.total_cost, 0.75)
        self.assertIn("https://example.com/Amazon", research.step("review_search").citations)
        self.assertTrue(any("community_search" in d for d in result.diagnostics))

    def test_without_search_every_step_uses_fallback(self):
        structured = MockStructuredProvider(
            {
                VoiceOfCustomer: VoiceOfCustomer(pain_points=["back pain when sitting", "sore hips"]),
                CustomerAvatar: {"demographics": {"name": "Priya"}},
                AngleSet: ANGLES,
            }
        )
        result = ResearchSynthesisPipeline(structured).run_multi_step(_product(), [], "")

        research = result.value
        self.assertEqual(research.status, "complete")
        self.assertFalse(research.partial)
        self.assertEqual(research.sources, ["synthesis-fallback"])
        self.assertEqual(
            [a.source for s in research.steps for a in s.attempts],
            ["synthesis-fallback"] * 4,
        )
        # de-duplicated against the product-analysis pain point
        self.assertEqual(research.brief.pain_points, ["back pain when sitting", "sore hips"])
        self.assertEqual(research.brief.provenance["pain_points"], "product-analysis,synthesis-fallback")
        self.assertEqual(research.brief.customer_avatar.demographics.name, "Priya")

    def test_all_steps_failing_returns_brief_with_failure(self):
        search = _RoutedSearch({"Reddit": None, "Amazon": None, "customer avatar": None, "UGC video hooks": None})
        result = ResearchSynthesisPipeline(MockStructuredProvider(), search=search).run_multi_step(_product(), [], "")

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.CAPABILITY)
        research = result.value
        self.assertEqual(research.status, "failed")
        self.assertEqual([s.status for s in research.steps], ["failed"] * 4)
        self.assertEqual(research.brief.pain_points, ["back pain when sitting"])

    def test_expired_deadline_returns_timeout_result(self):
        result = ResearchSynthesisPipeline(MockStructuredProvider()).run_multi_step(
            _product(), [], "", cancel=CancelToken(0.0)
        )

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.TIMEOUT)
        research = result.value
        self.assertEqual(research.status, "failed")
        self.assertTrue(research.partial)
        self.assertEqual([s.status for s in research.steps], ["failed", "skipped", "skipped", "skipped"])
        self.assertIn("deadline exceeded", research.step("community_search").error)
        self.assertEqual(research.brief.pain_points, ["back pain when sitting"])

    def test_cancel_mid_run_keeps_finished_steps(self):
        token = CancelToken(60)
        strategy = _CancellingStrategy(token, cancel_on="review_search")
        result = ResearchSynthesisPipeline(MockStructuredProvider(), strategies=[strategy]).run_multi_step(
            _product(), [], "", cancel=token
        )

        self.assertEqual(result.error_kind, ErrorKind.CANCELLED)
        research = result.value
        self.assertEqual([s.status for s in research.steps], ["complete", "complete", "failed", "skipped"])
        self.assertIn("sore hips", research.brief.pain_points)
        self.assertTrue(any(d.startswith("avatar:") for d in result.diagnostics))

    def test_custom_strategy_order(self):
        structured = MockStructuredProvider({AngleSet: ANGLES, CustomerAvatar: {"day_in_life": "Commutes an hour"}})
        strategies = [
            SynthesisFallbackStrategy(structured),
            SearchProviderStrategy(MockSearchProvider(), structured),
        ]
        research = ResearchSynthesisPipeline(structured, strategies=strategies).run_multi_step(
            _product(), [], ""
        ).value

        # community/review fallback is empty, so the search strategy picks them up
        self.assertEqual(research.step("community_search").source, "search-provider")
        self.assertEqual(research.step("avatar").source, "synthesis-fallback")
        self.assertFalse(research.partial)


class SubredditTests(unittest.TestCase):
    def test_category_lookup(self):
        self.assertIn("SkincareAddiction", subreddits_for("Beauty & Skincare"))
        self.assertEqual(subreddits_for(""), subreddits_for("kitchen gadgets that nobody needs"))


if __name__ == "__main__":
    unittest.main()
