from __future__ import annotations

import json
import unittest

from pipeline.errors import CapabilityError
from pipeline.providers import MockTextProvider, MockVisionProvider
from pipeline.quality_scorer import PromptCorrector, QualityScorer, assessment_from_payload
from schemas.generation import GenerationResult
from schemas.quality import PurposeContext, QualityAssessment, QualityIssue


class _RecordingVision:
    def __init__(self, result: GenerationResult | Exception):
        self.result = result
        self.prompts: list[str] = []

    def analyze_image(self, *, image_bytes, prompt, mime_type="", cancel=None):
        self.prompts.append(prompt)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def _text(payload: str) -> GenerationResult:
    return GenerationResult(success=True, payload=payload, payload_kind="text", provider="fake")


class QualityScorerTests(unittest.TestCase):
    def test_reads_json_wrapped_in_prose_and_fences(self):
        answer = (
            "Here is my analysis:\n```json\n"
            + json.dumps(
                {
                    "score": 64,
                    "passed": False,
                    "issues": [{"issue": "waxy skin", "severity": "critical", "location": "cheeks"}],
                    "adjustedPrompt": "add visible pores",
                }
            )
            + "\n```\nHope that helps."
        )
        assessment = QualityScorer(MockVisionProvider(answer)).assess(b"png", "a woman holding a mug")

        self.assertEqual(assessment.score, 64)
        self.assertFalse(assessment.passed)
        self.assertEqual(assessment.issues[0].description, "waxy skin")
        self.assertEqual(assessment.issues[0].severity, "high")
        self.assertEqual(assessment.issues[0].location, "cheeks")
        self.assertEqual(assessment.adjusted_prompt, "add visible pores")

    def test_unparseable_answer_becomes_could_not_analyze(self):
        assessment = QualityScorer(MockVisionProvider("I cannot rate this image.")).assess(b"png", "prompt")

        self.assertEqual(assessment.score, 0)
        self.assertFalse(assessment.passed)
        self.assertEqual(len(assessment.issues), 1)
        self.assertTrue(assessment.diagnostic.startswith("parse_failure"))

    def test_vision_failure_becomes_could_not_analyze(self):
        vision = _RecordingVision(GenerationResult.failure("fake", "rate limited"))
        assessment = QualityScorer(vision).assess(b"png", "prompt")
        self.assertEqual(assessment.score, 0)
        self.assertIn("rate limited", assessment.diagnostic)

        raising = _RecordingVision(CapabilityError("network down"))
        assessment = QualityScorer(raising).assess(b"png", "prompt")
        self.assertEqual(assessment.score, 0)
        self.assertIn("capability_error", assessment.diagnostic)

    def test_prompt_carries_purpose_checklist_and_context(self):
        vision = _RecordingVision(_text('{"score": 90, "passed": true}'))
        scorer = QualityScorer(vision, rubrics={"broll": ["hands look natural"], "general": ["anything"]})
        scorer.assess(
            b"png",
            "close-up of a cushion",
            PurposeContext(purpose="broll", camera_view="third-person", product_name="LumbarPro"),
        )

        prompt = vision.prompts[0]
        self.assertIn("ORIGINAL PROMPT: close-up of a cushion", prompt)
        self.assertIn("1. hands look natural", prompt)
        self.assertIn("PRODUCT: LumbarPro", prompt)
        self.assertIn("CAMERA VIEW: third-person", prompt)

    def test_payload_normalisation(self):
        assessment = assessment_from_payload(
            {"score": "104", "issues": ["blurry logo", {"description": "extra finger", "severity": "minor"}, {}]},
            threshold=80,
        )
        self.assertEqual(assessment.score, 100)
        self.assertTrue(assessment.passed)
        self.assertEqual([i.description for i in assessment.issues], ["blurry logo", "extra finger"])
        self.assertEqual(assessment.issues[1].severity, "low")

        low = assessment_from_payload({"score": None, "passed": "yes", "adjusted_prompt": "  "}, threshold=80)
        self.assertEqual(low.score, 0)
        self.assertFalse(low.passed)
        self.assertIsNone(low.adjusted_prompt)


class PromptCorrectorTests(unittest.TestCase):
    def test_lists_issues_for_the_model(self):
        captured: dict[str, str] = {}

        def _respond(system_prompt: str, user_prompt: str) -> str:
            captured["user"] = user_prompt
            return "fixed prompt"

        corrector = PromptCorrector(MockTextProvider(_respond))
        assessment = QualityAssessment(score=30, issues=[QualityIssue(description="plastic skin", severity="high")])

        self.assertEqual(corrector("old prompt", assessment), "fixed prompt")
        self.assertIn("- plastic skin (high)", captured["user"])
        self.assertIn("old prompt", captured["user"])

    def test_returns_none_on_failure(self):
        corrector = PromptCorrector(MockTextProvider(lambda s, u: "   "))
        self.assertIsNone(corrector("p", QualityAssessment(issues=[QualityIssue(description="x")])))


if __name__ == "__main__":
    unittest.main()
