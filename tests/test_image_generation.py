from __future__ import annotations

import json
import unittest
from unittest.mock import patch

from pipeline.image_generation import default_loop_options, generate_image_with_qc, generate_segment_visuals
from pipeline.providers import MockImageProvider, MockVisionProvider
from pipeline.quality_scorer import QualityScorer
from schemas.quality import PurposeContext
from schemas.script import ScriptSegment

FAILING_QC = json.dumps(
    {"score": 40, "passed": False, "issues": [{"issue": "plastic skin", "severity": "high"}], "adjustedPrompt": "add pores"}
)


class _RecordingImages(MockImageProvider):
    def __init__(self):
        self.prompts: list[str] = []

    def generate_image(self, *, prompt, reference_images=None, aspect_ratio="9:16", cancel=None):
        self.prompts.append(prompt)
        return super().generate_image(
            prompt=prompt, reference_images=reference_images, aspect_ratio=aspect_ratio, cancel=cancel
        )


class GenerateImageWithQcTests(unittest.TestCase):
    def test_passing_image_is_accepted_first_try(self):
        result = generate_image_with_qc(
            "selfie holding a cushion",
            image_provider=MockImageProvider(),
            scorer=QualityScorer(MockVisionProvider()),
            purpose=PurposeContext(purpose="character"),
        )
        self.assertTrue(result.success)
        self.assertEqual(result.value.attempts, 1)
        self.assertEqual(result.value.accepted_reason, "passed")

    def test_failing_image_uses_adjusted_prompt_until_budget(self):
        images = _RecordingImages()
        result = generate_image_with_qc(
            "selfie holding a cushion",
            image_provider=images,
            scorer=QualityScorer(MockVisionProvider(FAILING_QC)),
            max_retries=1,
        )
        self.assertTrue(result.success)
        self.assertEqual(result.value.accepted_reason, "budget_exhausted")
        self.assertEqual(images.prompts, ["selfie holding a cushion", "add pores"])

    def test_purpose_thresholds_and_overrides(self):
        with patch("pipeline.image_generation.config.QC_THRESHOLD_BROLL", 70), patch(
            "pipeline.image_generation.config.QC_MAX_RETRIES", 3
        ):
            options = default_loop_options("broll")
            self.assertEqual(options.score_threshold, 70)
            self.assertEqual(options.max_retries, 3)
            self.assertEqual(default_loop_options("broll", max_retries=0, score_threshold=None).max_retries, 0)


class SegmentVisualsTests(unittest.TestCase):
    def test_only_prompted_segments_render_in_order(self):
        segments = [
            ScriptSegment(index=1, text="Stop scrolling.", type="hook"),
            ScriptSegment(index=2, text="I tried everything.", type="aroll"),
            ScriptSegment(index=3, text="Close-up of the strap.", type="broll"),
        ]
        results = generate_segment_visuals(
            segments,
            {1: "selfie, tired face", 2: "  ", 3: "hands tightening a strap"},
            image_provider=MockImageProvider(),
            scorer=QualityScorer(MockVisionProvider()),
            max_parallel=2,
        )
        self.assertEqual([seg.index for seg, _ in results], [1, 3])
        self.assertTrue(all(r.success for _, r in results))

    def test_no_prompts_means_no_work(self):
        self.assertEqual(
            generate_segment_visuals(
                [ScriptSegment(index=1, text="x", type="hook")],
                {},
                image_provider=MockImageProvider(),
                scorer=QualityScorer(MockVisionProvider()),
            ),
            [],
        )


if __name__ == "__main__":
    unittest.main()
