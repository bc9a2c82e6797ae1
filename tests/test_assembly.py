from __future__ import annotations

import json
import unittest

from pipeline.assembly import (
    analyze_clip,
    analyze_for_assembly,
    assemble_edit,
    build_timeline_prompt,
    frame_labels,
    generate_timeline,
    parse_clip_review,
)
from pipeline.cancellation import CancelToken
from pipeline.errors import ErrorKind, ParseFailure
from pipeline.providers import MockTextProvider, MockVisionProvider
from schemas.assembly import ClipAsset
from schemas.generation import GenerationResult
from schemas.research import ProductAnalysis
from schemas.script import ScriptSegment

SEGMENTS = [
    ScriptSegment(index=1, text="My back used to kill me every afternoon.", type="hook"),
    ScriptSegment(index=2, text="Then I strapped this cushion to my office chair and forgot about it.", type="aroll"),
    ScriptSegment(index=3, text="Memory foam that actually holds its shape.", type="broll"),
]


class _RecordingVision(MockVisionProvider):
    def __init__(self, response=None):
        super().__init__(response)
        self.calls: list[dict] = []

    def analyze_image(self, *, image_bytes, prompt, mime_type="", cancel=None, extra_images=None):
        self.calls.append({"image_bytes": image_bytes, "prompt": prompt, "extra_images": extra_images})
        return super().analyze_image(image_bytes=image_bytes, prompt=prompt, mime_type=mime_type, cancel=cancel)


class _FailingText(MockTextProvider):
    def generate_text(self, *, system_prompt, user_prompt, max_tokens=None, temperature=None, cancel=None):
        return GenerationResult.failure(self.name, "rate limited")


class _CancellingText(MockTextProvider):
    """Cancels the shared token on the timeline call."""

    def __init__(self, token: CancelToken):
        super().__init__("1. Open with A-ROLL 1 ...")
        self.token = token
        self.calls = 0

    def generate_text(self, *, system_prompt, user_prompt, max_tokens=None, temperature=None, cancel=None):
        self.calls += 1
        if "EDITING GUIDE:" in user_prompt:
            self.token.cancel("user closed the editor")
        return super().generate_text(system_prompt=system_prompt, user_prompt=user_prompt, cancel=cancel)


def _clips():
    return [
        ClipAsset(segment=1, kind="aroll", frame=b"aroll-1"),
        ClipAsset(segment=3, kind="broll", frame=b"broll-1"),
        ClipAsset(segment=2, kind="aroll", frame=b"aroll-2"),
        ClipAsset(segment=2, kind="aroll", video_url="https://cdn.example.com/a3.mp4"),
    ]


class AssemblyAnalysisTests(unittest.TestCase):
    def test_frames_go_out_in_one_request_aroll_first(self):
        vision = _RecordingVision("1. TIMELINE: open on A-ROLL 1")
        result = analyze_for_assembly(
            SEGMENTS,
            _clips(),
            vision=vision,
            text_provider=MockTextProvider(),
            product=ProductAnalysis(name="LumbarPro", description="Strap-on lumbar cushion"),
            has_voiceover=True,
        )

        self.assertTrue(result.success)
        plan = result.value
        self.assertEqual((plan.aroll_count, plan.broll_count, plan.frames_attached), (3, 1, 3))
        self.assertIsNone(plan.timeline)

        call = vision.calls[0]
        self.assertEqual(call["image_bytes"], b"aroll-1")
        self.assertEqual(call["extra_images"], [b"aroll-2", b"broll-1"])
        prompt = call["prompt"]
        self.assertIn('[Segment 1 - HOOK]: "My back used to kill me every afternoon."', prompt)
        self.assertIn("LumbarPro\nStrap-on lumbar cushion", prompt)
        self.assertIn("- A-Roll clips: 3 talking head videos", prompt)
        self.assertIn("- Voiceover: Yes", prompt)
        self.assertIn("Image 3: [B-ROLL CLIP 1 - Segment 3]", prompt)

    def test_frame_labels_number_clips_per_kind(self):
        self.assertEqual(
            frame_labels(_clips()),
            ["[A-ROLL CLIP 1 - Segment 1]", "[A-ROLL CLIP 2 - Segment 2]", "[B-ROLL CLIP 1 - Segment 3]"],
        )

    def test_without_frames_the_text_model_plans(self):
        seen: list[str] = []

        def answer(system_prompt, user_prompt):
            seen.append(user_prompt)
            return "Cut on every sentence."

        vision = _RecordingVision()
        result = analyze_for_assembly(
            SEGMENTS,
            [ClipAsset(segment=1, video_url="https://cdn.example.com/a1.mp4")],
            vision=vision,
            text_provider=MockTextProvider(answer),
        )

        self.assertTrue(result.success)
        self.assertEqual(result.value.editing_guide, "Cut on every sentence.")
        self.assertEqual(vision.calls, [])
        self.assertIn("Unknown product", seen[0])
        self.assertIn("No frames are attached", seen[0])

    def test_segments_are_required(self):
        result = analyze_for_assembly([], _clips(), vision=MockVisionProvider(), text_provider=MockTextProvider())
        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.CAPABILITY)

    def test_vision_failure_is_reported(self):
        class _Down(MockVisionProvider):
            def analyze_image(self, **kwargs):
                return GenerationResult.failure("mock_vision", "upstream 503")

        result = analyze_for_assembly(SEGMENTS, _clips(), vision=_Down(), text_provider=MockTextProvider())
        self.assertEqual(result.error_kind, ErrorKind.CAPABILITY)
        self.assertIn("503", result.error_message)


class TimelineTests(unittest.TestCase):
    def test_long_segments_are_excerpted(self):
        prompt = build_timeline_prompt("guide text", SEGMENTS)
        self.assertIn('2. "Then I strapped this cushion to my office chair an..."', prompt)
        self.assertIn('3. "Memory foam that actually holds its shape."', prompt)

    def test_timeline_text_is_returned(self):
        result = generate_timeline("guide", SEGMENTS, MockTextProvider("[0:00-0:03] A-ROLL 1 (Hook)\n"))
        self.assertTrue(result.success)
        self.assertEqual(result.value, "[0:00-0:03] A-ROLL 1 (Hook)")

    def test_empty_guide(self):
        self.assertFalse(generate_timeline("  ", SEGMENTS, MockTextProvider()).success)


class AssembleEditTests(unittest.TestCase):
    def test_guide_and_timeline(self):
        result = assemble_edit(
            SEGMENTS,
            _clips(),
            vision=MockVisionProvider("Editing guide"),
            text_provider=MockTextProvider("[0:00-0:03] A-ROLL 1 (Hook) | [0:03-0:05] B-ROLL 1"),
        )
        self.assertTrue(result.success)
        self.assertEqual(result.value.editing_guide, "Editing guide")
        self.assertTrue(result.value.timeline.startswith("[0:00-0:03]"))
        self.assertEqual(result.diagnostics, [])

    def test_failed_timeline_keeps_the_guide(self):
        result = assemble_edit(SEGMENTS, _clips(), vision=MockVisionProvider("Editing guide"), text_provider=_FailingText())
        self.assertTrue(result.success)
        self.assertIsNone(result.value.timeline)
        self.assertEqual(result.diagnostics, ["timeline: capability_error: rate limited"])

    def test_cancel_during_timeline_fails_with_guide_attached(self):
        token = CancelToken()
        text = _CancellingText(token)
        result = assemble_edit(SEGMENTS, [], vision=MockVisionProvider(), text_provider=text, cancel=token)

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.CANCELLED)
        self.assertEqual(result.value.editing_guide, "1. Open with A-ROLL 1 ...")
        self.assertEqual(text.calls, 2)


class ClipReviewTests(unittest.TestCase):
    def test_json_review(self):
        answer = json.dumps(
            {"rating": 4, "matchesScript": False, "needsRegeneration": True, "issues": ["product hidden"], "notes": "Re-shoot."}
        )
        vision = _RecordingVision(answer)
        result = analyze_clip(b"frame", "broll", "Memory foam that actually holds its shape.", vision)

        self.assertTrue(result.success)
        review = result.value
        self.assertEqual(review.rating, 4)
        self.assertFalse(review.matches_script)
        self.assertTrue(review.needs_regeneration)
        self.assertEqual(review.issues, ["product hidden"])
        self.assertIn("Analyze this B-ROLL video frame", vision.calls[0]["prompt"])
        self.assertIn('"Memory foam that actually holds its shape."', vision.calls[0]["prompt"])

    def test_prose_rating_and_clamping(self):
        self.assertEqual(parse_clip_review("Sharp and well lit. I'd give it 8/10.").rating, 8)
        self.assertEqual(parse_clip_review("Solid frame, 7 out of 10.").rating, 7)
        self.assertEqual(parse_clip_review('{"rating": 14}').rating, 10)

    def test_unreadable_review_is_parse_failure(self):
        with self.assertRaises(ParseFailure):
            parse_clip_review("Looks fine to me.")
        result = analyze_clip(b"frame", "aroll", "line", MockVisionProvider("Looks fine to me."))
        self.assertEqual(result.error_kind, ErrorKind.PARSE)

    def test_missing_frame(self):
        result = analyze_clip(b"", "aroll", "line", MockVisionProvider())
        self.assertEqual(result.error_kind, ErrorKind.CAPABILITY)


if __name__ == "__main__":
    unittest.main()
