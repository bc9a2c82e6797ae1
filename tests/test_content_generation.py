from __future__ import annotations

import unittest

from pipeline.content_generation import (
    ensure_realism_cues,
    generate_broll_prompt,
    generate_character_prompt,
    generate_content,
    generate_motion_prompt,
    generate_talking_head_prompt,
    strip_wrapping_quotes,
)
from pipeline.errors import ErrorKind
from pipeline.providers import MockTextProvider
from schemas.generation import ContentType, GenerationMode, GenerationRequest, GenerationResult
from schemas.research import ProductAnalysis
from schemas.script import ScriptSegment


class _FailingText:
    def generate_text(self, *, system_prompt, user_prompt, max_tokens=None, temperature=None, cancel=None):
        return GenerationResult.failure("fake", "overloaded")


class GenerationRequestTests(unittest.TestCase):
    def test_iterate_without_current_value_becomes_fresh(self):
        for current in (None, "", "   "):
            request = GenerationRequest(content_type="hook", mode="iterate", current_value=current)
            self.assertEqual(request.mode, GenerationMode.FRESH)

    def test_iterate_with_current_value_is_kept(self):
        request = GenerationRequest(content_type="hook", mode="iterate", current_value="Stop scrolling")
        self.assertEqual(request.mode, GenerationMode.ITERATE)

    def test_legacy_generate_mode_and_loose_types(self):
        request = GenerationRequest(content_type="B Roll", mode="generate")
        self.assertEqual(request.mode, GenerationMode.FRESH)
        self.assertEqual(GenerationRequest(content_type="Script").content_type, ContentType.SCRIPT)
        self.assertEqual(GenerationRequest(content_type="mystery").content_type, ContentType.GENERAL)


class GenerateContentTests(unittest.TestCase):
    def test_strips_wrapping_quotes(self):
        provider = MockTextProvider('  "My back stopped hurting in a week"  ')
        result = generate_content(GenerationRequest(content_type="hook"), provider)
        self.assertTrue(result.success)
        self.assertEqual(result.value, "My back stopped hurting in a week")
        self.assertEqual(result.stage, "fresh-hook")

    def test_iterate_uses_iterate_provider_and_current_value(self):
        seen: dict[str, str] = {}

        def _iterate(system_prompt: str, user_prompt: str) -> str:
            seen["user"] = user_prompt
            return "tightened"

        request = GenerationRequest(content_type="refine", mode="iterate", current_value="old copy", guidance="shorter")
        result = generate_content(request, MockTextProvider("fresh"), MockTextProvider(_iterate))

        self.assertEqual(result.value, "tightened")
        self.assertIn('"old copy"', seen["user"])
        self.assertIn("Changes requested: shorter", seen["user"])

    def test_provider_failure_is_reported(self):
        result = generate_content(GenerationRequest(content_type="script"), _FailingText())
        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.CAPABILITY)
        self.assertIn("overloaded", result.error_message)

    def test_empty_output_is_a_failure(self):
        result = generate_content(GenerationRequest(content_type="script"), MockTextProvider('""'))
        self.assertFalse(result.success)


class RealismCueTests(unittest.TestCase):
    def test_appends_missing_cues(self):
        out = ensure_realism_cues("A woman holding a mug in her kitchen.")
        self.assertIn("Shot on iPhone 15 Pro, unedited.", out)
        self.assertIn("Natural skin texture with visible pores.", out)

    def test_keeps_prompt_that_already_has_cues(self):
        prompt = "Selfie on an iPhone, visible pores, messy hair."
        self.assertEqual(ensure_realism_cues(prompt), prompt)

    def test_character_prompt_includes_product_context_and_cues(self):
        seen: dict[str, str] = {}

        def _respond(system_prompt: str, user_prompt: str) -> str:
            seen["user"] = user_prompt
            return "A tired woman at her desk holding a lumbar cushion."

        product = ProductAnalysis(name="LumbarPro", category="wellness")
        result = generate_character_prompt(
            product, MockTextProvider(_respond), target_audience="remote workers", camera_view="third-person"
        )

        self.assertTrue(result.success)
        self.assertIn("PRODUCT: LumbarPro", seen["user"])
        self.assertIn("TARGET AUDIENCE: remote workers", seen["user"])
        self.assertIn("Third-person shot", seen["user"])
        self.assertTrue(result.value.endswith("Natural skin texture with visible pores."))


class ProductionPromptTests(unittest.TestCase):
    def _recording(self, answer: str = "prompt text"):
        seen: dict[str, str] = {}

        def _respond(system_prompt: str, user_prompt: str) -> str:
            seen["user"] = user_prompt
            return answer

        return seen, MockTextProvider(_respond)

    def test_broll_prompt_quotes_script_line(self):
        seen, provider = self._recording()
        segment = ScriptSegment(index=3, text="It stays put all day.", type="broll")
        result = generate_broll_prompt(segment, ProductAnalysis(name="LumbarPro", category="wellness"), provider)

        self.assertEqual(result.stage, "broll_prompt")
        self.assertIn('SCRIPT LINE: "It stays put all day."', seen["user"])
        self.assertIn("PRODUCT TYPE: wellness", seen["user"])

    def test_motion_prompt_only_describes_motion(self):
        seen, provider = self._recording('"Slow push-in as hands tighten the strap."')
        result = generate_motion_prompt("hands on a cushion strap", "It stays put all day.", provider)

        self.assertEqual(result.value, "Slow push-in as hands tighten the strap.")
        self.assertIn("do not redescribe this): hands on a cushion strap", seen["user"])

    def test_talking_head_prompt_product_position(self):
        seen, provider = self._recording()
        segment = ScriptSegment(index=1, text="Stop scrolling.", type="hook")
        generate_talking_head_prompt(segment, provider, product_position="wearing", accent="Irish")

        self.assertIn("Subject is wearing the product", seen["user"])
        self.assertIn("ACCENT: Irish", seen["user"])
        self.assertIn("SEGMENT TYPE: hook", seen["user"])


class StripQuotesTests(unittest.TestCase):
    def test_only_matching_outer_quotes_are_removed(self):
        self.assertEqual(strip_wrapping_quotes("'hi there'"), "hi there")
        self.assertEqual(strip_wrapping_quotes('"unbalanced'), '"unbalanced')
        self.assertEqual(strip_wrapping_quotes('He said "wow"'), 'He said "wow"')


if __name__ == "__main__":
    unittest.main()
