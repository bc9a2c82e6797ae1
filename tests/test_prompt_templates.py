from __future__ import annotations

import unittest

from pipeline.prompt_templates import (
    PromptTemplate,
    PromptTemplateRegistry,
    build_prompt,
    normalise_context,
    render_value,
)
from schemas.generation import ContentType
from schemas.research import ProductAnalysis, ResearchBrief

ALL_TYPES = ["description", "audience", "script", "hook", "character", "broll", "segment", "refine", "general"]
PLACEHOLDERS = ("undefined", "null", "None")


class PromptTemplateRegistryTests(unittest.TestCase):
    def test_build_is_deterministic(self):
        context = {
            "productName": "LumbarPro",
            "targetAudience": "remote workers",
            "research": {"painPoints": ["back pain when sitting"], "languagePatterns": ["my back is killing me"]},
        }
        for content_type in ALL_TYPES:
            first = build_prompt(content_type, context, "keep it short")
            second = build_prompt(content_type, context, "keep it short")
            self.assertEqual(first, second, content_type)

    def test_missing_fields_leave_no_placeholder_text(self):
        sparse = {
            "productName": None,
            "productDescription": "",
            "targetAudience": "undefined",
            "research": {"painPoints": [], "languagePatterns": None},
            "productAnalysis": {"name": "null", "benefits": {}},
            "currentValue": "None",
        }
        for content_type in ALL_TYPES:
            for context in ({}, sparse):
                pair = build_prompt(content_type, context, None)
                for placeholder in PLACEHOLDERS:
                    self.assertNotIn(placeholder, pair.user_prompt, f"{content_type}: {pair.user_prompt}")
                    self.assertNotIn(placeholder, pair.system_prompt, content_type)
                self.assertNotIn("\n\n\n", pair.user_prompt)

    def test_script_prompt_carries_product_and_pain_point(self):
        research = ResearchBrief(pain_points=["back pain when sitting"])
        pair = build_prompt(
            ContentType.SCRIPT,
            {"productName": "LumbarPro", "targetAudience": "desk workers", "research": research},
            None,
        )
        self.assertIn("LumbarPro", pair.user_prompt)
        self.assertIn("back pain when sitting", pair.user_prompt)
        self.assertIn("Research insights:", pair.user_prompt)
        self.assertIn("- back pain when sitting", pair.user_prompt)

    def test_hook_prompt_uses_research_lists(self):
        pair = build_prompt(
            "hook",
            {"product_name": "LumbarPro", "research": {"pain_points": ["stiff lower back"], "language_patterns": ["I can't sit for an hour"]}},
            "more playful",
        )
        self.assertIn("Pain points from research:\n- stiff lower back", pair.user_prompt)
        self.assertIn("I can't sit for an hour", pair.user_prompt)
        self.assertIn("Guidance: more playful", pair.user_prompt)

    def test_product_analysis_model_renders_as_section(self):
        analysis = ProductAnalysis(name="LumbarPro", category="wellness", functional_features=["memory foam"])
        pair = build_prompt("description", {"product_name": "LumbarPro", "product_analysis": analysis}, None)
        self.assertIn("Product analysis:", pair.user_prompt)
        self.assertIn("Category: wellness", pair.user_prompt)
        self.assertIn("- memory foam", pair.user_prompt)

    def test_character_defaults(self):
        pair = build_prompt("character", {}, None)
        self.assertIn("Camera view: selfie", pair.user_prompt)
        self.assertIn("Product position: holding", pair.user_prompt)
        self.assertIn("Setting: bedroom", pair.user_prompt)
        self.assertIn("Target audience: general consumer", pair.user_prompt)

    def test_unknown_type_falls_back_to_general(self):
        pair = build_prompt("voiceover-notes", {"task": "Summarize the brief"}, None)
        self.assertEqual(pair.system_prompt, build_prompt("general", {}, None).system_prompt)
        self.assertTrue(pair.user_prompt.startswith("Summarize the brief"))

    def test_register_overrides_a_type(self):
        registry = PromptTemplateRegistry()
        registry.register("hook", PromptTemplate("sys", lambda ctx, guidance: f"hooks for {ctx.get('product_name')}"))
        pair = registry.build("hook", {"productName": "Mug"})
        self.assertEqual(pair.system_prompt, "sys")
        self.assertEqual(pair.user_prompt, "hooks for Mug")


class ContextRenderingTests(unittest.TestCase):
    def test_normalise_context_snake_cases_and_drops_empties(self):
        cleaned = normalise_context({"targetAudience": " moms ", "painPoints": ["", "tired", None], "extra": "null"})
        self.assertEqual(cleaned, {"target_audience": "moms", "pain_points": ["tired"]})

    def test_render_value_nests_sections(self):
        text = render_value({"customer_avatar": {"name": "Sarah"}, "pain_points": ["a", "b"]})
        self.assertEqual(text, "Customer avatar:\n  Name: Sarah\nPain points:\n  - a\n  - b")


if __name__ == "__main__":
    unittest.main()
