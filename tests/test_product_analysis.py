from __future__ import annotations

import json
import unittest

from pipeline.errors import ErrorKind
from pipeline.product_analysis import analyze_product, build_analysis_prompt, build_product_context
from pipeline.providers import MockVisionProvider
from prompts.research_system import PRODUCT_ANALYSIS_PROMPT
from schemas.research import ProductAnalysis


class AnalyzeProductTests(unittest.TestCase):
    def test_camel_case_answer_is_parsed(self):
        answer = "```json\n" + json.dumps(
            {
                "name": "LumbarPro",
                "category": "wellness",
                "functionalFeatures": ["memory foam", "adjustable strap"],
                "benefits": {"primary": "less back pain"},
                "adHooks": ["My chair was the problem"],
            }
        ) + "\n```"
        result = analyze_product(b"\x89PNG", MockVisionProvider(answer))

        self.assertTrue(result.success)
        analysis = result.value
        self.assertEqual(analysis.name, "LumbarPro")
        self.assertEqual(analysis.functional_features, ["memory foam", "adjustable strap"])
        self.assertEqual(analysis.benefits.primary, "less back pain")
        self.assertEqual(analysis.ad_hooks, ["My chair was the problem"])

    def test_prose_answer_is_parse_failure(self):
        result = analyze_product(b"\x89PNG", MockVisionProvider("This looks like a cushion."))
        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.PARSE)

    def test_schema_mismatch_is_parse_failure(self):
        result = analyze_product(b"\x89PNG", MockVisionProvider('{"functional_features": "not a list"}'))
        self.assertEqual(result.error_kind, ErrorKind.PARSE)

    def test_missing_image(self):
        result = analyze_product(b"", MockVisionProvider())
        self.assertEqual(result.error_kind, ErrorKind.CAPABILITY)


class _RecordingVision(MockVisionProvider):
    def __init__(self, response=None):
        super().__init__(response)
        self.calls: list[dict] = []

    def analyze_image(self, *, image_bytes, prompt, mime_type="", cancel=None, extra_images=None):
        self.calls.append({"image_bytes": image_bytes, "prompt": prompt, "extra_images": extra_images})
        return super().analyze_image(image_bytes=image_bytes, prompt=prompt, mime_type=mime_type, cancel=cancel)


class MultiImageAnalysisTests(unittest.TestCase):
    def test_all_angles_go_out_in_one_request(self):
        vision = _RecordingVision('{"name": "LumbarPro"}')
        result = analyze_product(
            [b"front", b"side", b"back"],
            vision,
            context={"brand_name": "Lumbra", "price": "$39", "product_url": "https://example.com/p"},
        )

        self.assertTrue(result.success)
        self.assertEqual(len(vision.calls), 1)
        call = vision.calls[0]
        self.assertEqual(call["image_bytes"], b"front")
        self.assertEqual(call["extra_images"], [b"side", b"back"])
        self.assertIn("Multiple images of the same product", call["prompt"])
        self.assertIn("BRAND: Lumbra", call["prompt"])
        self.assertIn("PRICE: $39", call["prompt"])
        self.assertNotIn("PRODUCT URL", call["prompt"])

    def test_single_image_in_a_list_uses_context_block(self):
        vision = _RecordingVision('{"name": "LumbarPro"}')
        analyze_product([b"front"], vision, context={"additional_info": "ships with two straps"})

        call = vision.calls[0]
        self.assertIsNone(call["extra_images"])
        self.assertTrue(call["prompt"].endswith("CONTEXT PROVIDED:\nADDITIONAL INFO: ships with two straps"))
        self.assertNotIn("Multiple images", call["prompt"])

    def test_prompt_without_context_is_the_base_prompt(self):
        self.assertEqual(build_analysis_prompt(), PRODUCT_ANALYSIS_PROMPT)
        self.assertEqual(build_analysis_prompt(1, {"brand_name": "  "}), PRODUCT_ANALYSIS_PROMPT)

    def test_empty_list_is_capability_error(self):
        self.assertEqual(analyze_product([], MockVisionProvider()).error_kind, ErrorKind.CAPABILITY)


class ProductContextTests(unittest.TestCase):
    def test_empty_fields_are_left_out(self):
        self.assertEqual(build_product_context(ProductAnalysis()), "PRODUCT: the product")

        analysis = ProductAnalysis.model_validate(
            {"name": "LumbarPro", "category": "wellness", "subcategory": "back care", "functional_features": ["memory foam"]}
        )
        self.assertEqual(
            build_product_context(analysis),
            "PRODUCT: LumbarPro\nCategory: wellness > back care\nKey Features: memory foam",
        )


if __name__ == "__main__":
    unittest.main()
