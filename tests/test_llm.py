from __future__ import annotations

import unittest
from unittest.mock import patch

from pipeline import llm
from pipeline.errors import ParseFailure
from pipeline.llm import coerce_llm_output, extract_json_object


class ExtractJsonObjectTests(unittest.TestCase):
    def test_plain_and_fenced_objects(self):
        self.assertEqual(extract_json_object('{"score": 91}'), {"score": 91})
        self.assertEqual(extract_json_object('```json\n{"score": 91, "issues": [],}\n```'), {"score": 91, "issues": []})

    def test_object_inside_prose(self):
        raw = 'Sure! Here is the rating: {"score": 40, "passed": false} Let me know if you need more.'
        self.assertEqual(extract_json_object(raw), {"score": 40, "passed": False})

    def test_missing_object_raises_parse_failure(self):
        for raw in ("", None, "no json here", "[1, 2, 3]"):
            with self.assertRaises(ParseFailure):
                extract_json_object(raw)


class CoerceLlmOutputTests(unittest.TestCase):
    def test_keys_become_snake_case(self):
        self.assertEqual(
            coerce_llm_output({"hookAngles": [{"hookLine": "x", "Target Emotion": "relief"}]}),
            {"hook_angles": [{"hook_line": "x", "target_emotion": "relief"}]},
        )

    def test_existing_snake_case_key_wins(self):
        self.assertEqual(coerce_llm_output({"pain_points": ["a"], "painPoints": ["b"]}), {"pain_points": ["a"]})


class UsageTrackingTests(unittest.TestCase):
    def setUp(self):
        llm.reset_usage()

    def tearDown(self):
        llm.reset_usage()

    def test_token_cost_uses_longest_prefix(self):
        cost = llm.record_external_usage("anthropic", "claude-opus-4-6", 1_000_000, 1_000_000)
        self.assertAlmostEqual(cost, 90.0)
        self.assertAlmostEqual(
            llm.record_external_usage("openai", "gpt-5.2-mini-2026", 1_000_000, 0), 0.30
        )

    def test_summary_includes_external_costs(self):
        llm.record_external_usage("google", "gemini-2.5-flash", 1_000_000, 1_000_000)
        llm.record_external_usage("elevenlabs", "eleven_multilingual_v2", cost=0.03, task="speech")

        summary = llm.get_usage_summary()
        self.assertEqual(summary["calls"], 2)
        self.assertEqual(summary["total_tokens"], 2_000_000)
        self.assertAlmostEqual(summary["total_cost"], 0.78)
        self.assertEqual(summary["by_provider"], {"google": 0.75, "elevenlabs": 0.03})

    def test_missing_api_key_is_llm_error(self):
        with patch.dict(llm._clients, {}, clear=True), patch.object(llm.config, "OPENAI_API_KEY", ""):
            with self.assertRaises(llm.LLMError) as ctx:
                llm.call_llm("sys", "user", provider="openai", model="gpt-5.2")
        self.assertIn("OPENAI_API_KEY", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
