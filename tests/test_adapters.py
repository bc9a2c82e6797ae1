from __future__ import annotations

import unittest

import jwt

from pipeline.elevenlabs import estimate_speech_duration, fits_in_duration
from pipeline.errors import CapabilityError
from pipeline.kling import KlingVideoProvider, map_task_status
from pipeline.perplexity import estimate_search_cost


class KlingTests(unittest.TestCase):
    def test_task_status_vocabulary(self):
        self.assertEqual(map_task_status("submitted"), "queued")
        self.assertEqual(map_task_status("processing"), "running")
        self.assertEqual(map_task_status("SUCCEED"), "succeeded")
        self.assertEqual(map_task_status("failed"), "failed")
        self.assertEqual(map_task_status(None), "running")
        self.assertEqual(map_task_status("something-new"), "running")

    def test_auth_token_is_signed_and_cached(self):
        provider = KlingVideoProvider("ak_test", "sk_test", base_url="https://kling.invalid")
        token = provider._auth_token()

        claims = jwt.decode(token, "sk_test", algorithms=["HS256"])
        self.assertEqual(claims["iss"], "ak_test")
        self.assertGreater(claims["exp"], claims["nbf"])
        self.assertEqual(provider._auth_token(), token)

    def test_missing_keys_raise(self):
        with self.assertRaises(CapabilityError):
            KlingVideoProvider(" ", " ")


class PerplexityCostTests(unittest.TestCase):
    def test_token_pricing_plus_request_fee(self):
        cost = estimate_search_cost("sonar-pro", {"prompt_tokens": 1_000_000, "completion_tokens": 1_000_000})
        self.assertAlmostEqual(cost, 18.006)

    def test_deep_research_adds_citation_and_query_costs(self):
        cost = estimate_search_cost(
            "sonar-deep-research",
            {"input_tokens": 1_000_000, "citation_tokens": 1_000_000, "num_search_queries": 10},
        )
        self.assertAlmostEqual(cost, 2.0 + 2.0 + 0.05)

    def test_unknown_model_priced_as_sonar_pro(self):
        usage = {"prompt_tokens": 1200, "completion_tokens": 800}
        self.assertEqual(estimate_search_cost("sonar-ultra", usage), estimate_search_cost("sonar-pro", usage))


class SpeechTimingTests(unittest.TestCase):
    def test_duration_rounds_up(self):
        self.assertEqual(estimate_speech_duration(""), 0)
        self.assertEqual(estimate_speech_duration("one two three"), 2)
        self.assertEqual(estimate_speech_duration(" ".join(["w"] * 150)), 60)

    def test_fits_in_duration(self):
        self.assertTrue(fits_in_duration(" ".join(["w"] * 20), 8))
        self.assertFalse(fits_in_duration(" ".join(["w"] * 21), 8))


if __name__ == "__main__":
    unittest.main()
