from __future__ import annotations

import unittest

from pipeline.errors import ErrorKind, StageResult
from pipeline.providers import MockStructuredProvider
from pipeline.script_chunker import (
    MAX_WORDS,
    build_segments,
    chunk_script,
    pack_sentences,
    split_sentences,
)
from schemas.script import ChunkedScript

SCRIPT = (
    "Stop scrolling if your back hurts after work. "
    "I spent two years shifting around in my chair every ten minutes. "
    "Then my physical therapist told me about LumbarPro. "
    "It straps onto any chair and stays put all day. "
    "Now I sit through full meetings without thinking about my back. "
    "Grab one before the sale ends."
)


class _FailingStructured:
    name = "failing_structured"

    def generate_structured(self, *, system_prompt, user_prompt, response_model, max_tokens=None, temperature=None, cancel=None):
        return StageResult.fail("structured", ErrorKind.PARSE, "model returned prose")


class SentencePackerTests(unittest.TestCase):
    def test_split_sentences_keeps_terminators(self):
        self.assertEqual(
            split_sentences("Hi there.  Then   left.\nDone?"),
            ["Hi there.", "Then left.", "Done?"],
        )
        self.assertEqual(split_sentences("   "), [])

    def test_chunks_never_break_mid_sentence(self):
        sentences = split_sentences(SCRIPT)
        chunks = pack_sentences(sentences)

        self.assertEqual(" ".join(chunks), " ".join(sentences))
        for chunk in chunks:
            self.assertIn(chunk[-1], ".!?")
            self.assertLessEqual(len(chunk.split()), MAX_WORDS)

    def test_long_sentence_stays_whole(self):
        long_sentence = " ".join(["word"] * 25) + "."
        self.assertEqual(pack_sentences([long_sentence]), [long_sentence])

    def test_short_tail_is_folded_into_previous_chunk(self):
        chunks = pack_sentences(["one two three four five six seven eight nine ten eleven twelve.", "Buy now."])
        self.assertEqual(len(chunks), 1)
        self.assertTrue(chunks[0].endswith("Buy now."))


class ChunkScriptTests(unittest.TestCase):
    def test_packer_path_marks_hook_and_indexes_from_one(self):
        result = chunk_script(SCRIPT)

        self.assertTrue(result.success)
        self.assertEqual(result.provider, "sentence-packer")
        segments = result.value
        self.assertGreater(len(segments), 1)
        self.assertEqual([s.index for s in segments], list(range(1, len(segments) + 1)))
        self.assertEqual(segments[0].type, "hook")
        self.assertTrue(all(s.type == "aroll" for s in segments[1:]))
        self.assertTrue(all(s.duration_estimate_seconds > 0 for s in segments))

    def test_model_path_normalises_types(self):
        canned = ChunkedScript.model_validate(
            {
                "segments": [
                    {"text": "Stop scrolling.", "type": "broll"},
                    {"text": "I tried everything for my back.", "type": "body"},
                    {"text": "Then this showed up.", "type": "B-Roll"},
                    {"text": "   ", "type": "aroll"},
                ]
            }
        )
        result = chunk_script(SCRIPT, MockStructuredProvider({ChunkedScript: canned}))

        self.assertTrue(result.success)
        self.assertEqual(result.provider, "mock_structured")
        self.assertEqual([s.type for s in result.value], ["hook", "aroll", "broll"])
        self.assertEqual([s.index for s in result.value], [1, 2, 3])
        self.assertEqual(result.value[0].duration_estimate_seconds, 1)

    def test_model_failure_falls_back_to_packer(self):
        result = chunk_script(SCRIPT, _FailingStructured())

        self.assertTrue(result.success)
        self.assertEqual(result.provider, "sentence-packer")
        self.assertTrue(any("model chunking failed" in d for d in result.diagnostics))

    def test_empty_model_answer_falls_back_to_packer(self):
        result = chunk_script(SCRIPT, MockStructuredProvider())
        self.assertEqual(result.provider, "sentence-packer")
        self.assertIn("model returned no segments", result.diagnostics)

    def test_empty_script_is_a_parse_failure(self):
        result = chunk_script("  \n ")
        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.PARSE)

    def test_build_segments_skips_blank_text(self):
        segments = build_segments([("", "aroll"), ("Hello there.", "broll")])
        self.assertEqual(len(segments), 1)
        self.assertEqual(segments[0].type, "hook")


if __name__ == "__main__":
    unittest.main()
