"""
AIProof Hash Canonicalizer Tests

Fixed vectors for every digest that ends up in a signed record. A change
to any of these values invalidates every previously published signature.
"""

import unittest

from aiproof import (
    ZERO_HASH,
    PROGRAM_HASH_PLACEHOLDER,
    canonicalize,
    digest_text,
    digest_params,
    digest_keywords,
    digest_model_config,
    to_fixed_width,
    is_zero_hash,
    ordered_json,
)
from aiproof.hashing import hashes_equal, merge_params
from aiproof.keywords import extract_keywords, keyword_summary
from aiproof.models import Keyword

HAIKU_PROMPT = "Write a haiku about testing."
HAIKU = "Bugs hide in silence / Tests reveal the hidden truth / Code sings, clean and clear"


class TestDigestText(unittest.TestCase):

    def test_prompt_vector(self):
        self.assertEqual(
            digest_text(HAIKU_PROMPT),
            "0xa5d5e2b6a7a18bd8c0541989ce1d271bd168b17ef6069a52b48c42faaeab60cc",
        )

    def test_output_vector(self):
        self.assertEqual(
            digest_text(HAIKU),
            "0xf5c0e4982b758a874cec28a5370a8c99b1035fe0ed89f7a0fbbda85494576f39",
        )

    def test_empty_string(self):
        self.assertEqual(
            digest_text(""),
            "0xe3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855",
        )

    def test_no_normalization(self):
        self.assertNotEqual(digest_text("text"), digest_text("text "))
        self.assertNotEqual(digest_text("text"), digest_text("Text"))

    def test_bytes_and_str_agree(self):
        self.assertEqual(digest_text("héllo"), digest_text("héllo".encode("utf-8")))

    def test_format(self):
        h = digest_text("anything")
        self.assertTrue(h.startswith("0x"))
        self.assertEqual(len(h), 66)
        self.assertEqual(h, h.lower())


class TestDigestParams(unittest.TestCase):

    def test_defaults_vector(self):
        expected = "0xbb1d14fa2894535f7246d004118088cfa74a05aec759b5a0a38d03ff95ad1edf"
        self.assertEqual(digest_params({}), expected)
        self.assertEqual(digest_params(None), expected)
        self.assertEqual(digest_params({"temperature": 0, "top_p": 1}), expected)

    def test_caller_values_win(self):
        self.assertEqual(
            digest_params({"temperature": 0.3, "max_tokens": 400}),
            "0x96330be81fc0d52853ced3d0e167e2a6ce54da871e770647dd7cd8f57f5abb34",
        )
        self.assertEqual(merge_params({"temperature": 0.7})["temperature"], 0.7)

    def test_key_order_irrelevant(self):
        self.assertEqual(
            digest_params({"top_p": 0.9, "temperature": 0.5}),
            digest_params({"temperature": 0.5, "top_p": 0.9}),
        )

    def test_integral_float_matches_int(self):
        self.assertEqual(digest_params({"top_p": 1.0}), digest_params({"top_p": 1}))

    def test_non_finite_is_total(self):
        self.assertEqual(
            digest_params({"temperature": float("nan")}),
            digest_params({"temperature": None}),
        )


class TestCanonicalize(unittest.TestCase):

    def test_sorted_compact(self):
        self.assertEqual(canonicalize({"b": 1, "a": {"d": [1.0, 2.5], "c": "x"}}),
                         b'{"a":{"c":"x","d":[1,2.5]},"b":1}')

    def test_non_ascii_unescaped(self):
        self.assertEqual(canonicalize({"w": "café"}), '{"w":"café"}'.encode("utf-8"))

    def test_ordered_json_keeps_order(self):
        self.assertEqual(ordered_json({"word": "a", "count": 1}), '{"word":"a","count":1}')


class TestKeywords(unittest.TestCase):

    def test_haiku_keywords_vector(self):
        keywords = extract_keywords(HAIKU)
        self.assertEqual(
            [k.word for k in keywords],
            ["bugs", "hide", "silence", "tests", "reveal", "hidden", "truth", "code", "sings", "clean"],
        )
        self.assertTrue(all(k.count == 1 for k in keywords))
        self.assertEqual(
            digest_keywords(keywords),
            "0xa998adc165396d499720085e7b34fd6bdfd132c316549b006c29bc8e34236c45",
        )

    def test_ranking_vector(self):
        keywords = extract_keywords("The data pipeline moves data. A data stream feeds the pipeline.")
        self.assertEqual(
            [(k.word, k.count) for k in keywords],
            [("data", 3), ("pipeline", 2), ("moves", 1), ("stream", 1), ("feeds", 1)],
        )

    def test_digest_is_order_sensitive(self):
        listed = [{"word": "data", "count": 3}, {"word": "pipeline", "count": 2}, {"word": "stream", "count": 1}]
        self.assertEqual(
            digest_keywords(listed),
            "0x72cec935eca83944484851337f735f3e0252da26f7017b58696d136e47051f42",
        )
        self.assertNotEqual(digest_keywords(listed), digest_keywords(list(reversed(listed))))

    def test_models_and_dicts_agree(self):
        as_models = [Keyword(word="data", count=3)]
        self.assertEqual(digest_keywords(as_models), digest_keywords([{"word": "data", "count": 3}]))

    def test_short_words_dropped(self):
        self.assertEqual(extract_keywords("the cat sat on a mat"), [])

    def test_limit(self):
        text = " ".join(f"word{i:02d}" for i in range(20))
        self.assertEqual(len(extract_keywords(text)), 10)

    def test_summary(self):
        self.assertEqual(
            keyword_summary(extract_keywords(HAIKU)),
            "Key topics: bugs, hide, silence",
        )


class TestFixedWidth(unittest.TestCase):

    def test_prefixes(self):
        h = "ab" * 32
        self.assertEqual(to_fixed_width(h), "0x" + h)
        self.assertEqual(to_fixed_width("0x" + h.upper()), "0x" + h)
        self.assertEqual(to_fixed_width("sha256:" + h), "0x" + h)

    def test_left_pad(self):
        self.assertEqual(to_fixed_width("0xabc"), "0x" + "0" * 61 + "abc")

    def test_sentinel_inputs(self):
        for value in ("", None, PROGRAM_HASH_PLACEHOLDER, "not-hex", "0x" + "1" * 65):
            self.assertEqual(to_fixed_width(value), ZERO_HASH)

    def test_zero_hash(self):
        self.assertEqual(ZERO_HASH, "0x" + "0" * 64)
        self.assertTrue(is_zero_hash(ZERO_HASH))
        self.assertTrue(is_zero_hash(""))
        self.assertFalse(is_zero_hash(digest_text("x")))

    def test_mock_program_hash(self):
        self.assertEqual(
            to_fixed_width(digest_text("mock_program_v1")),
            "0x0357ac6374fed1437ff6385e54b3aea66773a813e18e5c34465db4d27d78e007",
        )


class TestModelConfig(unittest.TestCase):

    def test_model_hash_binds_params(self):
        a = digest_model_config("gpt-4o-mini", {"temperature": 0})
        b = digest_model_config("gpt-4o-mini", {"temperature": 0.5})
        self.assertNotEqual(a, b)
        self.assertEqual(a, digest_model_config("gpt-4o-mini", {"temperature": 0.0}))

    def test_hashes_equal(self):
        h = digest_text("x")
        self.assertTrue(hashes_equal(h, h.upper().replace("0X", "0x")))
        self.assertFalse(hashes_equal(h, ""))
        self.assertFalse(hashes_equal(None, None))


if __name__ == "__main__":
    unittest.main()
