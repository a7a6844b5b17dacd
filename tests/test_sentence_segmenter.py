from __future__ import annotations

import unittest

from sentence_segmenter import last_sentences, split_into_sentences


class SplitIntoSentencesTests(unittest.TestCase):
    def test_keeps_terminal_punctuation_and_trailing_fragment(self) -> None:
        self.assertEqual(
            split_into_sentences("Hello world. How are you? Fine"),
            ["Hello world.", "How are you?", "Fine"],
        )

    def test_empty_and_whitespace_input_yield_nothing(self) -> None:
        self.assertEqual(split_into_sentences(""), [])
        self.assertEqual(split_into_sentences("   \n\t"), [])

    def test_repeated_punctuation_stays_with_its_sentence(self) -> None:
        self.assertEqual(split_into_sentences("Wait... what?! Okay."), ["Wait...", "what?!", "Okay."])

    def test_punctuation_only_input_is_returned_whole(self) -> None:
        self.assertEqual(split_into_sentences(" ?! "), ["?!"])

    def test_is_idempotent_on_joined_output(self) -> None:
        first = split_into_sentences("One. Two! Three")
        self.assertEqual(split_into_sentences(" ".join(first)), first)


class LastSentencesTests(unittest.TestCase):
    def test_keeps_only_most_recent_units(self) -> None:
        self.assertEqual(last_sentences("One. Two. Three. Four.", limit=3), ["Two.", "Three.", "Four."])

    def test_non_positive_limit_returns_nothing(self) -> None:
        self.assertEqual(last_sentences("One. Two.", limit=0), [])


if __name__ == "__main__":
    unittest.main()
