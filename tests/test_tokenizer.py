from __future__ import annotations

import unittest
from concurrent.futures import ThreadPoolExecutor

from unigram_core.constants import SEP
from unigram_core.tokenizer import SentencePieceModel
from unigram_core.tokens import Token, TokenOffset

PIECES = [
    ("▁", -2.0, 13),
    (".", -3.0, 9),
    ("▁this", -1.0, 52),
    ("▁is", -1.5, 27),
    ("▁a", -1.2, 24),
    ("t", -4.0, 30),
    ("h", -4.0, 31),
    ("i", -4.0, 32),
    ("s", -4.0, 33),
    ("th", -3.0, 40),
    ("xy", -1.0, 41),
    ("▁x", -2.5, 43),
    ("y", -0.5, 42),
]
CONTROL_WORDS = {"<cls>": 3, "<sep>": 4}

TEXTS = [
    "this",
    ".",
    "this is a.",
    " this",
    "THIS is ab",
    "thisqz is a thing",
    "this\tis\x00a.",
    "我想学习汉语 this",
]


def build_model(**kwargs) -> SentencePieceModel:
    return SentencePieceModel.from_pieces(PIECES, unknown_id=0, control_words=CONTROL_WORDS, **kwargs)


class TokenizeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.model = build_model()

    def test_single_piece(self) -> None:
        self.assertEqual(self.model.tokenize("this"), [Token(52, "▁this")])

    def test_punctuation_after_injected_separator(self) -> None:
        self.assertEqual(self.model.tokenize("."), [Token(13, "▁"), Token(9, ".")])

    def test_sentence(self) -> None:
        self.assertEqual(
            self.model.tokenize("this is a."),
            [Token(52, "▁this"), Token(27, "▁is"), Token(24, "▁a"), Token(9, ".")],
        )
        self.assertEqual(self.model.tokenize_to_ids("this is a."), [52, 27, 24, 9])

    def test_unknown_run_emits_one_token(self) -> None:
        # "q" and "z" are both out of vocabulary; only the first scalar of the
        # run is emitted.
        self.assertEqual(self.model.tokenize("thisqz"), [Token(52, "▁this"), Token(0, "q")])

    def test_unknown_runs_split_by_known_pieces(self) -> None:
        tokens = self.model.tokenize("THIS")
        self.assertEqual(tokens, [Token(13, "▁"), Token(0, "T")])

    def test_lowercase_model(self) -> None:
        model = build_model(lowercase=True)
        self.assertEqual(model.tokenize("THIS"), [Token(52, "▁this")])

    def test_equal_scores_keep_first_candidate(self) -> None:
        # "▁" + "xy" and "▁x" + "y" both score -3.0; the segment written first
        # (from position 1) is not replaced by the later equal candidate.
        self.assertEqual(self.model.tokenize("xy"), [Token(13, "▁"), Token(41, "xy")])

    def test_leading_separator_in_input(self) -> None:
        self.assertEqual(self.model.tokenize(SEP + "this"), [Token(52, "▁this")])

    def test_empty_input(self) -> None:
        self.assertEqual(self.model.tokenize(""), [])
        self.assertEqual(self.model.tokenize_to_ids(""), [])
        self.assertEqual(self.model.tokenize_to_offsets(""), [])

    def test_whitespace_only_input(self) -> None:
        self.assertEqual(self.model.tokenize(" "), [Token(13, "▁"), Token(13, "▁")])
        self.assertEqual(self.model.tokenize_to_offsets(" "), [TokenOffset(13, "▁", 0, 1)])

    def test_non_string_input(self) -> None:
        with self.assertRaises(TypeError):
            self.model.tokenize(b"this")

    def test_empty_vocabulary(self) -> None:
        model = SentencePieceModel.from_pieces([], unknown_id=7)
        self.assertEqual(model.tokenize("ab"), [Token(7, "▁")])


class OffsetTests(unittest.TestCase):
    def setUp(self) -> None:
        self.model = build_model()

    def assert_offsets_index_normalized_text(self, text: str) -> None:
        # Offsets point into the prepared buffer minus the injected separator;
        # a token that covered that separator is one scalar longer than its span.
        offsets = self.model.tokenize_to_offsets(text)
        prepared = self.model.prepare(text)
        scalars = prepared.scalars[prepared.padding:]
        for i, offset in enumerate(offsets):
            word = "".join(scalars[offset.start:offset.end])
            expected = offset.text
            if prepared.padding and len(expected) == offset.end - offset.start + 1:
                expected = expected[1:]
            self.assertEqual(expected, word, f"{text!r} token {i}")

    def test_offsets_line_up(self) -> None:
        for text in TEXTS:
            self.assert_offsets_index_normalized_text(text)

    def test_sentence_offsets(self) -> None:
        self.assertEqual(
            self.model.tokenize_to_offsets("this is a."),
            [
                TokenOffset(52, "▁this", 0, 4),
                TokenOffset(27, "▁is", 4, 7),
                TokenOffset(24, "▁a", 7, 9),
                TokenOffset(9, ".", 9, 10),
            ],
        )

    def test_zero_length_leading_segment_is_dropped(self) -> None:
        self.assertEqual(self.model.tokenize_to_offsets("."), [TokenOffset(9, ".", 0, 1)])
        self.assertEqual(self.model.tokenize_to_offsets(" this"), [TokenOffset(52, "▁this", 0, 5)])

    def test_zero_length_guard_can_be_disabled(self) -> None:
        model = build_model(drop_empty_leading=False)
        self.assertEqual(
            model.tokenize_to_offsets("."),
            [TokenOffset(13, "▁", 0, 0), TokenOffset(9, ".", 0, 1)],
        )

    def test_no_padding_correction_without_injected_separator(self) -> None:
        self.assertEqual(self.model.tokenize_to_offsets(SEP + "this"), [TokenOffset(52, "▁this", 0, 5)])

    def test_unknown_offsets(self) -> None:
        self.assertEqual(
            self.model.tokenize_to_offsets("thisqz"),
            [TokenOffset(52, "▁this", 0, 4), TokenOffset(0, "q", 4, 5)],
        )

    def test_plain_tokens_match_offset_records(self) -> None:
        for text in TEXTS:
            plain = self.model.tokenize(text)
            with_offsets = [t.to_token() for t in self.model.tokenize_to_offsets(text)]
            # Offset mode may only drop a leading separator-only token.
            if len(plain) == len(with_offsets) + 1:
                self.assertEqual(plain[0].text, SEP)
                plain = plain[1:]
            self.assertEqual(plain, with_offsets, text)


class SegmentationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.model = build_model()

    def test_best_path_partitions_buffer(self) -> None:
        for text in TEXTS:
            scalars = self.model.prepare(text).scalars
            segments = self.model._decode_forward(scalars)
            path = self.model._decode_backwards(segments)
            self.assertEqual(path[0].start, 0)
            self.assertEqual(path[-1].end, len(scalars))
            for prev, cur in zip(path, path[1:]):
                self.assertEqual(prev.end, cur.start)
            for seg in path:
                self.assertLess(seg.start, seg.end)

    def test_path_score_is_cumulative(self) -> None:
        scalars = self.model.prepare("this is a.").scalars
        path = self.model._decode_backwards(self.model._decode_forward(scalars))
        self.assertAlmostEqual(path[-1].score, -1.0 - 1.5 - 1.2 - 3.0, places=5)

    def test_deterministic(self) -> None:
        for text in TEXTS:
            self.assertEqual(self.model.tokenize_to_offsets(text), self.model.tokenize_to_offsets(text))

    def test_concurrent_calls_match_sequential(self) -> None:
        expected = [self.model.tokenize_to_offsets(text) for text in TEXTS]
        jobs = TEXTS * 8
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(self.model.tokenize_to_offsets, jobs))
        for i, result in enumerate(results):
            self.assertEqual(result, expected[i % len(TEXTS)])


class ModelStateTests(unittest.TestCase):
    def setUp(self) -> None:
        self.model = build_model()

    def test_control_words(self) -> None:
        self.assertEqual(self.model.get_control_word("<cls>"), (3, True))
        self.assertEqual(self.model.get_control_word("<nope>"), (0, False))

    def test_control_words_bypass_segmentation(self) -> None:
        ids = self.model.tokenize_to_ids("<cls>")
        self.assertNotIn(3, ids)

    def test_unknown_index(self) -> None:
        self.assertEqual(self.model.get_unknown_index(), 0)
        model = SentencePieceModel()
        model.set_unknown_index(1)
        self.assertEqual(model.get_unknown_index(), 1)

    def test_model_is_immutable_after_use(self) -> None:
        model = SentencePieceModel()
        model.insert("▁this", -1.0, 52)
        model.tokenize("this")
        with self.assertRaises(RuntimeError):
            model.insert("▁that", -1.0, 53)
        with self.assertRaises(RuntimeError):
            model.set_unknown_index(2)
        with self.assertRaises(RuntimeError):
            model.set_control_word("<s>", 1)

    def test_independent_models(self) -> None:
        other = SentencePieceModel.from_pieces([("▁this", -1.0, 7)], unknown_id=1)
        self.assertEqual(other.tokenize_to_ids("this"), [7])
        self.assertEqual(self.model.tokenize_to_ids("this"), [52])

    def test_vocabulary_lookups(self) -> None:
        self.assertEqual(self.model.piece_to_id("▁this"), 52)
        self.assertEqual(self.model.piece_to_id("<cls>"), 3)
        self.assertEqual(self.model.piece_to_id("▁thi"), 0)
        self.assertEqual(self.model.id_to_piece(52), "▁this")
        self.assertEqual(self.model.id_to_piece(0), "<unk>")
        self.assertIsNone(self.model.id_to_piece(12345))

    def test_lookups_during_construction_do_not_freeze(self) -> None:
        model = SentencePieceModel()
        model.insert("▁this", -1.0, 52)
        self.assertEqual(model.id_to_piece(52), "▁this")
        self.assertEqual(model.vocab_size, 2)
        self.assertFalse(model.is_control(3))
        self.assertFalse(model.frozen)
        model.insert("▁is", -1.5, 27)
        model.set_control_word("<cls>", 3)
        self.assertEqual(model.id_to_piece(27), "▁is")
        self.assertTrue(model.is_control(3))
        self.assertEqual(model.vocab_size, 4)

    def test_control_ids_after_freeze(self) -> None:
        self.assertTrue(self.model.frozen)
        self.assertTrue(self.model.is_control(3))
        self.assertTrue(self.model.is_control(4))
        self.assertFalse(self.model.is_control(52))
        self.assertFalse(self.model.is_control(0))

    def test_decode(self) -> None:
        text = "this is a."
        self.assertEqual(self.model.decode(self.model.tokenize(text)), text)
        self.assertEqual(self.model.decode([3, 52, 27, 24, 9, 4]), text)
        self.assertEqual(self.model.decode([52, 0]), "this ⁇ ")


if __name__ == "__main__":
    unittest.main()
