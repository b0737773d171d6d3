"""Unigram subword tokenizer: trie-indexed vocabulary plus Viterbi segmentation."""

from .constants import MIN_SCORE, SEP, UNKNOWN_PIECE  # noqa: F401
from .tokens import Segment, Token, TokenOffset  # noqa: F401
from .trie import PieceTrie, PrefixMatch  # noqa: F401
from .utils import PreparedText, normalize, prepare_text  # noqa: F401
from .tokenizer import SentencePieceModel  # noqa: F401
from .model_io import load_any, load_model, load_sentencepiece_model, save_model  # noqa: F401
