import unicodedata as ud
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, List

from .constants import *

# This module turns raw text into the scalar buffer the segmenter walks:
# normalization, the leading separator, control scrubbing and lowercasing.
# Every step keeps the number of scalars, so offsets into the buffer map back
# onto the normalized text one-to-one (after the optional leading separator).

Normalizer = Callable[[str], str]

# --- Normalization ---

@lru_cache(maxsize=65536)
def _normalize_scalar(ch: str) -> str:
    folded = ud.normalize("NFKC", ch)
    return folded if len(folded) == 1 else ch

def normalize(text: str) -> str:
    """NFKC-folds each scalar on its own, keeping folds that stay one scalar wide.

    Idempotent, and ``len(normalize(t)) == len(t)`` for every ``t``. Combining
    marks are not composed onto their base (that would shrink the text).
    """
    return "".join(_normalize_scalar(ch) for ch in text)

# --- Scalar classes ---

def is_whitespace(ch: str) -> bool:
    return WHITESPACE_RE.match(ch) is not None

def is_scrubbed(ch: str) -> bool:
    """Control, format, private-use, surrogate and NUL scalars (not whitespace)."""
    return ch == NUL or SCRUB_RE.match(ch) is not None

def lower_scalar(ch: str) -> str:
    low = ch.lower()
    # "İ".lower() is two scalars; keep the base letter so the count holds.
    return low if len(low) == 1 else low[0]

# --- Buffer construction ---

def to_scalars(text: str) -> List[str]:
    """Splits ``text`` into scalars, prefixing ``SEP`` unless it already leads."""
    scalars = [] if text[:1] == SEP else [SEP]
    scalars.extend(text)
    return scalars

def scrub_scalars(scalars: List[str], lowercase: bool = False, start: int = 0) -> None:
    """Rewrites ``scalars[start:]`` in place.

    First rule that applies wins: scrubbed scalars become a plain space,
    whitespace becomes ``SEP``, and with ``lowercase`` letters are lowered.
    """
    for i in range(start, len(scalars)):
        ch = scalars[i]
        if is_scrubbed(ch):
            scalars[i] = SPACE
        elif is_whitespace(ch):
            scalars[i] = SEP
        elif lowercase:
            scalars[i] = lower_scalar(ch)

def replace_separator(text: str) -> str:
    return text.replace(SEP, SPACE)

@dataclass
class PreparedText:
    """The scalar buffer for one tokenize call.

    Attributes:
        scalars (list[str]): Prepared buffer, one entry per Unicode scalar.
        padding (int): 1 if a leading ``SEP`` was injected, else 0.
        normalized (str): Normalizer output the buffer was built from.
    """
    scalars: List[str]
    padding: int
    normalized: str

    def __len__(self) -> int:
        return len(self.scalars)

def prepare_text(text: str, lowercase: bool = False, normalizer: Normalizer = normalize) -> PreparedText:
    normalized = normalizer(text)
    scalars = to_scalars(normalized)
    padding = len(scalars) - len(normalized)
    scrub_scalars(scalars, lowercase=lowercase, start=padding)
    return PreparedText(scalars, padding, normalized)
