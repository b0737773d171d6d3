"""Building :class:`SentencePieceModel` instances from persisted vocabularies.

Two formats are understood:

* SentencePiece ``.model`` files, read through the ``sentencepiece`` library.
* A JSON payload written by :func:`save_model`, handy for small hand-built
  vocabularies and tests.
"""

import json
from pathlib import Path

import sentencepiece as spm

from .constants import PIECE_BYTE, PIECE_CONTROL, PIECE_NORMAL, PIECE_UNKNOWN, PIECE_UNUSED
from .tokenizer import SentencePieceModel

FORMAT_VERSION = 1


def _piece_type(processor, index: int) -> int:
    if processor.IsUnknown(index):
        return PIECE_UNKNOWN
    if processor.IsControl(index):
        return PIECE_CONTROL
    if processor.IsUnused(index):
        return PIECE_UNUSED
    if processor.IsByte(index):
        return PIECE_BYTE
    # User-defined pieces segment like normal ones.
    return PIECE_NORMAL


def load_sentencepiece_model(path, lowercase: bool = False, **kwargs) -> SentencePieceModel:
    """Loads a SentencePiece ``.model`` file.

    Normal and user-defined pieces go into the trie with their score and id.
    The unknown piece sets the unknown id, control pieces (``<s>``,
    ``[CLS]``, ...) become control words, and unused or byte pieces are
    skipped.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"SentencePiece model not found: {path}")
    processor = spm.SentencePieceProcessor()
    try:
        processor.Load(str(path))
    except (OSError, RuntimeError) as exc:
        raise ValueError(f"Unable to parse SentencePiece model {path}: {exc}") from exc

    model = SentencePieceModel(lowercase=lowercase, **kwargs)
    skipped = 0
    for index in range(processor.GetPieceSize()):
        piece = processor.IdToPiece(index)
        kind = _piece_type(processor, index)
        if kind == PIECE_UNKNOWN:
            model.set_unknown_index(index)
        elif kind == PIECE_CONTROL:
            model.set_control_word(piece, index)
        elif kind in (PIECE_UNUSED, PIECE_BYTE):
            skipped += 1
        else:
            model.insert(piece, processor.GetScore(index), index)
    model._log(f"[ModelIO] Loaded {processor.GetPieceSize()} pieces from {path} ({skipped} skipped).")
    model.freeze()
    return model


def save_model(model: SentencePieceModel, path) -> None:
    """Persists the vocabulary and configuration of ``model`` as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "format_version": FORMAT_VERSION,
        "config": {
            "lowercase": model.lowercase,
            "unknown_id": model.get_unknown_index(),
            "drop_empty_leading": model.drop_empty_leading,
        },
        "model_state": {
            "pieces": [[piece, score, piece_id] for piece, score, piece_id in model.trie.pieces()],
            "control_words": model.control_words,
        },
    }
    # Explicit UTF-8 keeps "▁" and non-Latin pieces readable on every platform.
    path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")


def load_model(path, **kwargs) -> SentencePieceModel:
    """Loads a model written by :func:`save_model`.

    Keyword arguments override the stored configuration (e.g. ``device``).
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Model file not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Model file {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict) or "model_state" not in payload:
        raise ValueError(f"Model file {path} has no 'model_state' block.")

    cfg = payload.get("config", {})
    state = payload["model_state"]
    options = {
        "lowercase": cfg.get("lowercase", False),
        "drop_empty_leading": cfg.get("drop_empty_leading", True),
    }
    options.update(kwargs)
    try:
        pieces = [(str(piece), float(score), int(piece_id)) for piece, score, piece_id in state.get("pieces", [])]
        control_words = {str(word): int(index) for word, index in state.get("control_words", {}).items()}
        unknown_id = int(cfg.get("unknown_id", 0))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Malformed model_state in {path}: {exc}") from exc

    model = SentencePieceModel.from_pieces(pieces, unknown_id=unknown_id, control_words=control_words, **options)
    model._log(f"[ModelIO] Loaded {len(pieces)} pieces from {path}.")
    return model


def load_any(path, **kwargs) -> SentencePieceModel:
    """Dispatches on the file suffix: ``.json`` to :func:`load_model`, else SentencePiece."""
    if Path(path).suffix.lower() == ".json":
        return load_model(path, **kwargs)
    return load_sentencepiece_model(path, **kwargs)
