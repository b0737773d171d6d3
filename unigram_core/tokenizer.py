import threading
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import torch

from .constants import *
from .tokens import Segment, Token, TokenOffset, make_tokens
from .torch_utils import ensure_tensor, full, resolve_device
from .trie import PieceTrie
from .utils import Normalizer, PreparedText, normalize, prepare_text, replace_separator

UNKNOWN_SURFACE = " ⁇ "


class SentencePieceModel:
    """Unigram subword tokenizer over a fixed, scored vocabulary.

    Text is normalized, prefixed with the ``▁`` separator and split into
    Unicode scalars. A Viterbi pass then picks the segmentation whose piece
    scores sum highest; scalars no piece covers fall back to the unknown id.

    The model is built once (``insert``, ``set_unknown_index``,
    ``set_control_word``) and frozen on first use. A frozen model holds no
    per-call state, so one instance can serve any number of threads.

    Attributes:
        lowercase (bool): Lowercase scalars before segmentation.
        drop_empty_leading (bool): In offset mode, drop segments that cover
            nothing but the injected separator.
        device (torch.device): Device the per-call DP tables live on.
    """

    def __init__(
        self,
        lowercase: bool = False,
        normalizer: Optional[Normalizer] = None,
        drop_empty_leading: bool = True,
        device: str | torch.device | None = None,
        verbose: bool = False,
    ):
        self.lowercase = lowercase
        self.normalizer = normalizer or normalize
        self.drop_empty_leading = drop_empty_leading
        self.device = resolve_device(device)
        self.verbose = verbose

        self._trie = PieceTrie()
        self._unknown = 0
        self._control_words: Dict[str, int] = {}
        self._id_to_piece: Dict[int, str] = {}
        self._control_ids: frozenset = frozenset()
        self._freeze_lock = threading.Lock()

    @classmethod
    def from_pieces(
        cls,
        pieces: Iterable[Tuple[str, float, int]],
        unknown_id: int = 0,
        control_words: Optional[Mapping[str, int]] = None,
        **kwargs,
    ) -> "SentencePieceModel":
        """Builds and freezes a model from ``(piece, score, id)`` triples."""
        model = cls(**kwargs)
        for piece, score, piece_id in pieces:
            model.insert(piece, score, piece_id)
        model.set_unknown_index(unknown_id)
        for word, index in (control_words or {}).items():
            model.set_control_word(word, index)
        model.freeze()
        return model

    def _log(self, message: str) -> None:
        if self.verbose:
            print(message)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _check_mutable(self, what: str) -> None:
        if self._trie.frozen:
            raise RuntimeError(f"Cannot {what}: the model is frozen once tokenization has started.")

    def insert(self, piece: str, score: float, piece_id: int) -> None:
        self._check_mutable(f"insert {piece!r}")
        self._trie.insert(piece, score, piece_id)

    def set_unknown_index(self, index: int) -> None:
        self._check_mutable("set the unknown index")
        self._unknown = int(index)

    def get_unknown_index(self) -> int:
        return self._unknown

    def set_control_word(self, word: str, index: int) -> None:
        self._check_mutable(f"set control word {word!r}")
        self._control_words[word] = int(index)

    def get_control_word(self, word: str) -> Tuple[int, bool]:
        """Exact-match lookup of a control word; ``(0, False)`` when unregistered."""
        index = self._control_words.get(word)
        if index is None:
            return 0, False
        return index, True

    @property
    def control_words(self) -> Dict[str, int]:
        return dict(self._control_words)

    @property
    def trie(self) -> PieceTrie:
        return self._trie

    @property
    def frozen(self) -> bool:
        return self._trie.frozen

    def freeze(self) -> None:
        """Finishes construction. Called automatically by the first tokenize call."""
        if self._trie.frozen:
            return
        with self._freeze_lock:
            if self._trie.frozen:
                return
            self._id_to_piece = self._build_id_to_piece()
            self._control_ids = frozenset(self._control_words.values())
            self._trie.freeze()
        self._log(
            f"[Tokenizer] Vocabulary frozen: {self._trie.num_pieces} pieces, "
            f"{len(self._control_words)} control words, unknown id {self._unknown}, "
            f"device {self.device.type}."
        )

    # ------------------------------------------------------------------
    # Vocabulary queries
    # ------------------------------------------------------------------

    def _build_id_to_piece(self) -> Dict[int, str]:
        id_to_piece = {piece_id: piece for piece, _, piece_id in self._trie.pieces()}
        for word, index in self._control_words.items():
            id_to_piece[index] = word
        id_to_piece.setdefault(self._unknown, UNKNOWN_PIECE)
        return id_to_piece

    def _pieces_by_id(self) -> Dict[int, str]:
        # An unfrozen model may still grow, so its map is rebuilt per query.
        return self._id_to_piece if self._trie.frozen else self._build_id_to_piece()

    @property
    def vocab_size(self) -> int:
        return len(self._pieces_by_id())

    def id_to_piece(self, piece_id: int) -> Optional[str]:
        return self._pieces_by_id().get(piece_id)

    def piece_to_id(self, piece: str) -> int:
        """Id of ``piece`` (vocabulary or control word), else the unknown id."""
        node = self._trie.find(piece)
        if node > 0:
            info = self._trie.node(node)
            if info.end:
                return info.id
        return self._control_words.get(piece, self._unknown)

    def is_control(self, piece_id: int) -> bool:
        if self._trie.frozen:
            return piece_id in self._control_ids
        return piece_id in self._control_words.values()

    # ------------------------------------------------------------------
    # Tokenization
    # ------------------------------------------------------------------

    def prepare(self, text: str) -> PreparedText:
        if not isinstance(text, str):
            raise TypeError(f"Expected text as str, got {type(text).__name__}.")
        return prepare_text(text, lowercase=self.lowercase, normalizer=self.normalizer)

    def tokenize(self, text: str) -> List[Token]:
        """Tokenizes ``text`` into ``Token(id, text)`` records.

        Piece texts are taken verbatim from the prepared buffer, so the first
        token carries the injected ``▁`` (``"."`` gives ``▁`` then ``.``).
        """
        prepared = self.prepare(text)
        if not prepared.normalized:
            return []
        return make_tokens(self._tokenize_prepared(prepared, adjust_padding=False))

    def tokenize_to_ids(self, text: str) -> List[int]:
        return [token.id for token in self.tokenize(text)]

    def tokenize_to_offsets(self, text: str) -> List[TokenOffset]:
        """Tokenizes ``text`` into records with scalar offsets.

        Offsets index the normalized text (whitespace shown as ``▁``,
        lowercased if configured), i.e. the prepared buffer without the
        injected separator. ``text`` still holds the piece as matched.
        """
        prepared = self.prepare(text)
        if not prepared.normalized:
            return []
        return self._tokenize_prepared(prepared, adjust_padding=prepared.padding > 0)

    def _tokenize_prepared(self, prepared: PreparedText, adjust_padding: bool) -> List[TokenOffset]:
        self.freeze()
        segments = self._decode_forward(prepared.scalars)
        path = self._decode_backwards(segments)
        return self._segments_to_offsets(path, prepared.scalars, adjust_padding)

    def _decode_forward(self, scalars: Sequence[str]) -> Dict[str, List]:
        """Forward Viterbi pass over the prepared buffer.

        scores[t] holds the best total score of any segmentation of
        ``scalars[:t]``; the segment tables record the last piece of that
        segmentation. A position no piece reaches gets a one-scalar unknown
        segment and its score is reset to 0 so later positions stay reachable.
        """
        n = len(scalars)
        dev = self.device
        scores = full(n + 1, MIN_SCORE, dtype=torch.float32, device=dev)
        seg_score = full(n + 1, MIN_SCORE, dtype=torch.float32, device=dev)
        seg_id = full(n + 1, self._unknown, dtype=torch.long, device=dev)
        seg_start = full(n + 1, NO_START, dtype=torch.long, device=dev)
        seg_end = full(n + 1, 0, dtype=torch.long, device=dev)
        scores[0] = 0.0

        for i in range(n):
            matches = self._trie.common_prefix_search(scalars, i)
            if matches:
                depths, piece_scores, ids = zip(*matches)
                # Each match ends at a distinct position, so the updates below
                # never collide.
                ends = ensure_tensor(depths, dtype=torch.long, device=dev) + i
                candidate = scores[i] + ensure_tensor(piece_scores, dtype=torch.float32, device=dev)
                better = candidate > scores[ends]
                if bool(better.any()):
                    hit = ends[better]
                    scores[hit] = candidate[better]
                    seg_score[hit] = candidate[better]
                    seg_id[hit] = ensure_tensor(ids, dtype=torch.long, device=dev)[better]
                    seg_start[hit] = i
                    seg_end[hit] = hit
            if scores[i + 1].item() <= MIN_SCORE:
                seg_score[i + 1] = MIN_SCORE
                seg_id[i + 1] = self._unknown
                seg_start[i + 1] = i
                seg_end[i + 1] = i + 1
                scores[i + 1] = 0.0

        return {
            "score": seg_score.tolist(),
            "id": seg_id.tolist(),
            "start": seg_start.tolist(),
            "end": seg_end.tolist(),
        }

    def _decode_backwards(self, segments: Dict[str, List]) -> List[Segment]:
        """Follows start pointers from the buffer end back to position 0."""
        starts = segments["start"]
        path = []
        index = len(starts) - 1
        while index >= 0 and starts[index] != NO_START:
            path.append(
                Segment(
                    score=segments["score"][index],
                    id=segments["id"][index],
                    start=starts[index],
                    end=segments["end"][index],
                )
            )
            index = starts[index]
        path.reverse()
        return path

    def _segments_to_offsets(
        self,
        path: Sequence[Segment],
        scalars: Sequence[str],
        adjust_padding: bool,
    ) -> List[TokenOffset]:
        """Turns the best path into token records.

        A run of unknown segments is emitted once, as its first scalar only.
        With ``adjust_padding`` offsets are shifted left past the injected
        separator, and segments left empty by the shift are dropped when
        ``drop_empty_leading`` is set.
        """
        tokens = []
        prev_unknown = False
        for seg in path:
            is_unknown = seg.id == self._unknown
            if not (prev_unknown and is_unknown):
                start, end = seg.start, seg.end
                if adjust_padding:
                    start = max(start - 1, 0)
                    end -= 1
                if not (adjust_padding and self.drop_empty_leading and end <= 0):
                    word = "".join(scalars[seg.start:seg.end])
                    tokens.append(TokenOffset(id=seg.id, text=word, start=start, end=end))
            prev_unknown = is_unknown
        return tokens

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode(self, tokens: Iterable[Union[int, Token, TokenOffset]]) -> str:
        """Joins pieces back into text; control ids are skipped."""
        self.freeze()
        parts = []
        for tok in tokens:
            if isinstance(tok, (Token, TokenOffset)):
                parts.append(tok.text)
                continue
            piece_id = int(tok)
            if piece_id == self._unknown:
                parts.append(UNKNOWN_SURFACE)
            elif self.is_control(piece_id):
                continue
            else:
                parts.append(self._id_to_piece.get(piece_id, UNKNOWN_SURFACE))
        text = replace_separator("".join(parts))
        return text[1:] if text.startswith(SPACE) else text
