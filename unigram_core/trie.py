"""Prefix trie over vocabulary pieces.

Nodes live in one arena and are addressed by index; the root is index 0.
Each node keeps a small ``scalar -> child index`` mapping, so the whole trie
is a handful of flat lists that can be shared read-only across threads once
:meth:`PieceTrie.freeze` has been called.
"""

from dataclasses import dataclass
from typing import Dict, Iterator, List, NamedTuple, Sequence, Tuple

import torch

ROOT = 0


class PrefixMatch(NamedTuple):
    """A vocabulary piece found by :meth:`PieceTrie.common_prefix_search`."""

    depth: int
    score: float
    id: int


@dataclass(frozen=True)
class TrieNode:
    """Read-only view of one arena slot, for diagnostics and tests."""

    index: int
    text: str
    depth: int
    score: float
    id: int
    end: bool
    children: Dict[str, int]


def as_float32(value: float) -> float:
    """Round a Python float to the nearest float32, as stored in model files."""
    return torch.tensor(value, dtype=torch.float32).item()


class PieceTrie:
    def __init__(self):
        self._text: List[str] = [""]
        self._depth: List[int] = [0]
        self._score: List[float] = [0.0]
        self._id: List[int] = [0]
        self._end: List[bool] = [False]
        self._children: List[Dict[str, int]] = [{}]
        self._num_pieces = 0
        self._frozen = False

    def __len__(self) -> int:
        return len(self._depth)

    @property
    def num_pieces(self) -> int:
        return self._num_pieces

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Marks construction as finished; later inserts are rejected."""
        self._frozen = True

    def _add_node(self, parent: int, scalar: str) -> int:
        index = len(self._depth)
        self._text.append(self._text[parent] + scalar)
        self._depth.append(self._depth[parent] + 1)
        self._score.append(0.0)
        self._id.append(0)
        self._end.append(False)
        self._children.append({})
        self._children[parent][scalar] = index
        return index

    def insert(self, piece: str, score: float, piece_id: int) -> None:
        """Adds ``piece``; inserting the same piece twice overwrites score and id."""
        if self._frozen:
            raise RuntimeError(f"Cannot insert {piece!r}: the trie is frozen.")
        if not piece:
            return
        node = ROOT
        for scalar in piece:
            child = self._children[node].get(scalar)
            if child is None:
                child = self._add_node(node, scalar)
            node = child
        if not self._end[node]:
            self._num_pieces += 1
        self._end[node] = True
        self._score[node] = as_float32(score)
        self._id[node] = int(piece_id)

    def common_prefix_search(self, scalars: Sequence[str], start: int = 0) -> List[PrefixMatch]:
        """Returns every piece that is a prefix of ``scalars[start:]``, shortest first."""
        matches: List[PrefixMatch] = []
        children = self._children
        node = ROOT
        for pos in range(start, len(scalars)):
            node = children[node].get(scalars[pos])
            if node is None:
                break
            if self._end[node]:
                matches.append(PrefixMatch(self._depth[node], self._score[node], self._id[node]))
        return matches

    def node(self, index: int) -> TrieNode:
        return TrieNode(
            index=index,
            text=self._text[index],
            depth=self._depth[index],
            score=self._score[index],
            id=self._id[index],
            end=self._end[index],
            children=dict(self._children[index]),
        )

    def find(self, piece: str) -> int:
        """Index of the node spelling ``piece``, or -1."""
        node = ROOT
        for scalar in piece:
            node = self._children[node].get(scalar)
            if node is None:
                return -1
        return node

    def pieces(self) -> Iterator[Tuple[str, float, int]]:
        """Yields ``(text, score, id)`` for every complete piece, in arena order."""
        for index, is_end in enumerate(self._end):
            if is_end:
                yield self._text[index], self._score[index], self._id[index]
