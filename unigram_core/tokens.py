from dataclasses import dataclass
from typing import Iterable, List


@dataclass(frozen=True)
class Token:
    """A unit of tokenized text."""

    id: int
    text: str


@dataclass(frozen=True)
class TokenOffset:
    """A token with its scalar offsets into the normalized input text."""

    id: int
    text: str
    start: int
    end: int

    def to_token(self) -> Token:
        return Token(id=self.id, text=self.text)


@dataclass(frozen=True)
class Segment:
    """One DP record: a piece spanning ``[start, end)`` of the prepared buffer."""

    score: float
    id: int
    start: int
    end: int


def make_tokens(offsets: Iterable[TokenOffset]) -> List[Token]:
    return [offset.to_token() for offset in offsets]
