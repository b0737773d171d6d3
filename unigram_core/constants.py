import regex as reg

# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------

SEP = "▁"  # "▁", stands in for whitespace and marks a word start
SPACE = " "
NUL = "\x00"

UNKNOWN_PIECE = "<unk>"

# ---------------------------------------------------------------------------
# Numerical constants
# ---------------------------------------------------------------------------

# Lowest finite float32; marks a ScoreTable slot no path has reached yet.
MIN_SCORE = -3.4028234663852886e38
NO_START = -1

# ---------------------------------------------------------------------------
# SentencePiece piece types (ModelProto.SentencePiece.Type)
# ---------------------------------------------------------------------------

PIECE_NORMAL = 1
PIECE_UNKNOWN = 2
PIECE_CONTROL = 3
PIECE_UNUSED = 5
PIECE_BYTE = 6

# ---------------------------------------------------------------------------
# Regular expressions
# ---------------------------------------------------------------------------

WHITESPACE_RE = reg.compile(r"\p{White_Space}")

# Control, format, private-use and surrogate scalars are rewritten to a plain
# space. Whitespace controls (tab, newline, ...) are left to WHITESPACE_RE.
SCRUB_RE = reg.compile(r"[[\p{Cc}\p{Cf}\p{Co}\p{Cs}]--\p{White_Space}]", reg.V1)
