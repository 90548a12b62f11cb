"""SAN normalization used when comparing typed moves to stored solutions.

The canonical form is only ever compared, never shown to the user: the
grader echoes the solution-side SAN back to clients.
"""

import re

_ANNOTATIONS = re.compile(r"[+#!?]")
_MOVE_NUMBER = re.compile(r"^\d+\.+")
_WHITESPACE = re.compile(r"\s+")


def _normalize_once(raw: str) -> str:
    s = raw.lower().strip()
    # queenside first so "0-0-0" is not half-rewritten by the kingside rule
    s = s.replace("0-0-0", "o-o-o").replace("0-0", "o-o")
    s = _ANNOTATIONS.sub("", s)
    s = _MOVE_NUMBER.sub("", s)
    s = s.replace(".", "")
    s = s.lstrip("0123456789")
    # e8=q and e8q are the same promotion
    s = s.replace("=", "")
    return _WHITESPACE.sub("", s)


def normalize_san(raw: str) -> str:
    """Return the comparison form of a SAN move.

    Lowercases, unifies castling written with zeros, drops check/mate and
    annotation glyphs, move numbers and ellipses, and the ``=`` of
    promotions. Passes are repeated until the string stops changing, so
    ``normalize_san(normalize_san(x)) == normalize_san(x)`` for any input
    (e.g. ``"=1e4"`` only exposes its stray move number after the ``=`` is
    removed).
    """
    if raw is None:
        return ""
    current = str(raw)
    while True:
        nxt = _normalize_once(current)
        if nxt == current:
            return nxt
        current = nxt


def same_move(a: str, b: str) -> bool:
    """True when two SAN strings denote the same move after normalization."""
    return normalize_san(a) == normalize_san(b)
