import pytest

from woodpecker.utils.san import normalize_san, same_move


@pytest.mark.parametrize("raw,expected", [
    ("Qxf7+", "qxf7"),
    ("Qxf7#", "qxf7"),
    ("Nf3!?", "nf3"),
    ("  Rd8#  ", "rd8"),
    ("0-0", "o-o"),
    ("0-0-0", "o-o-o"),
    ("O-O-O+", "o-o-o"),
    ("e8=Q", "e8q"),
    ("exd8=N+", "exd8n"),
    ("12. Nf3", "nf3"),
    ("1...e5", "e5"),
    ("23...Kxf7", "kxf7"),
    ("e 4", "e4"),
])
def test_normalize_examples(raw, expected):
    assert normalize_san(raw) == expected


def test_castling_with_zeros_matches_letter_o():
    assert same_move("0-0-0", "O-O-O")
    assert same_move("0-0", "o-o")
    assert not same_move("0-0", "O-O-O")


def test_normalize_none_and_empty():
    assert normalize_san(None) == ""
    assert normalize_san("") == ""
    assert normalize_san("+#!?") == ""


@pytest.mark.parametrize("raw", ["=1e4", "1.=2.Nf3", "e8==Q", "..0-0..", "Qxf7+!!", "3...  e5"])
def test_normalize_is_idempotent(raw):
    once = normalize_san(raw)
    assert normalize_san(once) == once
