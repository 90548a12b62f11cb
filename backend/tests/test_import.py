import json
from pathlib import Path

import pytest

from woodpecker import repositories, services
from woodpecker.errors import MalformedInputError

SAMPLE = Path(__file__).resolve().parents[1] / "data" / "sample_puzzles.json"


def _items():
    return json.loads(SAMPLE.read_text(encoding="utf-8"))


def test_import_validates_and_skips_existing(db_session):
    svc = services.ImportService(db_session)
    items = _items() + [
        {"id": "", "difficulty": "easy", "fen": "8/8/8/8/8/8/8/8 w - - 0 1", "solution": {"lines": [{"san": "e4"}]}},
        {"id": "x1", "difficulty": "brutal", "fen": "8/8/8/8/8/8/8/8 w - - 0 1", "solution": {"lines": [{"san": "e4"}]}},
        {"id": "x2", "difficulty": "easy", "fen": "8/8/8/8/8/8/8/8 w - - 0 1", "solution": {"lines": "e4"}},
        {"id": "x3", "difficulty": "easy", "fen": "8/8/8/8/8/8/8/8 w - - 0 1", "solution": {"lines": []}},
        "not an object",
    ]
    first = svc.import_puzzles(items)
    assert first["created"] == 6
    assert first["skipped"] == 0
    assert [e["index"] for e in first["errors"]] == [6, 7, 8, 9, 10]
    assert first["errors"][1]["id"] == "x1"

    again = svc.import_puzzles(_items())
    assert again == {"created": 0, "skipped": 6, "errors": []}

    p = repositories.PuzzleRepository(db_session).get("wpm_easy_003")
    assert p.side_to_move == "b"
    assert p.load_ticks() == ("Qh4#",)
    assert p.load_solution().lines[0].move == "Qh4#"


def test_dry_run_writes_nothing(db_session):
    result = services.ImportService(db_session).import_puzzles(_items(), dry_run=True)
    assert result["created"] == 6
    assert repositories.PuzzleRepository(db_session).count() == 0


def test_ticks_default_to_flagged_moves(db_session):
    item = {"id": "t1", "difficulty": "easy", "fen": "8/8/8/8/8/8/8/8 w - - 0 1",
            "solution": {"lines": [{"san": "Re8+"}, {"san": "Rxe8"}, {"san": "Rxe8#", "isTick": True}]}}
    services.ImportService(db_session).import_puzzles([item])
    assert repositories.PuzzleRepository(db_session).get("t1").load_ticks() == ("Rxe8#",)


def test_seed_demo_is_idempotent(db_session):
    svc = services.ImportService(db_session)
    with pytest.raises(MalformedInputError):
        svc.seed_demo("demo@example.com", "demo123", size=5)
    svc.import_puzzles(_items())
    first = svc.seed_demo("demo@example.com", "demo123", size=5)
    second = svc.seed_demo("demo@example.com", "demo123", size=5)
    assert first == second
    assert first["puzzles"] == 5
    members = repositories.SetRepository(db_session).puzzles_in_set(first["set_id"])
    assert [m.puzzle_id for m in members] == [f"wpm_easy_{i:03d}" for i in range(1, 6)]
    cycles = repositories.CycleRepository(db_session).list_for_set(first["set_id"])
    assert [(c.cycle_index, c.target_days, c.status) for c in cycles] == [(1, 1, "planned")]
