from datetime import datetime, timedelta

import pytest
from sqlalchemy.dialects import postgresql, sqlite
from sqlmodel import select

from woodpecker import models, repositories, services
from woodpecker.errors import MalformedInputError, NotFoundError, SolutionParseError


class FixedClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def _user(session, email="p@example.com"):
    u = models.User(email=email, password_hash="x")
    session.add(u)
    session.commit()
    session.refresh(u)
    return u


def test_record_creates_then_updates_row(db_session, make_puzzle):
    make_puzzle("wpm_easy_001", ["Re8+", "Rxe8", "Rxe8#"])
    user = _user(db_session)
    clock = FixedClock(datetime(2026, 3, 1, 9, 0))
    rec = services.ProgressRecorder(db_session, clock)

    p = rec.record(user.id, "wpm_easy_001", ["Re8+"], score=1, depth_matched=1, solved_depth=3)
    assert p.attempts == 1
    assert p.score == 1
    assert p.solved_at is None
    assert p.last_typed == ["Re8+"]

    clock.advance(minutes=5)
    p = rec.record(user.id, "wpm_easy_001", ["Re8+", "Rxe8", "Rxe8#"], score=2, depth_matched=3, solved_depth=3)
    assert p.attempts == 2
    assert p.solved_at == clock.now
    first_solved = p.solved_at

    clock.advance(minutes=5)
    p = rec.record(user.id, "wpm_easy_001", ["Qd8"], score=0, depth_matched=0, solved_depth=3)
    assert p.attempts == 3
    assert p.score == 0
    assert p.solved_at == first_solved
    assert p.updated_at == clock.now
    assert p.last_typed == ["Qd8"]


def test_one_row_per_user_and_puzzle(db_session, make_puzzle):
    make_puzzle("wpm_easy_001")
    a = _user(db_session, "a@example.com")
    b = _user(db_session, "b@example.com")
    rec = services.ProgressRecorder(db_session)
    for _ in range(3):
        rec.record(a.id, "wpm_easy_001", ["Rd8#"], 2, 1, 1)
    rec.record(b.id, "wpm_easy_001", ["Rd8#"], 2, 1, 1)
    repo = repositories.ProgressRepository(db_session)
    assert repo.get(a.id, "wpm_easy_001").attempts == 3
    assert repo.get(b.id, "wpm_easy_001").attempts == 1


def test_grade_line_records_progress(db_session, make_puzzle):
    make_puzzle("wpm_easy_004", ["Re8+", "Rxe8", "Rxe8#"], ticks=["Rxe8#"], tick_plies=(2,))
    user = _user(db_session)
    svc = services.GradingService(db_session)
    out = svc.grade_line("wpm_easy_004", ["Re8+", "Rxe8", "Rxe8#"], user_id=user.id)
    assert out["correct"] is True
    assert out["score"] == 2
    assert out["requiredTicks"] == ["Rxe8#"]
    row = repositories.ProgressRepository(db_session).get(user.id, "wpm_easy_004")
    assert row.solved_at is not None
    assert row.score == 2


def test_grade_line_partial_line_is_not_solved(db_session, make_puzzle):
    make_puzzle("wpm_easy_004", ["Re8+", "Rxe8", "Rxe8#"])
    user = _user(db_session)
    services.GradingService(db_session).grade_line("wpm_easy_004", ["Re8+", "Rxe8"], user_id=user.id)
    row = repositories.ProgressRepository(db_session).get(user.id, "wpm_easy_004")
    assert row.solved_at is None
    assert row.score == 1


def test_grade_line_without_user_records_nothing(db_session, make_puzzle):
    make_puzzle("wpm_easy_001")
    out = services.GradingService(db_session).grade_line("wpm_easy_001", ["Rd8"])
    assert out["correct"] is True
    assert db_session.exec(select(models.Progress)).all() == []


def test_grade_errors(db_session, make_puzzle):
    svc = services.GradingService(db_session)
    with pytest.raises(MalformedInputError):
        svc.grade_line("", ["e4"])
    with pytest.raises(NotFoundError):
        svc.grade_line("missing", ["e4"])
    db_session.add(models.Puzzle(id="broken", difficulty="easy", fen="8/8/8/8/8/8/8/8 w - - 0 1", solution_json="{oops"))
    db_session.commit()
    with pytest.raises(SolutionParseError):
        svc.grade_line("broken", ["e4"])
    with pytest.raises(NotFoundError):
        svc.grade_legacy("missing", ["e4"])


def test_grade_line_adds_attempt_to_open_session(db_session, make_puzzle):
    make_puzzle("wpm_easy_001", ["Rd8#"], tick_plies=(0,))
    make_puzzle("wpm_easy_002", ["Qd8#"])
    user = _user(db_session)
    trainer = services.TrainerService(db_session)
    s = trainer.create_set(user.id, "Easy", difficulty_min="easy", size=2)
    cycle = trainer.create_cycle(user.id, s.id, target_days=3, status="active")
    training = trainer.open_session(user.id, cycle.id, target_count=2)

    services.GradingService(db_session).grade_line("wpm_easy_001", ["Rd8"], user_id=user.id, time_ms=4200)

    attempts = repositories.AttemptRepository(db_session).list_for_session(training.id)
    assert len(attempts) == 1
    a = attempts[0]
    assert a.puzzle_id == "wpm_easy_001"
    assert a.correct_first_move is True
    assert a.score_first_move == 1
    assert a.score_ticks == 1
    assert a.total_points == 2
    assert a.time_ms == 4200


def test_progress_timestamps_round_trip_as_naive_utc(db_session, make_puzzle):
    make_puzzle("wpm_easy_001")
    user = _user(db_session)
    stamp = models.utcnow().replace(microsecond=0)
    db_session.add(models.Progress(
        user_id=user.id, puzzle_id="wpm_easy_001", attempts=1, score=1,
        solved_at=stamp, created_at=stamp, updated_at=stamp,
    ))
    db_session.commit()
    db_session.expire_all()

    row = db_session.exec(select(models.Progress).where(models.Progress.user_id == user.id)).one()
    assert row.solved_at == stamp
    assert row.updated_at == stamp
    assert row.updated_at.tzinfo is None
    assert models.Progress.__table__.c.updated_at.type.timezone is False


def test_upsert_insert_follows_the_database_dialect():
    table = models.Progress.__table__
    assert isinstance(repositories.upsert_insert("sqlite", table), sqlite.Insert)
    assert isinstance(repositories.upsert_insert("postgresql", table), postgresql.Insert)
    with pytest.raises(RuntimeError, match="mysql"):
        repositories.upsert_insert("mysql", table)
