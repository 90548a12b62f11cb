"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories and
the pure grading utilities. Services are intentionally thin: they
validate input, execute domain logic and persist aggregates via
repositories. They raise the exceptions from `errors` and leave HTTP
translation to `main`.

Every service takes an optional `clock` returning naive UTC now so the
day-boundary logic of the scheduler can be exercised deterministically.
"""

import json
import logging
import math
from datetime import datetime, time, timedelta
from typing import Callable, Iterable, List, Optional, Sequence

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .errors import ConflictError, MalformedInputError, NotFoundError
from .utils.grader import GradeResult, LegacyGrade, grade_first_move_or_full, grade_line
from .utils.solution import parse_solution, parse_ticks

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
MIN_PASSWORD_LENGTH = 6

grading_logger = logging.getLogger("woodpecker.grading")
scheduler_logger = logging.getLogger("woodpecker.scheduler")

Clock = Callable[[], datetime]


def _day_bounds(moment: datetime):
    start = datetime.combine(moment.date(), time.min)
    return start, start + timedelta(days=1)


def _log_event(logger: logging.Logger, event: str, **payload) -> None:
    logger.info("%s %s", event, json.dumps(payload, ensure_ascii=True, default=str))


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session, clock: Clock = models.utcnow):
        self.session = session
        self.clock = clock
        self.user_repo = repositories.UserRepository(session)

    def register(self, email: str, password: str) -> models.User:
        """Create a new user with a hashed password.

        Raises `ConflictError` if the email is taken.
        """
        email = (email or "").strip().lower()
        if not email or not password:
            raise MalformedInputError("email and password are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise MalformedInputError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
        if self.user_repo.get_by_email(email):
            raise ConflictError("user already exists")
        u = models.User(email=email, password_hash=PWD_CTX.hash(password))
        return self.user_repo.create(u)

    def authenticate(self, email: str, password: str) -> Optional[models.User]:
        """Return the user when the credentials match, otherwise `None`."""
        user = self.user_repo.get_by_email((email or "").strip().lower())
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        return user

    def issue_token(self, user: models.User) -> str:
        """Signed JWT carrying `user_id` and `email`."""
        expire = self.clock() + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        # naive UTC -> epoch seconds
        exp = int((expire - datetime(1970, 1, 1)).total_seconds())
        payload = {"user_id": user.id, "email": user.email, "exp": exp}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class PuzzleService:
    """Puzzle lookup used by the grading and plan endpoints."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.PuzzleRepository(session)

    def get(self, puzzle_id: str) -> models.Puzzle:
        if not puzzle_id:
            raise MalformedInputError("puzzleId required")
        puzzle = self.repo.get(puzzle_id)
        if not puzzle:
            raise NotFoundError("puzzle", puzzle_id)
        return puzzle

    def solution_text(self, puzzle_id: str) -> str:
        puzzle = self.get(puzzle_id)
        if not puzzle.solution_text:
            raise NotFoundError("solution text", puzzle_id)
        return puzzle.solution_text


class ProgressRecorder:
    """Upserts the per-user, per-puzzle attempt state."""
    def __init__(self, session: Session, clock: Clock = models.utcnow):
        self.session = session
        self.clock = clock
        self.repo = repositories.ProgressRepository(session)

    def record(
        self,
        user_id: int,
        puzzle_id: str,
        typed: Sequence[str],
        score: int,
        depth_matched: int,
        solved_depth: int,
    ) -> models.Progress:
        """Store one attempt.

        The puzzle counts as solved once `depth_matched` reaches
        `solved_depth` (the full line length); the first such attempt
        stamps `solved_at` and later attempts never move it.
        """
        solved = depth_matched >= max(1, solved_depth)
        return self.repo.upsert(user_id, puzzle_id, typed, score, solved, self.clock())


class GradingService:
    """Grade typed lines against stored puzzle solutions."""
    def __init__(self, session: Session, clock: Clock = models.utcnow):
        self.session = session
        self.clock = clock
        self.puzzles = PuzzleService(session)
        self.recorder = ProgressRecorder(session, clock)
        self.attempt_repo = repositories.AttemptRepository(session)

    def grade_line(
        self,
        puzzle_id: str,
        typed: Optional[Sequence[str]],
        user_id: Optional[int] = None,
        time_ms: Optional[int] = None,
    ) -> dict:
        """Flat-mode grade; records progress and a session attempt for `user_id`.

        Returns the grade payload including the puzzle's `requiredTicks`.
        """
        puzzle = self.puzzles.get(puzzle_id)
        solution = puzzle.load_solution()
        ticks = puzzle.load_ticks()
        typed = list(typed or [])
        result = grade_line(solution.lines, typed)
        if user_id is not None:
            self.recorder.record(user_id, puzzle.id, typed, result.score, result.depth_matched, solution.solved_depth)
            self._record_attempt(user_id, puzzle.id, result, time_ms)
        _log_event(
            grading_logger,
            "grade_line",
            user_id=user_id,
            puzzle_id=puzzle.id,
            typed=len(typed),
            depth=result.depth_matched,
            score=result.score,
            mistake=result.earliest_mistake,
        )
        return result.to_payload(ticks)

    def grade_legacy(self, puzzle_id: str, played: Optional[Sequence[str]]) -> LegacyGrade:
        """Branching-mode grade over the solution forest; nothing is recorded."""
        puzzle = self.puzzles.get(puzzle_id)
        solution = puzzle.load_solution()
        return grade_first_move_or_full(solution.lines, list(played or []), solution.accepted_alternatives)

    def _record_attempt(self, user_id: int, puzzle_id: str, result: GradeResult, time_ms: Optional[int]) -> None:
        training = DailyPlanService(self.session, self.clock).open_session_for_puzzle(user_id, puzzle_id)
        if training is None:
            return
        now = self.clock()
        started = now - timedelta(milliseconds=time_ms) if time_ms else None
        self.attempt_repo.create(models.Attempt(
            session_id=training.id,
            puzzle_id=puzzle_id,
            started_at=started,
            ended_at=now,
            score_first_move=1 if result.correct else 0,
            score_ticks=len(result.ticks_matched),
            total_points=result.score,
            time_ms=time_ms or 0,
            correct_first_move=result.correct,
        ))


class DailyPlanService:
    """Decides which puzzles are due today for a user and persists the plan.

    Each of the user's sets contributes the batch of its current cycle:
    the set's unsolved puzzles in position order, cut to the target count
    of the cycle's open session. Cycle and session bookkeeping happens
    while building:

    - a set with no active cycle promotes its lowest planned cycle, once
      every earlier cycle is done or resting, and only if something is
      left to solve;
    - an active cycle with nothing unsolved becomes ``done``; one whose
      ``target_days`` have run out becomes ``rest``; either way the set is
      idle for the rest of the day;
    - a session opened on an earlier day is closed and a new one is opened
      with ``ceil(unsolved / remaining_days)`` puzzles (at least one).
    """
    def __init__(self, session: Session, clock: Clock = models.utcnow):
        self.session = session
        self.clock = clock
        self.set_repo = repositories.SetRepository(session)
        self.cycle_repo = repositories.CycleRepository(session)
        self.session_repo = repositories.SessionRepository(session)
        self.progress_repo = repositories.ProgressRepository(session)
        self.plan_repo = repositories.DailyPlanRepository(session)
        self.puzzle_repo = repositories.PuzzleRepository(session)

    def ensure_today_plan(self, user_id: int) -> models.DailyPlan:
        """Return today's plan, building it if the stored one is from an earlier day."""
        plan = self.plan_repo.get(user_id)
        if plan is not None and plan.generated_at.date() == self.clock().date():
            return plan
        return self.build_plan(user_id)

    def build_plan(self, user_id: int) -> models.DailyPlan:
        now = self.clock()
        batch: List[str] = []
        seen = set()
        cycles = []
        per_day = 0
        for puzzle_set in self.set_repo.list_for_user(user_id):
            entry = self._plan_set(user_id, puzzle_set, now)
            if entry is None:
                continue
            fresh = [pid for pid in entry["batch"] if pid not in seen]
            seen.update(fresh)
            batch.extend(fresh)
            per_day += entry["targetCount"]
            cycles.append(entry)
        plan = {
            "day": now.date().isoformat(),
            "todayBatch": batch,
            "perDay": per_day,
            "cycles": cycles,
        }
        saved = self.plan_repo.upsert(user_id, plan, now)
        _log_event(scheduler_logger, "daily_plan_built", user_id=user_id, puzzles=len(batch), cycles=len(cycles))
        return saved

    def status(self, user_id: int) -> dict:
        plan = self.ensure_today_plan(user_id)
        batch = plan.today_batch
        attempted = self._attempted_on(user_id, plan.generated_at)
        done = sum(1 for pid in batch if pid in attempted)
        body = plan.plan
        return {
            "doneToday": done,
            "perDay": int(body.get("perDay", 0)),
            "remaining": max(0, len(batch) - done),
            "todayBatch": batch,
            "generatedAt": plan.generated_at.isoformat(),
            "cycles": [
                {k: c.get(k) for k in ("setId", "cycleId", "cycleIndex", "sessionId", "targetCount", "status")}
                for c in body.get("cycles", [])
            ],
        }

    def next_puzzle(self, user_id: int, difficulty: str) -> models.Puzzle:
        """First puzzle of `difficulty` from today's batch not yet attempted today.

        Falls back to the first puzzle of that difficulty by id.
        """
        plan = self.ensure_today_plan(user_id)
        attempted = self._attempted_on(user_id, self.clock())
        for pid in plan.today_batch:
            if pid in attempted:
                continue
            puzzle = self.puzzle_repo.get(pid)
            if puzzle is not None and puzzle.difficulty == difficulty:
                return puzzle
        puzzle = self.puzzle_repo.first_by_difficulty(difficulty)
        if puzzle is None:
            raise NotFoundError("puzzle for difficulty", difficulty)
        return puzzle

    def open_session_for_puzzle(self, user_id: int, puzzle_id: str) -> Optional[models.TrainingSession]:
        """The open session of an active cycle whose set contains `puzzle_id`."""
        for set_id in self.set_repo.set_ids_containing(user_id, puzzle_id):
            cycle = self.cycle_repo.get_active(set_id)
            if cycle is None:
                continue
            training = self.session_repo.get_open(cycle.id)
            if training is not None:
                return training
        return None

    def _attempted_on(self, user_id: int, moment: datetime) -> set:
        start, end = _day_bounds(moment)
        return {p.puzzle_id for p in self.progress_repo.updated_between(user_id, start, end)}

    def _plan_set(self, user_id: int, puzzle_set: models.PuzzleSet, now: datetime) -> Optional[dict]:
        members = [sp.puzzle_id for sp in self.set_repo.puzzles_in_set(puzzle_set.id)]
        solved = self.progress_repo.solved_puzzle_ids(user_id, members)
        unsolved = [pid for pid in members if pid not in solved]

        cycle = self._current_cycle(puzzle_set.id, now, promote=bool(unsolved))
        if cycle is None:
            return None
        if not unsolved:
            self._finish_cycle(cycle, models.CYCLE_DONE, now)
            return None
        if cycle.started_at is None:
            cycle.started_at = now
            cycle = self.cycle_repo.save(cycle)
        elapsed = (now.date() - cycle.started_at.date()).days
        if elapsed >= cycle.target_days:
            self._finish_cycle(cycle, models.CYCLE_REST, now)
            return None

        training = self._ensure_session(cycle, len(unsolved), elapsed, now)
        return {
            "setId": puzzle_set.id,
            "cycleId": cycle.id,
            "cycleIndex": cycle.cycle_index,
            "sessionId": training.id,
            "targetCount": training.target_count,
            "status": cycle.status,
            "batch": unsolved[: training.target_count],
        }

    def _current_cycle(self, set_id: int, now: datetime, promote: bool) -> Optional[models.Cycle]:
        active = self.cycle_repo.active_for_set(set_id)
        if active:
            for extra in active[1:]:
                scheduler_logger.warning(
                    "demoting duplicate active cycle %s of set %s", extra.id, set_id
                )
                extra.status = models.CYCLE_PLANNED
                self.cycle_repo.save(extra)
            return active[0]
        if not promote:
            return None
        for cycle in self.cycle_repo.list_for_set(set_id):
            if cycle.status in (models.CYCLE_DONE, models.CYCLE_REST):
                continue
            if cycle.status != models.CYCLE_PLANNED:
                return None
            cycle.status = models.CYCLE_ACTIVE
            cycle.started_at = now
            cycle.ended_at = None
            _log_event(scheduler_logger, "cycle_activated", set_id=set_id, cycle_id=cycle.id, index=cycle.cycle_index)
            return self.cycle_repo.save(cycle)
        return None

    def _finish_cycle(self, cycle: models.Cycle, status: str, now: datetime) -> None:
        training = self.session_repo.get_open(cycle.id)
        if training is not None:
            training.ended_at = now
            self.session_repo.save(training)
        cycle.status = status
        cycle.ended_at = now
        self.cycle_repo.save(cycle)
        _log_event(scheduler_logger, "cycle_finished", cycle_id=cycle.id, status=status)

    def _ensure_session(self, cycle: models.Cycle, unsolved: int, elapsed: int, now: datetime) -> models.TrainingSession:
        training = self.session_repo.get_open(cycle.id)
        if training is not None and training.started_at is not None and training.started_at.date() < now.date():
            training.ended_at = now
            self.session_repo.save(training)
            training = None
        if training is None:
            remaining_days = max(1, cycle.target_days - elapsed)
            target = max(1, math.ceil(unsolved / remaining_days))
            training = self.session_repo.create(
                models.TrainingSession(cycle_id=cycle.id, started_at=now, target_count=target)
            )
        return training


def sweep_daily_plans(session_factory: Callable[[], Session], clock: Clock = models.utcnow) -> dict:
    """Build today's plan for every user owning a set.

    Users are processed one after another, each in its own DB session; a
    failure for one user is logged and the sweep moves on.
    """
    with session_factory() as session:
        user_ids = repositories.UserRepository(session).ids_with_sets()
    built = 0
    failed = []
    for user_id in user_ids:
        try:
            with session_factory() as session:
                DailyPlanService(session, clock).ensure_today_plan(user_id)
            built += 1
        except Exception:
            failed.append(user_id)
            scheduler_logger.exception("daily_plan_failed %s", json.dumps({"user_id": user_id}))
    summary = {"users": len(user_ids), "built": built, "failed": len(failed)}
    _log_event(scheduler_logger, "daily_plan_sweep", **summary)
    return summary


class TrainerService:
    """Sets, cycles and sessions owned by a user."""
    def __init__(self, session: Session, clock: Clock = models.utcnow):
        self.session = session
        self.clock = clock
        self.set_repo = repositories.SetRepository(session)
        self.cycle_repo = repositories.CycleRepository(session)
        self.session_repo = repositories.SessionRepository(session)
        self.puzzle_repo = repositories.PuzzleRepository(session)

    def owned_set(self, user_id: int, set_id: int) -> models.PuzzleSet:
        puzzle_set = self.set_repo.get(set_id)
        if puzzle_set is None or puzzle_set.user_id != user_id:
            raise NotFoundError("set", set_id)
        return puzzle_set

    def owned_cycle(self, user_id: int, cycle_id: int) -> models.Cycle:
        cycle = self.cycle_repo.get(cycle_id)
        if cycle is None:
            raise NotFoundError("cycle", cycle_id)
        self.owned_set(user_id, cycle.set_id)
        return cycle

    def list_sets(self, user_id: int) -> List[models.PuzzleSet]:
        return self.set_repo.list_for_user(user_id)

    def create_set(
        self,
        user_id: int,
        name: str,
        description: str = "",
        difficulty_min: str = "easy",
        difficulty_max: Optional[str] = None,
        size: int = 0,
    ) -> models.PuzzleSet:
        """Create a set filled with up to `size` puzzles in the difficulty range, ordered by id."""
        if not name or not name.strip():
            raise MalformedInputError("name required")
        difficulty_min = (difficulty_min or "easy").lower()
        difficulty_max = (difficulty_max or difficulty_min).lower()
        low, high = models.difficulty_rank(difficulty_min), models.difficulty_rank(difficulty_max)
        if low >= len(models.DIFFICULTIES) or high >= len(models.DIFFICULTIES):
            raise MalformedInputError("difficulty must be one of: " + ", ".join(models.DIFFICULTIES))
        if low > high:
            raise MalformedInputError("difficulty_min is harder than difficulty_max")
        if size < 0:
            raise MalformedInputError("size must be >= 0")
        puzzles = self.puzzle_repo.list_by_difficulties(models.DIFFICULTIES[low:high + 1], limit=size)
        s = models.PuzzleSet(
            user_id=user_id,
            name=name.strip(),
            description=description or "",
            difficulty_min=difficulty_min,
            difficulty_max=difficulty_max,
            created_at=self.clock(),
        )
        return self.set_repo.create(s, [p.id for p in puzzles])

    def set_puzzles(self, user_id: int, set_id: int) -> List[models.SetPuzzle]:
        self.owned_set(user_id, set_id)
        return self.set_repo.puzzles_in_set(set_id)

    def create_cycle(
        self,
        user_id: int,
        set_id: int,
        target_days: int,
        index: Optional[int] = None,
        status: str = models.CYCLE_PLANNED,
    ) -> models.Cycle:
        self.owned_set(user_id, set_id)
        status = (status or models.CYCLE_PLANNED).lower()
        if status not in models.CYCLE_STATUSES:
            raise MalformedInputError("status must be one of: " + ", ".join(models.CYCLE_STATUSES))
        if target_days is None or target_days < 1:
            raise MalformedInputError("target_days must be >= 1")
        existing = self.cycle_repo.list_for_set(set_id)
        if not index:
            index = max((c.cycle_index for c in existing), default=0) + 1
        if status == models.CYCLE_ACTIVE and self.cycle_repo.get_active(set_id) is not None:
            raise ConflictError(f"set {set_id} already has an active cycle")
        cycle = models.Cycle(set_id=set_id, cycle_index=index, target_days=target_days, status=status)
        if status == models.CYCLE_ACTIVE:
            cycle.started_at = self.clock()
        return self.cycle_repo.create(cycle)

    def active_cycle(self, user_id: int, set_id: int) -> Optional[models.Cycle]:
        self.owned_set(user_id, set_id)
        return self.cycle_repo.get_active(set_id)

    def open_session(self, user_id: int, cycle_id: int, target_count: int) -> models.TrainingSession:
        self.owned_cycle(user_id, cycle_id)
        if target_count is None or target_count < 1:
            raise MalformedInputError("target_count must be >= 1")
        if self.session_repo.get_open(cycle_id) is not None:
            raise ConflictError(f"cycle {cycle_id} already has an open session")
        return self.session_repo.create(
            models.TrainingSession(cycle_id=cycle_id, started_at=self.clock(), target_count=target_count)
        )

    def close_session(self, user_id: int, session_id: int, ended_at: Optional[datetime] = None) -> models.TrainingSession:
        training = self.session_repo.get(session_id)
        if training is None:
            raise NotFoundError("session", session_id)
        self.owned_cycle(user_id, training.cycle_id)
        training.ended_at = ended_at or self.clock()
        return self.session_repo.save(training)


class StatsService:
    """Progress summaries for the dashboard."""
    def __init__(self, session: Session, clock: Clock = models.utcnow):
        self.session = session
        self.clock = clock
        self.progress_repo = repositories.ProgressRepository(session)

    def today(self, user_id: int) -> dict:
        """Counts over progress rows touched today."""
        start, end = _day_bounds(self.clock())
        rows = self.progress_repo.updated_between(user_id, start, end)
        attempted = len(rows)
        solved = sum(1 for r in rows if r.solved_at is not None)
        average = (sum(r.score for r in rows) / attempted) if attempted else 0.0
        return {"totalAttempted": attempted, "totalSolved": solved, "averageScore": average}


class ImportService:
    """Import puzzles from decoded JSON and seed a demo account."""
    def __init__(self, session: Session, clock: Clock = models.utcnow):
        self.session = session
        self.clock = clock
        self.puzzle_repo = repositories.PuzzleRepository(session)

    def import_puzzles(self, items: Iterable[dict], dry_run: bool = False) -> dict:
        """Validate and insert puzzle objects, skipping ids that already exist.

        Returns a dictionary with the number of created puzzles, skipped
        duplicates and any validation `errors` per item.
        """
        created = 0
        skipped = 0
        errors = []
        for idx, item in enumerate(items):
            try:
                puzzle = self._validate_puzzle(item)
            except ValueError as e:
                errors.append({"index": idx, "error": str(e), "id": item.get("id") if isinstance(item, dict) else None})
                continue
            if self.puzzle_repo.get(puzzle.id):
                skipped += 1
                continue
            if not dry_run:
                self.puzzle_repo.create(puzzle)
            created += 1
        return {"created": created, "skipped": skipped, "errors": errors}

    def _validate_puzzle(self, p) -> models.Puzzle:
        """Build a `Puzzle` from an import item or raise ValueError."""
        if not isinstance(p, dict):
            raise ValueError("puzzle item must be an object")
        pid = p.get("id")
        if not pid or not isinstance(pid, str):
            raise ValueError("missing or empty id")
        fen = p.get("fen")
        if not fen or not isinstance(fen, str) or not fen.strip():
            raise ValueError("missing or empty fen")
        difficulty = str(p.get("difficulty") or "").lower()
        if difficulty not in models.DIFFICULTIES:
            raise ValueError(f"unknown difficulty: {difficulty!r}")
        raw_solution = p.get("solution")
        solution = parse_solution(raw_solution, pid)
        if not solution.lines:
            raise ValueError("solution has no lines")
        ticks = parse_ticks(p["ticks"], pid) if p.get("ticks") is not None else solution.tick_moves()
        return models.Puzzle(
            id=pid,
            difficulty=difficulty,
            fen=fen.strip(),
            side_to_move=models.side_to_move(fen),
            solution_json=raw_solution if isinstance(raw_solution, str) else json.dumps(raw_solution, ensure_ascii=True),
            ticks_json=json.dumps(list(ticks), ensure_ascii=True),
            solution_text=p.get("solutionText") or p.get("solution_text"),
        )

    def seed_demo(self, email: str, password: str, size: int = 5) -> dict:
        """Idempotently create a demo user, a set of the first `size` easy puzzles and its first cycle."""
        if not self.puzzle_repo.list_by_difficulties(["easy"], limit=1):
            raise MalformedInputError("no easy puzzles found to add to demo set")
        users = repositories.UserRepository(self.session)
        user = users.get_by_email(email.strip().lower())
        if user is None:
            user = AuthService(self.session, self.clock).register(email, password)
        sets = repositories.SetRepository(self.session)
        trainer = TrainerService(self.session, self.clock)
        demo = sets.get_by_name(user.id, "Demo Easy Set")
        if demo is None:
            demo = trainer.create_set(
                user.id,
                "Demo Easy Set",
                description=f"The first {size} easy puzzles for trying the Woodpecker Method",
                difficulty_min="easy",
                difficulty_max="easy",
                size=size,
            )
        if not repositories.CycleRepository(self.session).list_for_set(demo.id):
            trainer.create_cycle(user.id, demo.id, target_days=1, index=1)
        return {"user_id": user.id, "set_id": demo.id, "puzzles": len(sets.puzzles_in_set(demo.id))}
