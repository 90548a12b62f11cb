"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the Woodpecker trainer.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses. Domain errors raised by services are
mapped to status codes by the exception handlers below.

Endpoints implemented (all under /api):
- GET /health
- POST /auth/sign-up, POST /auth/sign-in, POST /auth/logout
- GET /me
- GET /puzzles/next
- POST /puzzles/grade
- POST /puzzles/grade-line
- GET /puzzles/solution-text/{puzzle_id}
- GET /progress/today
- GET /daily
- GET/POST /trainer/sets, GET /trainer/sets/{set_id}/puzzles
- POST /trainer/cycles, GET /trainer/cycles/active
- POST /trainer/sessions, PUT /trainer/sessions/{session_id}
"""

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import timezone
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from . import models, repositories, services
from .auth import clear_auth_cookie, get_current_user, set_auth_cookie
from .config import settings
from .database import create_db_and_tables, get_session, session_factory
from .errors import AuthError, ConflictError, MalformedInputError, NotFoundError, SolutionParseError
from .schemas import CredentialsIn, CycleIn, GradeIn, GradeLineIn, SessionIn, SessionUpdate, SetIn
from .utils.plan_timer import DailyPlanTimer
from .utils.signin_throttle import SignInThrottle

logger = logging.getLogger("woodpecker.api")
if not logging.getLogger().handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

_signin_throttle = SignInThrottle(settings.SIGNIN_MAX_FAILURES, settings.SIGNIN_WINDOW_SECONDS)


def run_daily_sweep() -> dict:
    return services.sweep_daily_plans(session_factory, clock=models.utcnow)


@asynccontextmanager
async def lifespan(app: FastAPI):
    timer = None
    if settings.DAILY_PLAN_TIMER_ENABLED:
        hour, minute = settings.daily_plan_hour_minute
        timer = DailyPlanTimer(run_daily_sweep, hour, minute, clock=models.utcnow)
        timer.start()
    app.state.plan_timer = timer
    try:
        yield
    finally:
        if timer is not None:
            timer.stop()


app = FastAPI(title="Woodpecker Trainer API", lifespan=lifespan)

# Wide-open CORS keeps a locally served frontend working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

static_dir = Path(__file__).resolve().parent.parent / "static"
if static_dir.exists():
    app.mount("/static", StaticFiles(directory=static_dir), name="static")

create_db_and_tables()


def _log_request(event: str, request: Request, req_id: str, started: float, status_code: Optional[int] = None):
    payload = {
        "request_id": req_id,
        "path": request.url.path,
        "method": request.method,
        "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
        "client": request.client.host if request.client else "unknown",
    }
    if status_code is not None:
        payload["status_code"] = status_code
    line = "%s %s" % (event, json.dumps(payload, ensure_ascii=True))
    if status_code is None:
        logger.exception(line)
    else:
        logger.info(line)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    logged = request.url.path.startswith("/api/")
    try:
        response = await call_next(request)
    except Exception:
        if logged:
            _log_request("request_failed", request, req_id, started)
        raise
    response.headers["X-Request-ID"] = req_id
    if logged:
        _log_request("request_done", request, req_id, started, response.status_code)
    return response


def _error(status_code: int, detail: str, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail}, headers=headers)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error(404, str(exc))


@app.exception_handler(MalformedInputError)
async def malformed_input_handler(request: Request, exc: MalformedInputError):
    return _error(400, str(exc))


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return _error(409, str(exc))


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return _error(401, str(exc))


@app.exception_handler(SolutionParseError)
async def solution_parse_handler(request: Request, exc: SolutionParseError):
    logger.error("solution_parse_failed %s", json.dumps({"puzzle_id": exc.puzzle_id, "error": str(exc)}))
    return _error(500, "stored solution could not be loaded")


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("database_error %s", json.dumps({"path": request.url.path, "error": type(exc).__name__}))
    return _error(500, "database error")


def _iso(value):
    return value.isoformat() if value is not None else None


def _user_out(user: models.User) -> dict:
    return {"id": user.id, "email": user.email}


def _puzzle_out(p: models.Puzzle) -> dict:
    return {"id": p.id, "fen": p.fen, "sideToMove": models.side_to_move(p.fen), "difficulty": p.difficulty}


def _set_out(s: models.PuzzleSet) -> dict:
    return {
        "id": s.id,
        "name": s.name,
        "description": s.description,
        "difficulty_min": s.difficulty_min,
        "difficulty_max": s.difficulty_max,
        "created_at": _iso(s.created_at),
    }


def _cycle_out(c: models.Cycle) -> dict:
    return {
        "id": c.id,
        "set_id": c.set_id,
        "cycle_index": c.cycle_index,
        "target_days": c.target_days,
        "started_at": _iso(c.started_at),
        "ended_at": _iso(c.ended_at),
        "status": c.status,
    }


def _session_out(s: models.TrainingSession) -> dict:
    return {
        "id": s.id,
        "cycle_id": s.cycle_id,
        "started_at": _iso(s.started_at),
        "ended_at": _iso(s.ended_at),
        "target_count": s.target_count,
    }


@app.get("/api/health")
def health(db: Session = Depends(get_session)):
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok", "puzzles": repositories.PuzzleRepository(db).count()}


@app.post("/api/auth/sign-up")
def sign_up(payload: CredentialsIn, response: Response, db: Session = Depends(get_session)):
    """Create an account and sign it in.

    The JWT is returned in the body and set as the HTTP-only `auth_token`
    cookie.
    """
    auth = services.AuthService(db)
    user = auth.register(payload.email, payload.password)
    token = auth.issue_token(user)
    set_auth_cookie(response, token)
    logger.info("sign_up %s", json.dumps({"user_id": user.id}))
    return {"user": _user_out(user), "access_token": token}


@app.post("/api/auth/sign-in")
def sign_in(payload: CredentialsIn, response: Response, db: Session = Depends(get_session)):
    """Authenticate and return a JWT valid for `JWT_EXPIRE_HOURS`.

    Repeated failures for the same email are throttled with 429.
    """
    key = (payload.email or "").strip().lower()
    retry_after = _signin_throttle.retry_after(key)
    if retry_after:
        raise HTTPException(
            status_code=429,
            detail=f"too many failed sign-ins; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )
    auth = services.AuthService(db)
    user = auth.authenticate(payload.email, payload.password)
    if not user:
        _signin_throttle.record_failure(key)
        raise AuthError('invalid credentials')
    _signin_throttle.reset(key)
    token = auth.issue_token(user)
    set_auth_cookie(response, token)
    return {"user": _user_out(user), "access_token": token}


@app.post("/api/auth/logout")
def logout(response: Response):
    clear_auth_cookie(response)
    return {"status": "ok"}


@app.get("/api/me")
def me(user: models.User = Depends(get_current_user)):
    return _user_out(user)


@app.get("/api/puzzles/next")
def next_puzzle(
    difficulty: str = "",
    puzzleId: Optional[str] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Return a specific puzzle, or the next one due from today's plan."""
    difficulty = difficulty.strip().lower()
    if difficulty not in models.DIFFICULTIES:
        raise HTTPException(status_code=400, detail="difficulty must be one of: " + ", ".join(models.DIFFICULTIES))
    if puzzleId:
        puzzle = services.PuzzleService(db).get(puzzleId)
    else:
        puzzle = services.DailyPlanService(db).next_puzzle(user.id, difficulty)
    return _puzzle_out(puzzle)


@app.post("/api/puzzles/grade")
def grade(payload: GradeIn, db: Session = Depends(get_session)):
    """Legacy branching grade of a played line; nothing is recorded."""
    result = services.GradingService(db).grade_legacy(payload.puzzleId, payload.playedSans)
    return result.to_payload()


@app.post("/api/puzzles/grade-line")
def grade_line(payload: GradeLineIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Grade a typed line and record the attempt for the signed-in user."""
    return services.GradingService(db).grade_line(payload.puzzleId, payload.typedSans, user_id=user.id, time_ms=payload.timeMs)


@app.get("/api/puzzles/solution-text/{puzzle_id}")
def solution_text(puzzle_id: str, db: Session = Depends(get_session)):
    return {"puzzleId": puzzle_id, "solutionText": services.PuzzleService(db).solution_text(puzzle_id)}


@app.get("/api/progress/today")
def progress_today(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.StatsService(db).today(user.id)


@app.get("/api/daily")
def daily(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Today's plan status; the plan is built on first access each day."""
    return services.DailyPlanService(db).status(user.id)


@app.get("/api/trainer/sets")
def list_sets(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return [_set_out(s) for s in services.TrainerService(db).list_sets(user.id)]


@app.post("/api/trainer/sets", status_code=201)
def create_set(payload: SetIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Create a set filled with puzzles between the two difficulty bounds."""
    svc = services.TrainerService(db)
    s = svc.create_set(
        user.id,
        payload.name,
        description=payload.description,
        difficulty_min=payload.difficulty_min,
        difficulty_max=payload.difficulty_max,
        size=payload.size,
    )
    out = _set_out(s)
    out["puzzle_count"] = len(svc.set_puzzles(user.id, s.id))
    return out


@app.get("/api/trainer/sets/{set_id}/puzzles")
def set_puzzles(set_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    rows = services.TrainerService(db).set_puzzles(user.id, set_id)
    return [{"puzzle_id": r.puzzle_id, "position": r.position} for r in rows]


@app.post("/api/trainer/cycles", status_code=201)
def create_cycle(payload: CycleIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    cycle = services.TrainerService(db).create_cycle(
        user.id,
        payload.set_id,
        target_days=payload.target_days,
        index=payload.cycle_index,
        status=payload.status,
    )
    return _cycle_out(cycle)


@app.get("/api/trainer/cycles/active")
def active_cycle(set_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    cycle = services.TrainerService(db).active_cycle(user.id, set_id)
    return _cycle_out(cycle) if cycle else None


@app.post("/api/trainer/sessions", status_code=201)
def open_session(payload: SessionIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    training = services.TrainerService(db).open_session(user.id, payload.cycle_id, payload.target_count)
    return _session_out(training)


@app.put("/api/trainer/sessions/{session_id}")
def close_session(
    session_id: int,
    payload: SessionUpdate,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    ended_at = payload.ended_at
    if ended_at is not None and ended_at.tzinfo is not None:
        ended_at = ended_at.astimezone(timezone.utc).replace(tzinfo=None)
    training = services.TrainerService(db).close_session(user.id, session_id, ended_at)
    return _session_out(training)
