"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. Puzzle payloads use the camelCase keys the
browser client sends; trainer payloads use snake_case like the tables.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class CredentialsIn(BaseModel):
    """Payload for the sign-up and sign-in endpoints."""
    email: str
    password: str


class GradeIn(BaseModel):
    """Legacy branching grade request."""
    puzzleId: str = ""
    playedSans: List[str] = Field(default_factory=list)


class GradeLineIn(BaseModel):
    """Flat line grade request."""
    puzzleId: str = ""
    typedSans: List[str] = Field(default_factory=list)
    timeMs: Optional[int] = Field(default=None, ge=0)


class SetIn(BaseModel):
    name: str
    description: str = ""
    difficulty_min: str = "easy"
    difficulty_max: Optional[str] = None
    size: int = Field(ge=1)


class CycleIn(BaseModel):
    set_id: int
    target_days: int = Field(ge=1)
    cycle_index: Optional[int] = Field(default=None, ge=1)
    status: str = "planned"


class SessionIn(BaseModel):
    cycle_id: int
    target_count: int = Field(ge=1)


class SessionUpdate(BaseModel):
    """Closes a session; `ended_at` defaults to now."""
    ended_at: Optional[datetime] = None
