"""Application settings and validation."""

import os
import re
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent
_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    COOKIE_SECURE: bool
    DATABASE_URL: str
    DAILY_PLAN_TIME: str
    DAILY_PLAN_TIMER_ENABLED: bool
    SIGNIN_MAX_FAILURES: int
    SIGNIN_WINDOW_SECONDS: int
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.ALLOW_INSECURE_JWT = _flag("ALLOW_INSECURE_JWT", "false")
        self.ALLOW_DEV_CORS = _flag("ALLOW_DEV_CORS", "true")
        self.COOKIE_SECURE = _flag("COOKIE_SECURE", "false")
        # upserts need SQLite or PostgreSQL
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'woodpecker.db'}")
        # UTC, matching the day the plans are keyed on
        self.DAILY_PLAN_TIME = os.getenv("DAILY_PLAN_TIME", "00:05").strip()
        self.DAILY_PLAN_TIMER_ENABLED = _flag("DAILY_PLAN_TIMER_ENABLED", "true")
        self.SIGNIN_MAX_FAILURES = int(os.getenv("SIGNIN_MAX_FAILURES", "5"))
        self.SIGNIN_WINDOW_SECONDS = int(os.getenv("SIGNIN_WINDOW_SECONDS", "300"))
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if not _HHMM.match(self.DAILY_PLAN_TIME):
            raise RuntimeError(f"DAILY_PLAN_TIME must be HH:MM, got {self.DAILY_PLAN_TIME!r}")
        if self.JWT_EXPIRE_HOURS <= 0:
            raise RuntimeError("JWT_EXPIRE_HOURS must be positive")
        if self.SIGNIN_MAX_FAILURES <= 0 or self.SIGNIN_WINDOW_SECONDS <= 0:
            raise RuntimeError("sign-in throttle settings must be positive")

    @property
    def daily_plan_hour_minute(self) -> tuple:
        hour, minute = self.DAILY_PLAN_TIME.split(":")
        return int(hour), int(minute)


settings = Settings()
