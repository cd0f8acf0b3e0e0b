"""Application settings loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(dotenv_path=BASE_DIR / ".env")


def _get_bool(env_name: str, default: bool = False) -> bool:
    val = os.getenv(env_name)
    if val is None:
        return default
    return str(val).strip().lower() not in {"0", "false", "no", "off", ""}


def _get_float(env_name: str, default: float) -> float:
    val = os.getenv(env_name)
    if val is None or not val.strip():
        return default
    return float(val)


def _get_int(env_name: str, default: int) -> int:
    val = os.getenv(env_name)
    if val is None or not val.strip():
        return default
    return int(val)


class Settings(BaseModel):
    # ------------------------- App -------------------------
    APP_NAME: str = os.getenv("APP_NAME", "Coursework")
    APP_DEBUG: bool = _get_bool("APP_DEBUG", False)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    DATA_DIR: Path = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))

    # ------------------------- DB -------------------------
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL", f"sqlite+aiosqlite:///{BASE_DIR / 'data' / 'coursework.db'}"
    )

    # ------------------------- Auth -------------------------
    # Header set by the fronting identity proxy with the signed-in email
    AUTH_HEADER: str = os.getenv("AUTH_HEADER", "x-authenticated-user-email")

    # ------------------------- Access policy -------------------------
    EMPTY_TARGET_MEANS_ALL: bool = _get_bool("EMPTY_TARGET_MEANS_ALL", True)
    # activity | assignment | either | both
    ASSIGNMENT_ACCESS_MODE: str = os.getenv("ASSIGNMENT_ACCESS_MODE", "activity")
    ENFORCE_DUE_DATES: bool = _get_bool("ENFORCE_DUE_DATES", True)

    # ------------------------- Scoring -------------------------
    COMPLETION_PROGRESS_THRESHOLD: float = _get_float("COMPLETION_PROGRESS_THRESHOLD", 0.9)
    SIMULATION_NO_HINT_BONUS: int = _get_int("SIMULATION_NO_HINT_BONUS", 50)
    COLLAB_PARTICIPANT_POINTS: int = _get_int("COLLAB_PARTICIPANT_POINTS", 10)
    COLLAB_CONTRIBUTION_POINTS: int = _get_int("COLLAB_CONTRIBUTION_POINTS", 5)
    TUTOR_POINTS_PER_MASTERY: int = _get_int("TUTOR_POINTS_PER_MASTERY", 2)

    # ------------------------- Join codes -------------------------
    JOIN_CODE_LENGTH: int = _get_int("JOIN_CODE_LENGTH", 6)

    # ------------------------- Generation -------------------------
    USE_MOCK_GENERATION: bool = _get_bool("USE_MOCK_GENERATION", True)
    GENERATION_BASE_URL: str = os.getenv("GENERATION_BASE_URL", "https://api.openai.com/v1")
    GENERATION_API_KEY: str | None = os.getenv("GENERATION_API_KEY")
    GENERATION_MODEL: str = os.getenv("GENERATION_MODEL", "gpt-4o-mini")
    GENERATION_TIMEOUT_SECONDS: float = _get_float("GENERATION_TIMEOUT_SECONDS", 30.0)

    # ------------------------- Derived flags -------------------------
    @property
    def HAS_GENERATION_KEY(self) -> bool:
        return bool(self.GENERATION_API_KEY and self.GENERATION_API_KEY.strip())

    @property
    def DB_IS_SQLITE(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
