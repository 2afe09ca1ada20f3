"""
Session models and JSON persistence.
The caller side of the assessment engine: owns the bounded assessment history,
counts exchanges and applies difficulty changes between turns.
"""

import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from assessment_engine import assess_difficulty
from difficulty_model import (
    AssessmentResult,
    DifficultyLevel,
    InvalidInput,
    normalize_difficulty,
)

DATA_DIR = Path(
    os.getenv("DIFFICULTY_DATA_DIR", str(Path.home() / ".adaptive_difficulty" / "sessions"))
)
HISTORY_LIMIT = int(os.getenv("DIFFICULTY_HISTORY_LIMIT", "10"))

# Session ids double as file stems under DATA_DIR
SESSION_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]+")

logger = logging.getLogger("session_model")


class SessionNotFound(KeyError):
    pass


class LevelChange(BaseModel):
    exchange: int
    from_level: DifficultyLevel
    to_level: DifficultyLevel
    confidence: float
    manual: bool = False
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


class DifficultySession(BaseModel):
    session_id: str
    starting_level: DifficultyLevel = DifficultyLevel.MODERATE
    difficulty: DifficultyLevel = DifficultyLevel.MODERATE
    exchange_count: int = 0
    help_requests_total: int = 0
    history: list[AssessmentResult] = Field(default_factory=list)  # newest last, capped
    level_changes: list[LevelChange] = Field(default_factory=list)
    confidence_sum: float = 0.0
    dominant_counts: dict[str, int] = Field(
        default_factory=lambda: {"struggling": 0, "moderate": 0, "excelling": 0}
    )
    start_time: str = Field(default_factory=lambda: datetime.now().isoformat())
    end_time: Optional[str] = None


def new_session(session_id: str, difficulty: Optional[str] = None) -> DifficultySession:
    level = normalize_difficulty(difficulty)
    return DifficultySession(session_id=session_id, starting_level=level, difficulty=level)


def _session_path(session_id: str) -> Path:
    if not isinstance(session_id, str) or not SESSION_ID_PATTERN.fullmatch(session_id):
        raise InvalidInput(
            f"Invalid session id {session_id!r}: use letters, digits, '_' or '-'"
        )
    return DATA_DIR / f"{session_id}.json"


def session_exists(session_id: str) -> bool:
    return _session_path(session_id).exists()


def load_session(session_id: str) -> DifficultySession:
    path = _session_path(session_id)
    if not path.exists():
        raise SessionNotFound(session_id)
    return DifficultySession.model_validate_json(path.read_text())


def save_session(session: DifficultySession) -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    path = _session_path(session.session_id)
    path.write_text(session.model_dump_json(indent=2))


def delete_session(session_id: str) -> bool:
    path = _session_path(session_id)
    if not path.exists():
        return False
    path.unlink()
    return True


def list_sessions() -> list[str]:
    if not DATA_DIR.exists():
        return []
    return sorted(p.stem for p in DATA_DIR.glob("*.json"))


def record_assessment(
    session: DifficultySession,
    result: AssessmentResult,
    limit: int = HISTORY_LIMIT,
) -> None:
    """
    Append a result to the session history and apply its level change.
    Keeps only the newest `limit` results.
    """
    session.history.append(result)
    if len(session.history) > limit:
        session.history = session.history[-limit:]

    session.confidence_sum += result.confidence
    dominant = result.indicators.dominant_indicator
    session.dominant_counts[dominant] = session.dominant_counts.get(dominant, 0) + 1

    if result.should_adjust and result.new_level != session.difficulty:
        session.level_changes.append(
            LevelChange(
                exchange=session.exchange_count,
                from_level=session.difficulty,
                to_level=result.new_level,
                confidence=result.confidence,
            )
        )
        logger.info(
            f"Session {session.session_id}: {session.difficulty.value} -> "
            f"{result.new_level.value} at exchange {session.exchange_count}"
        )
        session.difficulty = result.new_level


def assess_turn(
    session: DifficultySession,
    message: str,
    response_time: Optional[float] = None,
    help_requests: int = 0,
    limit: int = HISTORY_LIMIT,
) -> AssessmentResult:
    """
    Count the exchange, assess it against the session's current level and
    record the outcome. InvalidInput from the engine leaves the session untouched.
    """
    metrics = {
        "response_time": response_time,
        "exchange_count": session.exchange_count + 1,
        "help_requests": help_requests,
        "previous_assessments": list(session.history),
    }
    result = assess_difficulty(message, metrics, session.difficulty)

    session.exchange_count += 1
    session.help_requests_total += help_requests
    record_assessment(session, result, limit)
    return result


def set_difficulty(session: DifficultySession, difficulty: str) -> DifficultyLevel:
    """Manual override, recorded as a level change with full confidence."""
    level = normalize_difficulty(difficulty)
    if level != session.difficulty:
        session.level_changes.append(
            LevelChange(
                exchange=session.exchange_count,
                from_level=session.difficulty,
                to_level=level,
                confidence=1.0,
                manual=True,
            )
        )
        session.difficulty = level
    return level


def summarize_session(session: DifficultySession) -> dict:
    assessed = sum(session.dominant_counts.values())
    return {
        "session_id": session.session_id,
        "exchanges": session.exchange_count,
        "starting_level": session.starting_level.value,
        "current_level": session.difficulty.value,
        "adjustments": sum(1 for c in session.level_changes if not c.manual),
        "manual_overrides": sum(1 for c in session.level_changes if c.manual),
        "level_path": [session.starting_level.value]
        + [c.to_level.value for c in session.level_changes],
        "average_confidence": (
            round(session.confidence_sum / assessed, 3) if assessed > 0 else 0.0
        ),
        "help_requests": session.help_requests_total,
        "dominant_indicators": dict(session.dominant_counts),
        "start_time": session.start_time,
        "end_time": session.end_time,
    }


def end_session(session: DifficultySession) -> dict:
    session.end_time = datetime.now().isoformat()
    return summarize_session(session)
