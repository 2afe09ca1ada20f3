"""
Adaptive Difficulty MCP Server.
Exposes tools for one-off assessment and for session-based difficulty tracking.
"""

import os
import sys

# Ensure sibling modules are importable
sys.path.insert(0, os.path.dirname(__file__))

import logging
from typing import Optional

from fastmcp import FastMCP

from assessment_engine import assess_difficulty
from difficulty_model import InvalidInput
from session_model import (
    SessionNotFound,
    load_session,
    new_session,
    save_session,
    session_exists,
)
from session_model import assess_turn as record_turn
from session_model import end_session as close_session
from session_model import set_difficulty as override_difficulty
from session_model import summarize_session

mcp = FastMCP("AdaptiveDifficulty")

logger = logging.getLogger("difficulty_mcp_server")


def _normalize_session_id(session_id: str) -> str:
    """Normalize session ids so 'Alex Lesson 1' and 'alex-lesson-1' share a file."""
    return session_id.strip().lower().replace(" ", "_").replace("-", "_")


@mcp.tool()
def assess_message(
    message: str,
    current_difficulty: str = "moderate",
    exchange_count: int = 0,
    response_time: Optional[float] = None,
    help_requests: int = 0,
) -> dict:
    """
    Assess a single learner message without touching any session.
    Returns whether difficulty should change, the new level, confidence,
    the reasoning and teaching recommendations.
    """
    try:
        result = assess_difficulty(
            message,
            {
                "response_time": response_time,
                "exchange_count": exchange_count,
                "help_requests": help_requests,
            },
            current_difficulty,
        )
    except InvalidInput as e:
        return {"error": str(e)}
    return result.model_dump(mode="json")


@mcp.tool()
def start_session(session_id: str, difficulty: str = "moderate") -> dict:
    """
    Start a new difficulty-tracking session, or resume an existing one.
    The difficulty token is only used when the session is new.
    """
    session_id = _normalize_session_id(session_id)
    try:
        resumed = session_exists(session_id)
    except InvalidInput as e:
        return {"error": str(e)}

    session = load_session(session_id) if resumed else new_session(session_id, difficulty)
    save_session(session)

    return {
        "status": "session_resumed" if resumed else "session_started",
        "session_id": session_id,
        "difficulty": session.difficulty.value,
        "exchange_count": session.exchange_count,
    }


@mcp.tool()
def assess_turn(
    session_id: str,
    message: str,
    response_time: Optional[float] = None,
    help_requests: int = 0,
) -> dict:
    """
    Assess the learner's latest turn within a session.
    Counts the exchange, applies any difficulty change and stores the result
    in the session's bounded history.
    """
    session_id = _normalize_session_id(session_id)
    try:
        session = load_session(session_id)
    except SessionNotFound:
        return {"error": f"No session '{session_id}'. Start a session first."}
    except InvalidInput as e:
        return {"error": str(e)}

    try:
        result = record_turn(session, message, response_time, help_requests)
    except InvalidInput as e:
        return {"error": str(e)}

    save_session(session)

    return {
        "session_id": session_id,
        "exchange_count": session.exchange_count,
        "difficulty": session.difficulty.value,
        "should_adjust": result.should_adjust,
        "new_level": result.new_level.value,
        "confidence": result.confidence,
        "reasoning": result.reasoning,
        "recommendations": result.recommendations,
        "dominant_indicator": result.indicators.dominant_indicator,
    }


@mcp.tool()
def get_session(session_id: str) -> dict:
    """Return the session summary and the most recent assessment."""
    session_id = _normalize_session_id(session_id)
    try:
        session = load_session(session_id)
    except SessionNotFound:
        return {"error": f"No session '{session_id}'."}
    except InvalidInput as e:
        return {"error": str(e)}

    last = session.history[-1].model_dump(mode="json") if session.history else None
    return {"summary": summarize_session(session), "last_assessment": last}


@mcp.tool()
def set_difficulty(session_id: str, difficulty: str) -> dict:
    """Manually override the session's difficulty level (easy, moderate or hard)."""
    session_id = _normalize_session_id(session_id)
    try:
        session = load_session(session_id)
    except SessionNotFound:
        return {"error": f"No session '{session_id}'."}
    except InvalidInput as e:
        return {"error": str(e)}

    level = override_difficulty(session, difficulty)
    save_session(session)
    return {"updated": True, "session_id": session_id, "difficulty": level.value}


@mcp.tool()
def end_session(session_id: str) -> dict:
    """End the session and return its summary: adjustments, level path, confidence."""
    session_id = _normalize_session_id(session_id)
    try:
        session = load_session(session_id)
    except SessionNotFound:
        return {"error": f"No session '{session_id}'."}
    except InvalidInput as e:
        return {"error": str(e)}

    summary = close_session(session)
    save_session(session)
    logger.info(f"Session {session_id} ended after {summary['exchanges']} exchanges")
    return {"status": "session_ended", "summary": summary}


if __name__ == "__main__":
    mcp.run()
