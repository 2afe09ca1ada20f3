"""
Adaptive Difficulty HTTP API — FastAPI backend.

Stateless assessment of a single learner turn, plus session endpoints that keep
the bounded assessment history on disk between turns.

    python3 difficulty_app.py
    curl -X POST localhost:8000/api/assess -d '{"message": "I think so"}'
"""

import logging
import os
import uuid
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

import session_model
from assessment_engine import assess_input
from difficulty_model import AssessmentInput, InvalidInput
from session_model import SessionNotFound

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

HOST = os.getenv("DIFFICULTY_HOST", "127.0.0.1")
PORT = int(os.getenv("DIFFICULTY_PORT", "8000"))

logger = logging.getLogger("difficulty_app")

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(title="Adaptive Difficulty")


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(SessionNotFound)
async def session_not_found_handler(request: Request, exc: SessionNotFound):
    return JSONResponse({"error": f"Session not found: {exc.args[0]}"}, status_code=404)


@app.exception_handler(ValidationError)
async def corrupt_session_handler(request: Request, exc: ValidationError):
    # Raised when a stored session file no longer matches the model
    logger.error(f"Corrupt session file: {exc}")
    return JSONResponse({"error": "Corrupt session"}, status_code=500)


class StartSessionRequest(BaseModel):
    session_id: Optional[str] = None
    difficulty: Optional[str] = "moderate"


class TurnRequest(BaseModel):
    message: Optional[str] = None
    response_time: Optional[float] = None
    help_requests: int = Field(default=0, ge=0)


class DifficultyRequest(BaseModel):
    difficulty: str


# ---------------------------------------------------------------------------
# Assessment
# ---------------------------------------------------------------------------

@app.post("/api/assess")
async def assess(body: AssessmentInput):
    """Assess one turn. The caller supplies the metrics and its own history."""
    result = assess_input(body)
    return JSONResponse(result.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@app.get("/api/sessions")
async def list_sessions():
    """List known sessions with their current level and exchange count."""
    result = []
    for session_id in session_model.list_sessions():
        try:
            session = session_model.load_session(session_id)
        except (SessionNotFound, InvalidInput, ValidationError):
            continue
        result.append({
            "session_id": session.session_id,
            "difficulty": session.difficulty.value,
            "exchange_count": session.exchange_count,
            "ended": session.end_time is not None,
        })
    return JSONResponse(result)


@app.post("/api/sessions", status_code=201)
async def start_session(body: StartSessionRequest):
    session_id = body.session_id or uuid.uuid4().hex
    if session_model.session_exists(session_id):
        return JSONResponse({"error": f"Session already exists: {session_id}"}, status_code=409)

    session = session_model.new_session(session_id, body.difficulty)
    session_model.save_session(session)
    return JSONResponse(
        {"session_id": session_id, "difficulty": session.difficulty.value},
        status_code=201,
    )


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: str):
    session = session_model.load_session(session_id)
    return JSONResponse(session.model_dump(mode="json"))


@app.post("/api/sessions/{session_id}/turns")
async def assess_turn(session_id: str, body: TurnRequest):
    session = session_model.load_session(session_id)
    result = session_model.assess_turn(
        session, body.message, body.response_time, body.help_requests
    )
    session_model.save_session(session)
    return JSONResponse({
        "session_id": session_id,
        "exchange_count": session.exchange_count,
        "difficulty": session.difficulty.value,
        "assessment": result.model_dump(mode="json"),
    })


@app.put("/api/sessions/{session_id}/difficulty")
async def set_difficulty(session_id: str, body: DifficultyRequest):
    session = session_model.load_session(session_id)
    level = session_model.set_difficulty(session, body.difficulty)
    session_model.save_session(session)
    return JSONResponse({"session_id": session_id, "difficulty": level.value})


@app.post("/api/sessions/{session_id}/end")
async def end_session(session_id: str):
    session = session_model.load_session(session_id)
    summary = session_model.end_session(session)
    session_model.save_session(session)
    return JSONResponse({"status": "session_ended", "summary": summary})


@app.delete("/api/sessions/{session_id}")
async def delete_session(session_id: str):
    if not session_model.delete_session(session_id):
        raise SessionNotFound(session_id)
    return JSONResponse({"deleted": True, "session_id": session_id})


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    logger.info(f"Session store: {session_model.DATA_DIR}")
    logger.info(f"History limit: {session_model.HISTORY_LIMIT}")

    uvicorn.run(app, host=HOST, port=PORT)
