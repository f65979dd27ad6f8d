"""
Interactive Dialogue Module
===========================

HTTP surface for the lesson dialogue. Each session is one
``DialogueSessionController`` held in an in-process registry for as long as
the lesson view is open; the browser deletes it when the view is torn down.

Backend trouble never shows up here as an error: greetings, replies and
evaluations fall back to fixed content inside the controller. The only
runtime failure reported to the client is a failed save (502).

API Endpoints:
- POST   /dialogue/sessions: open a dialogue and return the greeting
- GET    /dialogue/sessions/{id}: current snapshot
- POST   /dialogue/sessions/{id}/turns: send one learner message
- POST   /dialogue/sessions/{id}/evaluation: evaluate the transcript
- POST   /dialogue/sessions/{id}/submit: final turn (if any) + evaluation
- POST   /dialogue/sessions/{id}/save: persist transcript and evaluation
- DELETE /dialogue/sessions/{id}: tear the session down
"""

from __future__ import annotations

import logging
import uuid
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from ..controller import DialogueSessionController
from ..db import SessionLocal
from ..errors import InvalidPhaseError, PersistenceError, SessionBusyError, SessionClosedError
from ..gemini_client import CompletionBackend, build_completion_backend
from ..persistence import SqlTranscriptStore, TranscriptStore
from ..schemas import Evaluation, SavedRecord, SessionSnapshot
from ..settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dialogue", tags=["dialogue"])

# ============================================================================
# DEPENDENCIES
# ============================================================================

# One controller per open lesson view
_sessions: Dict[str, DialogueSessionController] = {}

_backend: Optional[CompletionBackend] = None


def get_completion_backend() -> CompletionBackend:
	global _backend
	if _backend is None:
		_backend = build_completion_backend()
	return _backend


def get_transcript_store() -> TranscriptStore:
	return SqlTranscriptStore(SessionLocal)


async def close_all_sessions() -> None:
	"""Close every open session and the shared backend client (app shutdown)."""
	global _backend
	for controller in list(_sessions.values()):
		controller.close()
	_sessions.clear()
	if _backend is not None and hasattr(_backend, "aclose"):
		await _backend.aclose()
	_backend = None


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class StartRequest(BaseModel):
	lesson_title: str = Field(min_length=1)
	lesson_description: str = Field(min_length=1)


class TurnRequest(BaseModel):
	text: str


class SubmitRequest(BaseModel):
	text: Optional[str] = None


class SaveRequest(BaseModel):
	lesson_id: str = Field(min_length=1)
	user_id: str = Field(min_length=1)


class SessionResponse(SessionSnapshot):
	session_id: str


def _session_response(session_id: str, controller: DialogueSessionController) -> SessionResponse:
	snap = controller.snapshot()
	return SessionResponse(session_id=session_id, **dict(snap))


def _get_session(session_id: str) -> DialogueSessionController:
	controller = _sessions.get(session_id)
	if controller is None or controller.closed:
		raise HTTPException(status_code=404, detail="Session not found or closed")
	return controller


# ============================================================================
# API ENDPOINTS
# ============================================================================

@router.post("/sessions", response_model=SessionResponse, status_code=201)
async def start_session(
	req: StartRequest,
	backend: CompletionBackend = Depends(get_completion_backend),
	store: TranscriptStore = Depends(get_transcript_store),
):
	"""Open a dialogue for one lesson; the response already carries the greeting."""
	session_id = uuid.uuid4().hex
	controller = DialogueSessionController(
		backend,
		store=store,
		call_timeout=settings.dialogue_call_timeout_seconds,
	)
	# Register before the first backend call so a teardown can reach it
	_sessions[session_id] = controller
	try:
		await controller.start(req.lesson_title, req.lesson_description)
	except SessionClosedError:
		raise HTTPException(status_code=404, detail="Session was closed while starting")
	if controller.closed:
		# Deleted while the greeting was pending
		raise HTTPException(status_code=404, detail="Session was closed while starting")
	return _session_response(session_id, controller)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str):
	return _session_response(session_id, _get_session(session_id))


@router.post("/sessions/{session_id}/turns", response_model=SessionResponse)
async def submit_turn(session_id: str, req: TurnRequest):
	controller = _get_session(session_id)
	try:
		accepted = await controller.submit_user_turn(req.text)
	except InvalidPhaseError as e:
		raise HTTPException(status_code=409, detail=str(e))
	except SessionClosedError:
		raise HTTPException(status_code=404, detail="Session not found or closed")
	if not accepted:
		if controller.closed:
			raise HTTPException(status_code=404, detail="Session not found or closed")
		raise HTTPException(status_code=409, detail="Turn rejected: empty input or a request is already in flight")
	return _session_response(session_id, controller)


@router.post("/sessions/{session_id}/evaluation", response_model=Evaluation)
async def evaluate_session(session_id: str):
	controller = _get_session(session_id)
	try:
		return await controller.evaluate()
	except (InvalidPhaseError, SessionBusyError) as e:
		raise HTTPException(status_code=409, detail=str(e))
	except SessionClosedError:
		raise HTTPException(status_code=404, detail="Session not found or closed")


@router.post("/sessions/{session_id}/submit", response_model=Evaluation)
async def submit_and_evaluate(session_id: str, req: SubmitRequest):
	controller = _get_session(session_id)
	try:
		return await controller.submit_and_evaluate(req.text)
	except (InvalidPhaseError, SessionBusyError) as e:
		raise HTTPException(status_code=409, detail=str(e))
	except SessionClosedError:
		raise HTTPException(status_code=404, detail="Session not found or closed")


@router.post("/sessions/{session_id}/save", response_model=SavedRecord)
async def save_session(session_id: str, req: SaveRequest):
	controller = _get_session(session_id)
	try:
		return await controller.save(req.lesson_id, req.user_id)
	except (InvalidPhaseError, SessionBusyError) as e:
		raise HTTPException(status_code=409, detail=str(e))
	except SessionClosedError:
		raise HTTPException(status_code=404, detail="Session not found or closed")
	except PersistenceError as e:
		raise HTTPException(status_code=502, detail=str(e))


@router.delete("/sessions/{session_id}", status_code=204)
async def close_session(session_id: str):
	controller = _sessions.pop(session_id, None)
	if controller is None:
		raise HTTPException(status_code=404, detail="Session not found or closed")
	controller.close()
	return Response(status_code=204)
