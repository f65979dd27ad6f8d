from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


class SessionPhase(str, Enum):
	UNINITIALIZED = "uninitialized"
	INITIALIZING = "initializing"
	ACTIVE = "active"
	EVALUATING = "evaluating"
	EVALUATED = "evaluated"
	SAVING = "saving"
	SAVED = "saved"
	# Only ever entered transiently from INITIALIZING or EVALUATING
	FAILED = "failed"


class Message(BaseModel):
	"""
	One chat bubble of the dialogue.

	Messages are frozen once created; the order in which the controller
	appends them is the canonical transcript.
	"""
	model_config = ConfigDict(frozen=True)

	role: Literal["assistant", "user"]
	content: str
	timestamp: datetime = Field(default_factory=utcnow)


class Evaluation(BaseModel):
	"""
	Multi-dimension skill evaluation derived from a full transcript.

	Scores are whole numbers between 0 and 100. Field names follow Python
	conventions; the camelCase aliases are the keys the model is asked to emit
	and the keys used on the wire.
	"""
	model_config = ConfigDict(frozen=True, populate_by_name=True)

	accuracy: int = Field(ge=0, le=100)
	main_idea: int = Field(ge=0, le=100, alias="mainIdea")
	detail_tracking: int = Field(ge=0, le=100, alias="detailTracking")
	vocabulary: int = Field(ge=0, le=100)
	emotional_understanding: int = Field(ge=0, le=100, alias="emotionalUnderstanding")
	overall_feedback: str = Field(min_length=1, alias="overallFeedback")


class SessionSnapshot(BaseModel):
	"""Read-only view of a session handed to observers and to the HTTP layer."""
	model_config = ConfigDict(frozen=True)

	lesson_title: str
	lesson_description: str
	messages: Tuple[Message, ...] = ()
	evaluation: Optional[Evaluation] = None
	phase: SessionPhase
	busy: bool = False


class SavedRecord(BaseModel):
	"""Single opaque write handed to the persistence adapter."""
	model_config = ConfigDict(frozen=True)

	lesson_id: str
	user_id: str
	transcript_text: str
	evaluation_text: str
	created_at: datetime = Field(default_factory=utcnow)
