from __future__ import annotations

import logging
from typing import Callable, Protocol, Sequence

from sqlalchemy.orm import Session
from fastapi.concurrency import run_in_threadpool

from .models import StudentAnswer
from .prompts import render_transcript
from .schemas import Evaluation, Message, SavedRecord

logger = logging.getLogger(__name__)

DIALOGUE_QUESTION_ID = "interactive-dialogue"


class TranscriptStore(Protocol):
	"""Durable sink for finished dialogues. ``save`` raises on failure."""

	async def save(self, record: SavedRecord) -> None:
		...


def render_evaluation(evaluation: Evaluation) -> str:
	return (
		"Evaluation Results:\n"
		f"Accuracy: {evaluation.accuracy}/100\n"
		f"Main Idea Understanding: {evaluation.main_idea}/100\n"
		f"Detail Tracking: {evaluation.detail_tracking}/100\n"
		f"Vocabulary Usage: {evaluation.vocabulary}/100\n"
		f"Emotional Understanding: {evaluation.emotional_understanding}/100\n\n"
		f"Overall Feedback: {evaluation.overall_feedback}"
	)


def build_record(lesson_id: str, user_id: str, messages: Sequence[Message], evaluation: Evaluation) -> SavedRecord:
	return SavedRecord(
		lesson_id=str(lesson_id),
		user_id=str(user_id),
		transcript_text=render_transcript(messages),
		evaluation_text=render_evaluation(evaluation),
	)


class SqlTranscriptStore:
	"""Writes each record as one ``student_answers`` row.

	The blocking SQLAlchemy work runs in the threadpool so the event loop
	driving the dialogue is never stalled by the database.
	"""

	def __init__(self, session_factory: Callable[[], Session]) -> None:
		self._session_factory = session_factory

	def _insert(self, record: SavedRecord) -> None:
		db = self._session_factory()
		try:
			row = StudentAnswer(
				lesson_id=record.lesson_id,
				question_id=DIALOGUE_QUESTION_ID,
				user_id=record.user_id,
				dialogue_record=record.transcript_text,
				feedback=record.evaluation_text,
				created_at=record.created_at,
			)
			db.add(row)
			db.commit()
		except Exception:
			db.rollback()
			raise
		finally:
			db.close()

	async def save(self, record: SavedRecord) -> None:
		await run_in_threadpool(self._insert, record)
		logger.info("Saved dialogue for lesson %s, user %s", record.lesson_id, record.user_id)
