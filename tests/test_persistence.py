"""Tests for rendering records and the SQLAlchemy transcript store."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tutor_dialogue.db import Base
from tutor_dialogue.evaluation import FALLBACK_EVALUATION
from tutor_dialogue.models import StudentAnswer
from tutor_dialogue.persistence import SqlTranscriptStore, build_record, render_evaluation
from tutor_dialogue.schemas import Message


@pytest.fixture()
def session_factory():
	engine = create_engine(
		"sqlite://",
		connect_args={"check_same_thread": False},
		poolclass=StaticPool,
		future=True,
	)
	Base.metadata.create_all(bind=engine)
	factory = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
	yield factory
	engine.dispose()


def test_render_evaluation_layout() -> None:
	text = render_evaluation(FALLBACK_EVALUATION)
	assert text.splitlines() == [
		"Evaluation Results:",
		"Accuracy: 75/100",
		"Main Idea Understanding: 80/100",
		"Detail Tracking: 70/100",
		"Vocabulary Usage: 75/100",
		"Emotional Understanding: 80/100",
		"",
		f"Overall Feedback: {FALLBACK_EVALUATION.overall_feedback}",
	]


def test_build_record_renders_transcript() -> None:
	messages = [Message(role="assistant", content="Hi"), Message(role="user", content="Hello")]
	record = build_record(42, 7, messages, FALLBACK_EVALUATION)
	assert record.lesson_id == "42"
	assert record.user_id == "7"
	assert record.transcript_text == "Tutor: Hi\n\nStudent: Hello"
	assert record.created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_sql_store_writes_one_row(session_factory) -> None:
	record = build_record("lesson-1", "user-1", [Message(role="assistant", content="Hi")], FALLBACK_EVALUATION)
	await SqlTranscriptStore(session_factory).save(record)

	db = session_factory()
	try:
		rows = db.query(StudentAnswer).all()
	finally:
		db.close()
	assert len(rows) == 1
	row = rows[0]
	assert row.lesson_id == "lesson-1"
	assert row.user_id == "user-1"
	assert row.question_id == "interactive-dialogue"
	assert row.dialogue_record == "Tutor: Hi"
	assert row.feedback == record.evaluation_text


@pytest.mark.asyncio
async def test_sql_store_propagates_failures() -> None:
	def broken_factory():
		raise ConnectionError("no database")

	record = build_record("lesson-1", "user-1", [], FALLBACK_EVALUATION)
	with pytest.raises(ConnectionError):
		await SqlTranscriptStore(broken_factory).save(record)
