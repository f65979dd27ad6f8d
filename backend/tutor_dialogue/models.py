from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text
from .db import Base


class StudentAnswer(Base):
	__tablename__ = "student_answers"
	id = Column(Integer, primary_key=True, autoincrement=True)
	lesson_id = Column(String(64), nullable=False, index=True)
	# Fixed marker for rows written by the interactive dialogue
	question_id = Column(String(64), nullable=False, default="interactive-dialogue")
	user_id = Column(String(128), nullable=False, index=True)
	dialogue_record = Column(Text, nullable=False)
	feedback = Column(Text, nullable=False)
	created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
