"""
Prompt builders for the lesson dialogue.

Every builder is a pure function returning one prompt string. Lesson text and
transcript content are interpolated as literal text (never through
``str.format``) and their line breaks are collapsed, so a message can not
smuggle an extra ``Tutor:`` or ``Student:`` line into the rendered history.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from .schemas import Message

_WHITESPACE = re.compile(r"\s+")

SPEAKER_LABELS = {"assistant": "Tutor", "user": "Student"}

_CONVERSATIONAL_STYLE = (
	"Write as if you're talking naturally to a student - no numbering, no formal structure. "
	"Keep it friendly and conversational, maximum 2 sentences total."
)


def _literal(text: Optional[str]) -> str:
	return _WHITESPACE.sub(" ", text or "").strip()


def _speaker(message: Message) -> str:
	return SPEAKER_LABELS.get(message.role, "Student")


def render_transcript(messages: Iterable[Message]) -> str:
	"""Render messages verbatim as ``Tutor: ...`` / ``Student: ...`` blocks separated by blank lines."""
	return "\n\n".join(f"{_speaker(m)}: {m.content}" for m in messages)


def _render_transcript_for_prompt(messages: Iterable[Message]) -> str:
	return "\n\n".join(f"{_speaker(m)}: {_literal(m.content)}" for m in messages)


def _lesson_header(title: Optional[str], description: Optional[str]) -> str:
	return f"Video Title: {_literal(title)}\nVideo Description: {_literal(description)}"


def build_opening_prompt(title: Optional[str], description: Optional[str]) -> str:
	return (
		"You are an English language tutor starting a conversation with a student about a video lesson.\n\n"
		f"{_lesson_header(title, description)}\n\n"
		"Provide a natural, friendly introduction that includes:\n"
		"- A brief summary of what this video teaches (1 sentence)\n"
		"- A simple question to start the conversation (1 sentence)\n\n"
		f"{_CONVERSATIONAL_STYLE}"
	)


def build_turn_prompt(title: Optional[str], description: Optional[str], messages: Iterable[Message]) -> str:
	return (
		"You are an English language tutor having a natural conversation with a student about this video:\n\n"
		f"{_lesson_header(title, description)}\n\n"
		"Conversation so far:\n"
		f"{_render_transcript_for_prompt(messages)}\n\n"
		"Based on the student's response, provide a natural, conversational reply that includes:\n"
		"- A brief feedback or encouragement (1 sentence)\n"
		"- A follow-up question to continue the conversation (1 sentence)\n\n"
		f"{_CONVERSATIONAL_STYLE}"
	)


def build_evaluation_prompt(title: Optional[str], description: Optional[str], messages: Iterable[Message]) -> str:
	return (
		"As an English language tutor, evaluate this student's understanding based on the conversation about this video.\n\n"
		f"{_lesson_header(title, description)}\n\n"
		"Conversation:\n"
		f"{_render_transcript_for_prompt(messages)}\n\n"
		"Score each dimension with a whole number from 0 to 100:\n"
		"- accuracy: how correct their understanding is\n"
		"- mainIdea: grasp of the core concepts\n"
		"- detailTracking: attention to specific details\n"
		"- vocabulary: appropriate word choice\n"
		"- emotionalUnderstanding: comprehension of tone and context\n\n"
		"Also write overallFeedback: 2-3 sentences of constructive feedback. Be encouraging but honest.\n\n"
		"Return STRICT JSON only, no markdown, no text before or after the object, with exactly these keys:\n"
		"{\n"
		'  "accuracy": integer,\n'
		'  "mainIdea": integer,\n'
		'  "detailTracking": integer,\n'
		'  "vocabulary": integer,\n'
		'  "emotionalUnderstanding": integer,\n'
		'  "overallFeedback": string\n'
		"}"
	)
