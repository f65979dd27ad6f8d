"""
Evaluation Generator
====================

Turns a finished (or partial) lesson dialogue into an ``Evaluation`` by asking
the completion backend for a strict JSON object and decoding it defensively.

Model output is untrusted free text. Anything that does not decode into the
expected shape (backend error, timeout, prose instead of JSON, missing keys,
non-numeric scores) yields ``FALLBACK_EVALUATION`` instead of an exception,
so the learner always receives feedback. Scores that are merely out of range
or fractional are rounded and clamped rather than rejected.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from typing import Any, Dict, Optional, Sequence, Tuple

from .gemini_client import CompletionBackend
from .prompts import build_evaluation_prompt
from .schemas import Evaluation, Message

logger = logging.getLogger(__name__)

DEFAULT_FEEDBACK = (
	"Good effort! You showed understanding of the main concepts. "
	"Keep practicing to improve your vocabulary and attention to details."
)

FALLBACK_EVALUATION = Evaluation(
	accuracy=75,
	main_idea=80,
	detail_tracking=70,
	vocabulary=75,
	emotional_understanding=80,
	overall_feedback=DEFAULT_FEEDBACK,
)

# (JSON key the model is asked for, Evaluation field name)
SCORE_KEYS: Tuple[Tuple[str, str], ...] = (
	("accuracy", "accuracy"),
	("mainIdea", "main_idea"),
	("detailTracking", "detail_tracking"),
	("vocabulary", "vocabulary"),
	("emotionalUnderstanding", "emotional_understanding"),
)
FEEDBACK_KEY = "overallFeedback"


class EvaluationFormatError(ValueError):
	"""Raised internally when model output does not match the Evaluation shape."""


def _extract_json_block(text: str) -> Dict[str, Any]:
	"""Extract a JSON object from LLM response text.

	Attempts to parse the entire text as JSON first, then falls back to the
	first ``{...}`` block so markdown fences or a stray sentence around the
	object are tolerated.

	Raises:
		EvaluationFormatError: If no JSON object can be extracted.
	"""
	# Deeply nested input overflows the decoder with RecursionError
	try:
		data = json.loads(text)
	except (ValueError, RecursionError):
		data = None
		match = re.search(r"\{[\s\S]*\}", text or "")
		if match:
			try:
				data = json.loads(match.group(0))
			except (ValueError, RecursionError):
				data = None
	if not isinstance(data, dict):
		raise EvaluationFormatError("Model output is not a JSON object")
	return data


def _coerce_score(key: str, value: Any) -> int:
	if isinstance(value, bool) or value is None:
		raise EvaluationFormatError(f"{key} is not a number: {value!r}")
	if isinstance(value, str):
		try:
			value = float(value.strip())
		except ValueError:
			raise EvaluationFormatError(f"{key} is not a number: {value!r}")
	if not isinstance(value, (int, float)):
		raise EvaluationFormatError(f"{key} is not a number: {value!r}")
	if isinstance(value, float) and not math.isfinite(value):
		raise EvaluationFormatError(f"{key} is not finite: {value!r}")
	if isinstance(value, int):
		score = value
	else:
		# Round half up, then clamp into the valid band
		score = int(math.floor(value + 0.5))
	return max(0, min(score, 100))


def parse_evaluation(raw: str) -> Evaluation:
	"""Decode raw model output into an Evaluation.

	Raises:
		EvaluationFormatError: If the text is not a JSON object with every
			required key, or a score is not a real number.
	"""
	if not isinstance(raw, str):
		raise EvaluationFormatError(f"Expected text, got {type(raw).__name__}")
	data = _extract_json_block(raw)
	missing = [key for key, _ in SCORE_KEYS if key not in data]
	if FEEDBACK_KEY not in data:
		missing.append(FEEDBACK_KEY)
	if missing:
		raise EvaluationFormatError(f"Missing keys: {', '.join(missing)}")
	feedback = data[FEEDBACK_KEY]
	if not isinstance(feedback, str):
		raise EvaluationFormatError(f"{FEEDBACK_KEY} is not a string")
	scores = {field: _coerce_score(key, data[key]) for key, field in SCORE_KEYS}
	return Evaluation(overall_feedback=feedback.strip() or DEFAULT_FEEDBACK, **scores)


class EvaluationGenerator:
	"""Builds the evaluation prompt, calls the backend and decodes its answer."""

	def __init__(self, backend: CompletionBackend, *, timeout: Optional[float] = None) -> None:
		self._backend = backend
		self._timeout = timeout

	async def generate(
		self,
		lesson_title: str,
		lesson_description: str,
		messages: Sequence[Message],
	) -> Evaluation:
		prompt = build_evaluation_prompt(lesson_title, lesson_description, messages)
		try:
			if self._timeout is not None:
				raw = await asyncio.wait_for(self._backend.complete(prompt), self._timeout)
			else:
				raw = await self._backend.complete(prompt)
		except asyncio.CancelledError:
			raise
		except Exception:
			logger.warning("Evaluation call failed; using fallback evaluation", exc_info=True)
			return FALLBACK_EVALUATION
		try:
			evaluation = parse_evaluation(raw)
		except EvaluationFormatError as exc:
			logger.warning("Malformed evaluation response (%s); using fallback evaluation. Raw: %.300r", exc, raw)
			return FALLBACK_EVALUATION
		except Exception:
			logger.warning("Could not decode evaluation response; using fallback evaluation", exc_info=True)
			return FALLBACK_EVALUATION
		return evaluation
