"""
Dialogue Session Controller
===========================

Owns one lesson dialogue: the ordered message log, the session phase and the
single backend call that may be in flight at any time.

Lifecycle::

	uninitialized -> initializing -> active -> evaluating -> evaluated -> saving -> saved

More turns may follow an evaluation (evaluated -> active), and a failed save
returns to evaluated. ``failed`` is only passed through while initializing or
evaluating when the backend could not be used; the controller then continues
with fallback content so the learner is never left without a greeting or
feedback. A call cancelled by its caller puts the session back in the phase it
started from; a cancelled turn still gets the apology reply.

Concurrency model:
- Everything runs on one asyncio loop; the only suspension points are the
  backend call and the persistence write.
- A plain ``busy`` flag is checked and set before the first ``await``. A turn
  submitted while busy is dropped (returns False); evaluate/save while busy
  raise SessionBusyError. Nothing is queued.
- ``close()`` bumps a generation token; results of calls that were started
  under an older token are discarded instead of applied.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from .errors import DialogueError, InvalidPhaseError, PersistenceError, SessionBusyError, SessionClosedError
from .evaluation import FALLBACK_EVALUATION, EvaluationGenerator
from .gemini_client import CompletionBackend
from .persistence import TranscriptStore, build_record
from .prompts import build_opening_prompt, build_turn_prompt
from .schemas import Evaluation, Message, SavedRecord, SessionPhase, SessionSnapshot

logger = logging.getLogger(__name__)

Listener = Callable[[SessionSnapshot], None]

APOLOGY_MESSAGE = "I apologize, but I encountered an error. Please try again."

_TRANSITIONS: Dict[SessionPhase, FrozenSet[SessionPhase]] = {
	SessionPhase.UNINITIALIZED: frozenset({SessionPhase.INITIALIZING}),
	SessionPhase.INITIALIZING: frozenset({SessionPhase.ACTIVE, SessionPhase.FAILED, SessionPhase.UNINITIALIZED}),
	SessionPhase.ACTIVE: frozenset({SessionPhase.EVALUATING}),
	SessionPhase.EVALUATING: frozenset({SessionPhase.EVALUATED, SessionPhase.FAILED, SessionPhase.ACTIVE}),
	SessionPhase.EVALUATED: frozenset({SessionPhase.ACTIVE, SessionPhase.SAVING}),
	SessionPhase.SAVING: frozenset({SessionPhase.SAVED, SessionPhase.EVALUATED}),
	SessionPhase.SAVED: frozenset(),
	SessionPhase.FAILED: frozenset({SessionPhase.ACTIVE, SessionPhase.EVALUATED}),
}

_TURN_PHASES = frozenset({SessionPhase.ACTIVE, SessionPhase.EVALUATED})
_NOT_STARTED = frozenset({SessionPhase.UNINITIALIZED, SessionPhase.INITIALIZING})


def default_greeting(lesson_title: str, lesson_description: str) -> str:
	"""Opening message used when the backend cannot produce one."""
	return (
		f"Welcome! I'm here to help you understand this video about {lesson_title}.\n\n"
		f"This video teaches {lesson_description}.\n\n"
		"What did you learn from this video?"
	)


class DialogueSessionController:
	"""
	Stateful controller for one interactive lesson dialogue.

	Args:
		backend: Completion backend used for greetings, replies and evaluation.
		store: Persistence adapter used by ``save``; optional for sessions that
			are never saved.
		evaluator: Evaluation generator; defaults to one sharing ``backend``.
		call_timeout: Optional overall budget in seconds for one backend call.
			A call that exceeds it is treated like a backend failure.
	"""

	def __init__(
		self,
		backend: CompletionBackend,
		*,
		store: Optional[TranscriptStore] = None,
		evaluator: Optional[EvaluationGenerator] = None,
		call_timeout: Optional[float] = None,
	) -> None:
		self._backend = backend
		self._store = store
		self._call_timeout = call_timeout
		self._evaluator = evaluator or EvaluationGenerator(backend, timeout=call_timeout)
		self._lesson_title = ""
		self._lesson_description = ""
		self._messages: List[Message] = []
		self._evaluation: Optional[Evaluation] = None
		# Transcript length the stored evaluation was computed from
		self._evaluated_length: Optional[int] = None
		self._phase = SessionPhase.UNINITIALIZED
		self._busy = False
		self._generation = 0
		self._closed = False
		self._listeners: List[Listener] = []
		self.pending_input = ""

	# ------------------------------------------------------------------
	# Read side
	# ------------------------------------------------------------------

	@property
	def phase(self) -> SessionPhase:
		return self._phase

	@property
	def busy(self) -> bool:
		return self._busy

	@property
	def closed(self) -> bool:
		return self._closed

	@property
	def evaluation(self) -> Optional[Evaluation]:
		return self._evaluation

	def current_transcript(self) -> Tuple[Message, ...]:
		return tuple(self._messages)

	def snapshot(self) -> SessionSnapshot:
		return SessionSnapshot(
			lesson_title=self._lesson_title,
			lesson_description=self._lesson_description,
			messages=tuple(self._messages),
			evaluation=self._evaluation,
			phase=self._phase,
			busy=self._busy,
		)

	def latest_assistant_message(self) -> Optional[Message]:
		for message in reversed(self._messages):
			if message.role == "assistant":
				return message
		return None

	def set_pending_input(self, text: Optional[str]) -> None:
		"""Fill the input slot, e.g. with text recognized by voice capture."""
		self._ensure_open()
		self.pending_input = text or ""

	def subscribe(self, listener: Listener) -> Callable[[], None]:
		"""Register ``listener`` for snapshots after every change; returns an unsubscribe callable."""
		self._ensure_open()
		self._listeners.append(listener)

		def unsubscribe() -> None:
			try:
				self._listeners.remove(listener)
			except ValueError:
				pass

		return unsubscribe

	# ------------------------------------------------------------------
	# Operations
	# ------------------------------------------------------------------

	async def start(self, lesson_title: str, lesson_description: str) -> SessionSnapshot:
		"""Open the dialogue with one assistant greeting; always ends ``active``."""
		self._ensure_open()
		if self._phase is not SessionPhase.UNINITIALIZED:
			raise InvalidPhaseError("start", self._phase.value)
		self._lesson_title = lesson_title or ""
		self._lesson_description = lesson_description or ""
		self._transition(SessionPhase.INITIALIZING)

		token = self._begin_call()
		try:
			reply = await self._complete(build_opening_prompt(self._lesson_title, self._lesson_description))
		except asyncio.CancelledError:
			self._rollback(token, SessionPhase.UNINITIALIZED)
			raise
		finally:
			self._busy = False
		if not self._is_current(token):
			logger.debug("Discarding greeting for a closed session")
			return self.snapshot()

		if reply is None:
			self._transition(SessionPhase.FAILED)
			reply = default_greeting(self._lesson_title, self._lesson_description)
		self._append("assistant", reply)
		self._transition(SessionPhase.ACTIVE)
		return self.snapshot()

	async def submit_user_turn(self, text: Optional[str] = None) -> bool:
		"""
		Send one learner message and append the tutor's reply.

		``text`` defaults to the pending-input slot. Returns False without
		touching the transcript when the text is blank or another call is in
		flight. A backend failure appends the fixed apology instead of a reply.
		"""
		self._ensure_open()
		if self._busy:
			logger.debug("Rejected turn: a backend call is already in flight")
			return False
		if self._phase not in _TURN_PHASES:
			raise InvalidPhaseError("submit_user_turn", self._phase.value)
		content = self.pending_input if text is None else text
		if not content or not content.strip():
			return False

		if self._phase is SessionPhase.EVALUATED:
			self._transition(SessionPhase.ACTIVE)
		self.pending_input = ""
		token = self._begin_call()
		self._append("user", content)
		try:
			reply = await self._complete(
				build_turn_prompt(self._lesson_title, self._lesson_description, self._messages)
			)
		except asyncio.CancelledError:
			self._busy = False
			if self._is_current(token):
				self._append("assistant", APOLOGY_MESSAGE)
			raise
		finally:
			self._busy = False
		if not self._is_current(token):
			logger.debug("Discarding reply for a closed session")
			return False

		self._append("assistant", reply if reply is not None else APOLOGY_MESSAGE)
		return True

	async def evaluate(self) -> Evaluation:
		"""
		Score the transcript. Never fails because of the backend: malformed or
		missing output yields the fallback evaluation. Reuses the stored
		result when no message was added since it was computed.
		"""
		self._ensure_open()
		if self._phase in _NOT_STARTED:
			raise InvalidPhaseError("evaluate", self._phase.value)
		if self._busy:
			raise SessionBusyError("Cannot evaluate while another request is in flight")
		if self._has_current_evaluation():
			return self._evaluation

		self._transition(SessionPhase.EVALUATING)
		token = self._begin_call()
		messages = tuple(self._messages)
		try:
			evaluation = await self._evaluator.generate(self._lesson_title, self._lesson_description, messages)
		except asyncio.CancelledError:
			self._rollback(token, SessionPhase.ACTIVE)
			raise
		finally:
			self._busy = False
		if not self._is_current(token):
			logger.debug("Discarding evaluation for a closed session")
			return evaluation

		if evaluation is FALLBACK_EVALUATION:
			self._transition(SessionPhase.FAILED)
		self._evaluation = evaluation
		self._evaluated_length = len(messages)
		self._transition(SessionPhase.EVALUATED)
		return evaluation

	async def submit_and_evaluate(self, text: Optional[str] = None) -> Evaluation:
		"""
		Evaluate right away when only the opening message exists; otherwise
		run one more turn first so the evaluation sees the latest answer.
		"""
		self._ensure_open()
		if self._phase in _NOT_STARTED:
			raise InvalidPhaseError("submit_and_evaluate", self._phase.value)
		if self._busy:
			raise SessionBusyError("Cannot submit while another request is in flight")
		if len(self._messages) > 1:
			await self.submit_user_turn(text)
		return await self.evaluate()

	async def save(self, lesson_id: str, user_id: str) -> SavedRecord:
		"""
		Persist transcript and evaluation as one record, evaluating first if
		needed. Storage failures raise PersistenceError and leave the session
		``evaluated`` so the save can be retried.
		"""
		self._ensure_open()
		if self._store is None:
			raise DialogueError("No transcript store configured for this session")
		if self._phase is SessionPhase.SAVED:
			raise InvalidPhaseError("save", self._phase.value)
		evaluation = await self.evaluate()
		self._ensure_open()

		record = build_record(lesson_id, user_id, self._messages, evaluation)
		self._transition(SessionPhase.SAVING)
		token = self._begin_call()
		error: Optional[Exception] = None
		try:
			await self._store.save(record)
		except asyncio.CancelledError:
			self._rollback(token, SessionPhase.EVALUATED)
			raise
		except Exception as exc:
			error = exc
		finally:
			self._busy = False
		current = self._is_current(token)

		if error is not None:
			logger.error("Saving dialogue for lesson %s failed: %s", lesson_id, error)
			if current:
				self._transition(SessionPhase.EVALUATED)
			raise PersistenceError(f"Failed to save dialogue: {error}") from error
		if current:
			self._transition(SessionPhase.SAVED)
		return record

	def close(self) -> None:
		"""Tear the session down; late backend results are dropped."""
		if self._closed:
			return
		self._closed = True
		self._generation += 1
		self._listeners.clear()
		logger.debug("Session closed in phase %s", self._phase.value)

	# ------------------------------------------------------------------
	# Internals
	# ------------------------------------------------------------------

	def _ensure_open(self) -> None:
		if self._closed:
			raise SessionClosedError("Dialogue session has been closed")

	def _begin_call(self) -> int:
		self._busy = True
		return self._generation

	def _is_current(self, token: int) -> bool:
		return not self._closed and token == self._generation

	def _rollback(self, token: int, phase: SessionPhase) -> None:
		"""Undo the phase of a cancelled call so the operation can be retried."""
		self._busy = False
		if self._is_current(token):
			logger.info("Call cancelled; session back to %s", phase.value)
			self._transition(phase)

	def _has_current_evaluation(self) -> bool:
		return self._evaluation is not None and self._evaluated_length == len(self._messages)

	async def _complete(self, prompt: str) -> Optional[str]:
		"""Call the backend; None stands for any failure, including blank text."""
		try:
			if self._call_timeout is not None:
				text = await asyncio.wait_for(self._backend.complete(prompt), self._call_timeout)
			else:
				text = await self._backend.complete(prompt)
		except asyncio.CancelledError:
			raise
		except Exception:
			logger.warning("Completion backend call failed", exc_info=True)
			return None
		if not isinstance(text, str) or not text.strip():
			logger.warning("Completion backend returned an empty response")
			return None
		return text.strip()

	def _append(self, role: str, content: str) -> None:
		self._messages.append(Message(role=role, content=content))
		self._notify()

	def _transition(self, phase: SessionPhase) -> None:
		if phase not in _TRANSITIONS[self._phase]:
			raise RuntimeError(f"Illegal phase transition {self._phase.value} -> {phase.value}")
		if phase is SessionPhase.FAILED:
			logger.warning("Session %s -> failed; continuing with fallback content", self._phase.value)
		else:
			logger.debug("Session %s -> %s", self._phase.value, phase.value)
		self._phase = phase
		self._notify()

	def _notify(self) -> None:
		if not self._listeners:
			return
		snap = self.snapshot()
		for listener in list(self._listeners):
			try:
				listener(snap)
			except Exception:
				logger.exception("Session listener raised")
