"""Exceptions raised by the dialogue engine.

Only ``PersistenceError`` is meant to reach a learner-facing caller at
runtime. ``CompletionError`` never escapes the controller; the remaining
types signal caller mistakes such as a wrong phase or use after teardown.
A bare ``DialogueError`` marks a misconfigured controller, for example a save
without a transcript store.
"""

from __future__ import annotations


class DialogueError(Exception):
	"""Base class for every error raised by this package."""


class CompletionError(DialogueError):
	"""The completion backend failed or returned unusable text."""


class InvalidPhaseError(DialogueError):
	def __init__(self, operation: str, phase: str) -> None:
		super().__init__(f"{operation} is not allowed while the session is {phase}")
		self.operation = operation
		self.phase = phase


class SessionBusyError(DialogueError):
	"""Another backend call is still in flight for this session."""


class SessionClosedError(DialogueError):
	"""The session was torn down; no further operations are accepted."""


class PersistenceError(DialogueError):
	"""Writing the transcript and evaluation to storage failed."""
