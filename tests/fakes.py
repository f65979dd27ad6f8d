"""Test doubles for the completion backend and the transcript store."""

from __future__ import annotations

import asyncio
from typing import List, Optional

from tutor_dialogue.schemas import SavedRecord


class FakeBackend:
	"""Replays canned replies in order; an Exception instance in the list is raised instead."""

	def __init__(self, *replies, default: str = "Nice answer! What else do you remember?") -> None:
		self.replies = list(replies)
		self.default = default
		self.prompts: List[str] = []
		self.gate: Optional[asyncio.Event] = None

	@property
	def calls(self) -> int:
		return len(self.prompts)

	async def complete(self, prompt: str) -> str:
		self.prompts.append(prompt)
		if self.gate is not None:
			await self.gate.wait()
		reply = self.replies.pop(0) if self.replies else self.default
		if isinstance(reply, BaseException):
			raise reply
		return reply


class SlowBackend:
	async def complete(self, prompt: str) -> str:
		await asyncio.sleep(10)
		return "too late"


class MemoryStore:
	def __init__(self, fail_times: int = 0) -> None:
		self.records: List[SavedRecord] = []
		self.fail_times = fail_times
		self.attempts = 0
		self.gate: Optional[asyncio.Event] = None

	async def save(self, record: SavedRecord) -> None:
		if self.gate is not None:
			await self.gate.wait()
		self.attempts += 1
		if self.attempts <= self.fail_times:
			raise ConnectionError("database is down")
		self.records.append(record)
