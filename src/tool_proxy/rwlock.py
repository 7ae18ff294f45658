"""Writer-preferring readers-writer lock for asyncio."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class ReadWriteLock:
	"""Many concurrent readers or one writer.

	Waiting writers block new readers so a steady stream of snapshots
	cannot starve registrations.
	"""

	def __init__(self) -> None:
		self._cond = asyncio.Condition()
		self._readers = 0
		self._writer = False
		self._waiting_writers = 0

	@property
	def readers(self) -> int:
		return self._readers

	@property
	def write_locked(self) -> bool:
		return self._writer

	async def acquire_read(self) -> None:
		async with self._cond:
			await self._cond.wait_for(lambda: not self._writer and self._waiting_writers == 0)
			self._readers += 1

	async def release_read(self) -> None:
		async with self._cond:
			self._readers -= 1
			if self._readers == 0:
				self._cond.notify_all()

	async def acquire_write(self) -> None:
		async with self._cond:
			self._waiting_writers += 1
			try:
				await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
			except BaseException:
				# Readers parked behind this writer must be woken up again.
				self._waiting_writers -= 1
				self._cond.notify_all()
				raise
			self._waiting_writers -= 1
			self._writer = True

	async def release_write(self) -> None:
		async with self._cond:
			self._writer = False
			self._cond.notify_all()

	@asynccontextmanager
	async def read(self) -> AsyncIterator[None]:
		await self.acquire_read()
		try:
			yield
		finally:
			await self.release_read()

	@asynccontextmanager
	async def write(self) -> AsyncIterator[None]:
		await self.acquire_write()
		try:
			yield
		finally:
			await self.release_write()
