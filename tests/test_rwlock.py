"""Tests for the asyncio readers-writer lock."""

from __future__ import annotations

import asyncio

import pytest

from tool_proxy.rwlock import ReadWriteLock


class TestReadWriteLock:
	async def test_readers_share(self) -> None:
		lock = ReadWriteLock()
		await lock.acquire_read()
		await asyncio.wait_for(lock.acquire_read(), timeout=1)
		assert lock.readers == 2
		await lock.release_read()
		await lock.release_read()
		assert lock.readers == 0

	async def test_writer_excludes_readers(self) -> None:
		lock = ReadWriteLock()
		await lock.acquire_write()
		reader = asyncio.create_task(lock.acquire_read())
		await asyncio.sleep(0.01)
		assert not reader.done()
		await lock.release_write()
		await asyncio.wait_for(reader, timeout=1)
		assert lock.readers == 1

	async def test_writer_waits_for_readers(self) -> None:
		lock = ReadWriteLock()
		await lock.acquire_read()
		writer = asyncio.create_task(lock.acquire_write())
		await asyncio.sleep(0.01)
		assert not writer.done()
		await lock.release_read()
		await asyncio.wait_for(writer, timeout=1)
		assert lock.write_locked

	async def test_waiting_writer_blocks_new_readers(self) -> None:
		lock = ReadWriteLock()
		await lock.acquire_read()
		writer = asyncio.create_task(lock.acquire_write())
		await asyncio.sleep(0.01)
		late_reader = asyncio.create_task(lock.acquire_read())
		await asyncio.sleep(0.01)
		assert not late_reader.done()

		await lock.release_read()
		await asyncio.wait_for(writer, timeout=1)
		assert not late_reader.done()

		await lock.release_write()
		await asyncio.wait_for(late_reader, timeout=1)
		assert lock.readers == 1

	async def test_cancelled_writer_releases_parked_readers(self) -> None:
		lock = ReadWriteLock()
		await lock.acquire_read()
		writer = asyncio.create_task(lock.acquire_write())
		await asyncio.sleep(0.01)
		parked = asyncio.create_task(lock.acquire_read())
		await asyncio.sleep(0.01)
		assert not parked.done()

		writer.cancel()
		with pytest.raises(asyncio.CancelledError):
			await writer
		await asyncio.wait_for(parked, timeout=1)
		assert lock.readers == 2
		assert not lock.write_locked

	async def test_context_managers_release_on_error(self) -> None:
		lock = ReadWriteLock()
		with pytest.raises(RuntimeError):
			async with lock.write():
				raise RuntimeError("boom")
		assert not lock.write_locked
		with pytest.raises(RuntimeError):
			async with lock.read():
				raise RuntimeError("boom")
		assert lock.readers == 0
