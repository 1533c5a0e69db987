"""Shared scratch buffers handed out one user at a time."""

from __future__ import annotations

import abc
import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager


class BufferAccess(abc.ABC):
    """Grants access to a buffer, possibly waiting while someone else holds it."""

    @abc.abstractmethod
    def get(self) -> AbstractAsyncContextManager[bytearray | None]:
        """Return a context manager that yields the buffer for the duration of the block.

        It yields ``None`` when access is denied.
        """


class VecBufAccess(BufferAccess):
    """A single buffer of a fixed size guarded by a lock.

    Each holder receives the buffer zero-filled to its full size; it is
    emptied when the holder releases it.
    """

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError("buffer size must not be negative")
        self._size = size
        self._lock = asyncio.Lock()
        self._buf = bytearray()

    @property
    def size(self) -> int:
        """The size of the buffer handed out."""
        return self._size

    @asynccontextmanager
    async def get(self) -> AsyncIterator[bytearray]:
        async with self._lock:
            self._buf[:] = bytes(self._size)
            try:
                yield self._buf
            finally:
                self._buf.clear()