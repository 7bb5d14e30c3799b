"""
Chunk streams - the transport contract consumed by the stream orchestrator

A ChunkStream is an async iterator of text chunks. Once exhausted it exposes
how the stream ended through `finish_reason`.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator

import aiofiles

from codestream.modules.streaming.types import FinishReason


class ChunkStream(ABC):
    """Append-only sequence of text chunks terminated by a finish reason"""

    def __init__(self):
        self.finish_reason: FinishReason = FinishReason.UNKNOWN
        self.closed = False

    @abstractmethod
    def _chunks(self) -> AsyncIterator[str]:
        ...

    def __aiter__(self) -> AsyncIterator[str]:
        return self._chunks()

    async def aclose(self) -> None:
        self.closed = True


class TextChunkStream(ChunkStream):
    """Replays a complete string in fixed-size chunks"""

    def __init__(self, text: str, chunk_size: int = 64,
                 finish_reason: FinishReason = FinishReason.STOP, delay: float = 0.0):
        super().__init__()
        self.text = text
        self.chunk_size = max(1, chunk_size)
        self._final_reason = finish_reason
        self.delay = delay

    async def _chunks(self) -> AsyncIterator[str]:
        for i in range(0, len(self.text), self.chunk_size):
            if self.closed:
                return
            if self.delay:
                await asyncio.sleep(self.delay)
            yield self.text[i:i + self.chunk_size]
        self.finish_reason = self._final_reason


class FileChunkStream(ChunkStream):
    """Replays a recorded response file"""

    def __init__(self, path: str, chunk_size: int = 256,
                 finish_reason: FinishReason = FinishReason.STOP):
        super().__init__()
        self.path = path
        self.chunk_size = max(1, chunk_size)
        self._final_reason = finish_reason

    async def _chunks(self) -> AsyncIterator[str]:
        async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
            while not self.closed:
                chunk = await f.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk
        if not self.closed:
            self.finish_reason = self._final_reason
