"""
Bounded-buffer stream stages for the import pipeline.

A stage is any callable taking an async iterator and returning an async
iterator. ``pipeline`` chains stages with an ``asyncio.Queue`` of fixed
capacity between each pair, so a slow consumer (the COPY channel, the
disk) suspends every producer upstream of it. Peak memory is bounded by
roughly ``buffer_size * chunk_size`` per stage, independent of file size.

Every stage can be exercised on its own by feeding it a finite in-memory
async iterator and collecting its output.
"""

import asyncio
from pathlib import Path
from typing import Any, AsyncIterable, AsyncIterator, Callable, List, Optional, TypeVar, Union
from core.config import settings
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")
Stage = Callable[[AsyncIterator[Any]], AsyncIterator[Any]]

_END = object()


class _StageFailure:
    """Carries a producer exception across the queue to the consumer"""

    def __init__(self, error: Exception):
        self.error = error


async def buffered(source: AsyncIterable[T], maxsize: Optional[int] = None) -> AsyncIterator[T]:
    """
    Decouple ``source`` from its consumer through a bounded queue.

    The source is drained by a producer task; when the queue is full the
    producer waits, which is how backpressure travels upstream. An
    exception raised by the source is re-raised in the consumer. Closing
    this generator cancels the producer.
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize or settings.STREAM_BUFFER_SIZE)

    async def produce():
        try:
            async for item in source:
                await queue.put(item)
        except Exception as e:
            await queue.put(_StageFailure(e))
            return
        await queue.put(_END)

    producer = asyncio.create_task(produce())
    try:
        while True:
            item = await queue.get()
            if item is _END:
                break
            if isinstance(item, _StageFailure):
                raise item.error
            yield item
    finally:
        if not producer.done():
            producer.cancel()
            await asyncio.wait({producer})


async def pipeline(
    source: AsyncIterable[Any],
    *stages: Stage,
    buffer_size: Optional[int] = None
) -> AsyncIterator[Any]:
    """
    Chain ``stages`` after ``source`` with a bounded buffer before each stage.

    Iterating the result drives the whole chain. When iteration ends for
    any reason every generator in the chain is closed, downstream first.
    """
    chain: List[Any] = [source]
    stream: Any = source
    for stage in stages:
        stream = buffered(stream, buffer_size)
        chain.append(stream)
        stream = stage(stream)
        chain.append(stream)

    try:
        async for item in stream:
            yield item
    finally:
        for generator in reversed(chain):
            aclose = getattr(generator, "aclose", None)
            if aclose is not None:
                await aclose()


async def read_chunks(path: Union[str, Path], chunk_size: Optional[int] = None) -> AsyncIterator[bytes]:
    """Yield a file's bytes in fixed-size chunks without blocking the loop."""
    size = chunk_size or settings.STREAM_CHUNK_SIZE
    handle = await asyncio.to_thread(open, path, "rb")
    try:
        while True:
            chunk = await asyncio.to_thread(handle.read, size)
            if not chunk:
                break
            yield chunk
    finally:
        await asyncio.to_thread(handle.close)


async def write_chunks(
    chunks: AsyncIterable[bytes],
    path: Union[str, Path],
    flush_size: Optional[int] = None
) -> int:
    """
    Write every chunk to ``path``, truncating prior content.

    Small chunks are coalesced into writes of about ``flush_size`` bytes.
    Returns the number of bytes written.
    """
    size = flush_size or settings.STREAM_CHUNK_SIZE
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    handle = await asyncio.to_thread(open, path, "wb")
    written = 0
    pending = bytearray()
    try:
        async for chunk in chunks:
            pending += chunk
            if len(pending) >= size:
                data = bytes(pending)
                pending.clear()
                await asyncio.to_thread(handle.write, data)
                written += len(data)
        if pending:
            await asyncio.to_thread(handle.write, bytes(pending))
            written += len(pending)
    finally:
        await asyncio.to_thread(handle.close)

    logger.debug(f"Wrote {written} bytes to {path}")
    return written
