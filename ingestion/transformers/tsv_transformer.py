"""
Decompress a staged dataset file and re-encode it as header-free TSV.

The work is split into small async stages chained by ``ingestion.streams``:

    read_chunks -> decompress -> split_lines -> parse_records
                -> apply_transform -> format_rows -> write_chunks

Lines and records travel in per-chunk batches so queue overhead stays
per chunk rather than per row.
"""

from pathlib import Path
from typing import AsyncIterator, List, Optional, Union
import codecs
import functools
import logging
import time
import zlib

from core.config import settings
from core.exceptions import (
    DecodeError,
    CorruptArchiveError,
    MalformedRecordError,
    RowTransformError,
)
from ingestion.streams import pipeline, read_chunks, write_chunks
from schemas.dataset import IdentityTransform, Record, RowTransform

logger = logging.getLogger(__name__)

# Auto-detect gzip or zlib headers
_WBITS = zlib.MAX_WBITS | 32
# Default upper bound on bytes inflated per decompress call
_MAX_OUTPUT = 256 * 1024

NULL_MARKER = "\\N"


async def decompress(chunks: AsyncIterator[bytes], max_output: int = _MAX_OUTPUT) -> AsyncIterator[bytes]:
    """
    Inflate a gzip (or zlib) byte stream, including concatenated members.

    Raises:
        CorruptArchiveError: On invalid, empty or truncated input
    """
    decompressor = zlib.decompressobj(_WBITS)
    bytes_read = 0
    in_member = False

    async for chunk in chunks:
        bytes_read += len(chunk)
        pending = chunk
        while pending:
            in_member = True
            try:
                output = decompressor.decompress(pending, max_output)
            except zlib.error as e:
                raise CorruptArchiveError(
                    "Compressed stream is corrupt",
                    context={"bytes_read": bytes_read},
                    original_exception=e
                )
            if output:
                yield output
            if decompressor.eof:
                # Next gzip member, if any, starts in unused_data
                pending = decompressor.unused_data
                decompressor = zlib.decompressobj(_WBITS)
                in_member = False
            else:
                pending = decompressor.unconsumed_tail

    if bytes_read == 0:
        raise CorruptArchiveError("Compressed stream is empty", context={"bytes_read": 0})

    tail = decompressor.flush()
    if tail:
        yield tail
    if in_member and not decompressor.eof:
        raise CorruptArchiveError(
            "Compressed stream ended unexpectedly",
            context={"bytes_read": bytes_read}
        )


async def split_lines(chunks: AsyncIterator[bytes], encoding: str = "utf-8") -> AsyncIterator[List[str]]:
    """Decode bytes incrementally and yield batches of complete lines (no terminators)."""
    decoder = codecs.getincrementaldecoder(encoding)()
    remainder = ""

    async for chunk in chunks:
        try:
            text = remainder + decoder.decode(chunk)
        except UnicodeDecodeError as e:
            raise DecodeError(f"Stream is not valid {encoding}", original_exception=e)
        lines = text.split("\n")
        remainder = lines.pop()
        if lines:
            yield [line[:-1] if line.endswith("\r") else line for line in lines]

    try:
        remainder += decoder.decode(b"", final=True)
    except UnicodeDecodeError as e:
        raise DecodeError(f"Stream is not valid {encoding}", original_exception=e)
    if remainder:
        yield [remainder[:-1] if remainder.endswith("\r") else remainder]


async def parse_records(line_batches: AsyncIterator[List[str]], delimiter: str = "\t") -> AsyncIterator[List[Record]]:
    """
    Parse delimited lines into header-keyed records.

    The first non-empty line is the header. Quoting is disabled, fields are
    taken literally, and empty lines are skipped. A line whose field count
    differs from the header's is an error, never dropped or padded.
    """
    header: Optional[List[str]] = None
    line_number = 0

    async for lines in line_batches:
        records = []
        for line in lines:
            line_number += 1
            if not line:
                continue
            fields = line.split(delimiter)
            if header is None:
                if len(set(fields)) != len(fields):
                    raise MalformedRecordError(
                        "Header contains duplicate column names",
                        context={"line_number": line_number, "header": fields}
                    )
                header = fields
                continue
            if len(fields) != len(header):
                raise MalformedRecordError(
                    "Field count does not match header",
                    context={
                        "line_number": line_number,
                        "expected_fields": len(header),
                        "actual_fields": len(fields),
                    }
                )
            records.append(dict(zip(header, fields)))
        if records:
            yield records


async def apply_transform(
    record_batches: AsyncIterator[List[Record]],
    transform: RowTransform
) -> AsyncIterator[List[Record]]:
    """Apply ``transform`` to every record; the first failure aborts the stream."""
    record_number = 0

    async for records in record_batches:
        transformed = []
        for record in records:
            record_number += 1
            try:
                transformed.append(transform(record))
            except Exception as e:
                raise RowTransformError(
                    "Row transform failed",
                    context={"record_number": record_number, "transform": repr(transform)},
                    original_exception=e
                )
        yield transformed


def _field(value) -> str:
    if value is None:
        return NULL_MARKER
    if isinstance(value, str):
        return value
    return str(value)


async def format_rows(
    record_batches: AsyncIterator[List[Record]],
    delimiter: str = "\t",
    encoding: str = "utf-8"
) -> AsyncIterator[bytes]:
    """
    Serialise records as delimited lines without a header.

    Column order is the key order of the first record; every later record
    must carry exactly the same keys. ``None`` values become ``\\N``.
    """
    columns = None
    record_number = 0

    async for records in record_batches:
        lines = []
        for record in records:
            record_number += 1
            if not isinstance(record, dict):
                raise MalformedRecordError(
                    "Transformed row is not a mapping",
                    context={"record_number": record_number, "type": type(record).__name__}
                )
            if columns is None:
                columns = tuple(record)
            try:
                if len(record) != len(columns):
                    raise KeyError(sorted(set(record) ^ set(columns)))
                values = [_field(record[column]) for column in columns]
            except KeyError as e:
                raise MalformedRecordError(
                    "Transformed row columns differ from first row",
                    context={"record_number": record_number, "columns": list(columns)},
                    original_exception=e
                )
            lines.append(delimiter.join(values))
        if lines:
            yield ("\n".join(lines) + "\n").encode(encoding)


class TSVTransformer:
    """
    Turn a compressed, headered TSV file into the header-free TSV stream
    expected by ``COPY ... FROM STDIN``.
    """

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        buffer_size: Optional[int] = None
    ):
        self.chunk_size = chunk_size or settings.STREAM_CHUNK_SIZE
        self.buffer_size = buffer_size or settings.STREAM_BUFFER_SIZE

    async def extract(
        self,
        source_path: Union[str, Path],
        destination: Union[str, Path],
        transform: Optional[RowTransform] = None
    ) -> int:
        """
        Decompress ``source_path``, transform each row, write ``destination``.

        Args:
            source_path: Staged compressed file
            destination: Plain TSV output, truncated first
            transform: Row transform; identity when omitted

        Returns:
            Number of data rows written

        Raises:
            DecodeError: Corrupt archive, malformed row, failing transform,
                or an unreadable/unwritable staging file
        """
        transform = transform or IdentityTransform()
        rows_written = 0

        async def count_rows(record_batches):
            nonlocal rows_written
            async for records in record_batches:
                rows_written += len(records)
                yield records

        logger.info(f"Starting extraction {source_path}")
        started = time.monotonic()

        stream = pipeline(
            read_chunks(source_path, self.chunk_size),
            functools.partial(decompress, max_output=self.chunk_size * 4),
            split_lines,
            parse_records,
            functools.partial(apply_transform, transform=transform),
            count_rows,
            format_rows,
            buffer_size=self.buffer_size,
        )

        try:
            await write_chunks(stream, destination, self.chunk_size)
        except DecodeError:
            raise
        except OSError as e:
            raise DecodeError(
                "Staging file I/O failed during extraction",
                context={"source_path": str(source_path), "destination": str(destination)},
                original_exception=e
            )
        finally:
            await stream.aclose()

        logger.info(
            f"Extraction completed {source_path} "
            f"({rows_written} rows in {time.monotonic() - started:.1f}s)"
        )
        return rows_written
