"""
Unit tests for the decompress / parse / transform / re-encode stages
"""

import gzip
import tracemalloc
import zlib
import pytest
from core.exceptions import (
    DecodeError,
    CorruptArchiveError,
    MalformedRecordError,
    RowTransformError,
)
from ingestion.transformers.tsv_transformer import (
    TSVTransformer,
    apply_transform,
    decompress,
    format_rows,
    parse_records,
    split_lines,
)
from schemas.dataset import FunctionTransform, IdentityTransform, ProjectionTransform


async def from_list(items):
    for item in items:
        yield item


async def collect(stream):
    return [item async for item in stream]


def flatten(batches):
    return [item for batch in batches for item in batch]


class TestDecompress:
    """Test gzip inflation stage"""

    @pytest.mark.asyncio
    async def test_inflates_gzip_in_small_chunks(self):
        payload = b"tconst\ttitleType\n" + b"tt0000001\tshort\n" * 1000
        compressed = gzip.compress(payload)
        chunks = [compressed[i:i + 7] for i in range(0, len(compressed), 7)]

        output = await collect(decompress(from_list(chunks), max_output=64))

        assert b"".join(output) == payload
        assert len(output) > 1

    @pytest.mark.asyncio
    async def test_inflates_zlib_stream(self):
        output = await collect(decompress(from_list([zlib.compress(b"plain zlib")])))
        assert b"".join(output) == b"plain zlib"

    @pytest.mark.asyncio
    async def test_concatenated_members(self):
        data = gzip.compress(b"first\n") + gzip.compress(b"second\n")

        output = await collect(decompress(from_list([data])))

        assert b"".join(output) == b"first\nsecond\n"

    @pytest.mark.asyncio
    async def test_corrupt_input_raises(self):
        with pytest.raises(CorruptArchiveError):
            await collect(decompress(from_list([b"this is not gzip at all"])))

    @pytest.mark.asyncio
    async def test_truncated_input_raises(self):
        compressed = gzip.compress(b"row\n" * 500)

        with pytest.raises(CorruptArchiveError, match="ended unexpectedly"):
            await collect(decompress(from_list([compressed[: len(compressed) // 2]])))

    @pytest.mark.asyncio
    async def test_empty_input_raises(self):
        with pytest.raises(CorruptArchiveError, match="empty"):
            await collect(decompress(from_list([])))


class TestSplitLines:
    """Test incremental line splitting"""

    @pytest.mark.asyncio
    async def test_lines_span_chunk_boundaries(self):
        batches = await collect(split_lines(from_list([b"ab\ncd", b"e\nf", b"g\n"])))
        assert flatten(batches) == ["ab", "cde", "fg"]

    @pytest.mark.asyncio
    async def test_crlf_and_missing_final_newline(self):
        batches = await collect(split_lines(from_list([b"a\r\nb\r\nc"])))
        assert flatten(batches) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_multibyte_character_split_across_chunks(self):
        encoded = "Amélie\n".encode("utf-8")
        split_at = encoded.index(b"\xc3") + 1

        batches = await collect(split_lines(from_list([encoded[:split_at], encoded[split_at:]])))

        assert flatten(batches) == ["Amélie"]

    @pytest.mark.asyncio
    async def test_invalid_utf8_raises(self):
        with pytest.raises(DecodeError):
            await collect(split_lines(from_list([b"\xff\xfe\n"])))


class TestParseRecords:
    """Test header-keyed TSV parsing"""

    @pytest.mark.asyncio
    async def test_header_keys_records(self):
        lines = [["tconst\ttitleType", "tt0000001\tshort", "tt0000002\tmovie"]]

        records = flatten(await collect(parse_records(from_list(lines))))

        assert records == [
            {"tconst": "tt0000001", "titleType": "short"},
            {"tconst": "tt0000002", "titleType": "movie"},
        ]

    @pytest.mark.asyncio
    async def test_empty_lines_are_skipped(self):
        lines = [["", "a\tb", ""], ["1\t2", "", "3\t4"]]

        records = flatten(await collect(parse_records(from_list(lines))))

        assert records == [{"a": "1", "b": "2"}, {"a": "3", "b": "4"}]

    @pytest.mark.asyncio
    async def test_quotes_are_literal(self):
        lines = [['title\tnote', '"Quoted"\tit\'s "fine"']]

        records = flatten(await collect(parse_records(from_list(lines))))

        assert records == [{"title": '"Quoted"', "note": 'it\'s "fine"'}]

    @pytest.mark.asyncio
    async def test_field_count_mismatch_raises(self):
        lines = [["a\tb", "1\t2", "3\t4\t5"]]

        with pytest.raises(MalformedRecordError) as exc_info:
            await collect(parse_records(from_list(lines)))

        assert exc_info.value.context["line_number"] == 3
        assert exc_info.value.context["expected_fields"] == 2
        assert exc_info.value.context["actual_fields"] == 3

    @pytest.mark.asyncio
    async def test_duplicate_header_raises(self):
        with pytest.raises(MalformedRecordError):
            await collect(parse_records(from_list([["a\ta"]])))


class TestApplyTransformAndFormat:
    """Test row transform and TSV re-encoding"""

    @pytest.mark.asyncio
    async def test_identity_keeps_records(self):
        batch = [{"a": "1", "b": "2"}]
        result = await collect(apply_transform(from_list([batch]), IdentityTransform()))
        assert result == [batch]

    @pytest.mark.asyncio
    async def test_transform_error_carries_record_number(self):
        def fail_on_fifth(record):
            if record["n"] == "5":
                raise ValueError("bad row")
            return record

        batch = [{"n": str(i)} for i in range(1, 11)]

        with pytest.raises(RowTransformError) as exc_info:
            await collect(apply_transform(from_list([batch]), FunctionTransform(fail_on_fifth)))

        assert exc_info.value.context["record_number"] == 5
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_format_rows_without_header(self):
        batches = [[{"a": "1", "b": "x y"}], [{"a": "2", "b": None}]]

        output = b"".join(await collect(format_rows(from_list(batches))))

        assert output == b"1\tx y\n2\t\\N\n"

    @pytest.mark.asyncio
    async def test_format_rows_rejects_changing_columns(self):
        batches = [[{"a": "1", "b": "2"}, {"a": "3", "c": "4"}]]

        with pytest.raises(MalformedRecordError):
            await collect(format_rows(from_list(batches)))


class TestTSVTransformer:
    """Test the full extraction pipeline"""

    @pytest.mark.asyncio
    async def test_identity_round_trip_is_byte_exact(self, write_gzip, tmp_path):
        rows = [
            "tt0000001\tshort\tCarmencita\t\\N\tDocumentary,Short",
            "tt0000002\tshort\tLe clown et ses chiens\t1892\tAnimation,Short",
            "tt0000003\tshort\t\"Pauvre Pierrot\"\t1892\tAnimation,Comedy,Romance",
        ]
        content = "tconst\ttitleType\tprimaryTitle\tstartYear\tgenres\n" + "\n".join(rows) + "\n"
        source = write_gzip("title.basics.tsv.gz", content)
        destination = tmp_path / "title.basics.tsv"

        written = await TSVTransformer().extract(source, destination)

        assert written == 3
        assert destination.read_text(encoding="utf-8").splitlines() == rows

    @pytest.mark.asyncio
    async def test_concrete_title_basics_content(self, write_gzip, title_basics_tsv, tmp_path):
        source = write_gzip("title.basics.tsv.gz", title_basics_tsv)
        destination = tmp_path / "title.basics.tsv"

        written = await TSVTransformer().extract(source, destination)

        assert written == 1
        assert destination.read_bytes() == b"tt0000001\tshort\n"

    @pytest.mark.asyncio
    async def test_projection_transform(self, write_gzip, tmp_path):
        source = write_gzip(
            "title.principals.tsv.gz",
            "tconst\tordering\tnconst\tjob\ntt1\t1\tnm1\tdirector\ntt1\t2\tnm2\t\\N\n",
        )
        destination = tmp_path / "title.principals.tsv"

        await TSVTransformer().extract(
            source, destination, ProjectionTransform(["nconst", "tconst"])
        )

        assert destination.read_text().splitlines() == ["nm1\ttt1", "nm2\ttt1"]

    @pytest.mark.asyncio
    async def test_destination_is_truncated(self, write_gzip, tmp_path):
        source = write_gzip("t.tsv.gz", "a\n1\n")
        destination = tmp_path / "t.tsv"
        destination.write_text("stale content\n" * 100)

        await TSVTransformer().extract(source, destination)

        assert destination.read_text() == "1\n"

    @pytest.mark.asyncio
    async def test_transform_failure_aborts_file(self, write_gzip, tmp_path):
        content = "n\tv\n" + "".join(f"{i}\tvalue{i}\n" for i in range(1, 11))
        source = write_gzip("t.tsv.gz", content)

        def fail_on_fifth(record):
            if record["n"] == "5":
                raise ValueError("cannot transform row 5")
            return record

        with pytest.raises(RowTransformError) as exc_info:
            await TSVTransformer().extract(source, tmp_path / "t.tsv", FunctionTransform(fail_on_fifth))

        assert exc_info.value.context["record_number"] == 5

    @pytest.mark.asyncio
    async def test_corrupt_staged_file(self, tmp_path):
        source = tmp_path / "broken.tsv.gz"
        source.write_bytes(b"\x1f\x8b\x08\x00garbage")

        with pytest.raises(CorruptArchiveError):
            await TSVTransformer().extract(source, tmp_path / "broken.tsv")

    @pytest.mark.asyncio
    async def test_missing_staged_file_is_decode_error(self, tmp_path):
        with pytest.raises(DecodeError) as exc_info:
            await TSVTransformer().extract(tmp_path / "missing.tsv.gz", tmp_path / "missing.tsv")

        assert isinstance(exc_info.value.__cause__, FileNotFoundError)

    @pytest.mark.asyncio
    async def test_memory_stays_bounded_for_large_file(self, tmp_path):
        """Peak allocation stays far below the decompressed file size"""
        source = tmp_path / "large.tsv.gz"
        row = "tt{:07d}\tmovie\tA reasonably long primary title for padding\t1999\tDrama,Romance\n"
        rows = 200_000
        with gzip.open(source, "wt", encoding="utf-8") as handle:
            handle.write("tconst\ttitleType\tprimaryTitle\tstartYear\tgenres\n")
            for start in range(0, rows, 10_000):
                handle.write("".join(row.format(i) for i in range(start, start + 10_000)))
        destination = tmp_path / "large.tsv"

        transformer = TSVTransformer(chunk_size=4 * 1024, buffer_size=2)
        tracemalloc.start()
        try:
            written = await transformer.extract(source, destination)
            _, peak = tracemalloc.get_traced_memory()
        finally:
            tracemalloc.stop()

        output_size = destination.stat().st_size
        assert written == rows
        assert output_size > 10 * 1024 * 1024
        assert peak < output_size / 3
