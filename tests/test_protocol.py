#!/usr/bin/env python3
"""
Stream Framing Tests

Covers writing framed records to several sinks and parsing streams back,
including truncation at every byte of the last frame and damaged frames in
the middle of a stream.
"""

import io
import struct
from typing import List

import pytest

from epm_stream.codec import FILE_IDENTIFIER_OFFSET, Record
from epm_stream.models import make_values
from epm_stream.protocol import (
    LENGTH_PREFIX_SIZE,
    FrameError,
    FrameErrorKind,
    FrameWriter,
    ParserState,
    StreamParser,
    encode_frame,
    frame_record,
    iter_frames,
    parse_stream,
    split_results,
    write_stream,
)


def _values(count: int):
    return [make_values(i) for i in range(count)]


def _stream(count: int) -> bytes:
    return b"".join(iter_frames(count, _values(count)))


def _frame_bounds(data: bytes) -> List[int]:
    """Start offset of every frame, plus the end of the stream."""
    bounds = [0]
    offset = 0
    while offset < len(data):
        (length,) = struct.unpack_from("<I", data, offset)
        offset += LENGTH_PREFIX_SIZE + length
        bounds.append(offset)
    return bounds


class FailingSink:
    """Sink that raises after a number of successful writes."""

    def __init__(self, fail_after: int):
        self.fail_after = fail_after
        self.writes = 0

    def write(self, data: bytes) -> int:
        if self.writes >= self.fail_after:
            raise OSError("sink closed")
        self.writes += 1
        return len(data)


# =============================================================================
# Writing
# =============================================================================

def test_frame_record_prefixes_little_endian_length():
    framed = frame_record(b"abc")
    assert framed == b"\x03\x00\x00\x00abc"


def test_encode_frame_recomputes_length():
    frame = encode_frame(make_values(5))
    (length,) = struct.unpack("<I", frame[:4])
    assert length == len(frame) - LENGTH_PREFIX_SIZE


def test_write_stream_sinks_receive_identical_bytes():
    network, disk = io.BytesIO(), io.BytesIO()

    written = write_stream([network, disk], 25, _values(25))

    assert network.getvalue() == disk.getvalue()
    assert written == len(network.getvalue())


def test_write_stream_zero_records_is_empty():
    sink = io.BytesIO()
    assert write_stream([sink], 0, _values(5)) == 0
    assert sink.getvalue() == b""


def test_write_stream_negative_count_is_empty():
    sink = io.BytesIO()
    write_stream([sink], -3, _values(5))
    assert sink.getvalue() == b""


def test_write_stream_requires_a_sink():
    with pytest.raises(ValueError):
        write_stream([], 1, _values(1))


def test_write_stream_sink_failure_aborts():
    disk = io.BytesIO()
    network = FailingSink(fail_after=2)

    with pytest.raises(OSError):
        write_stream([disk, network], 10, _values(10))

    # Disk is written first, so it holds the frame the network rejected
    records, errors = split_results(parse_stream(disk.getvalue()))
    assert len(records) == 3
    assert errors == []


def test_frame_writer_counts():
    sink = io.BytesIO()
    writer = FrameWriter([sink])
    for frame in iter_frames(4, _values(4)):
        writer.write_frame(frame)

    assert writer.frames_written == 4
    assert writer.bytes_written == len(sink.getvalue())


# =============================================================================
# Parsing
# =============================================================================

@pytest.mark.parametrize("count", [0, 1, 2, 100])
def test_parse_yields_every_record_in_order(count):
    results = list(parse_stream(_stream(count)))
    assert results == [Record(*v) for v in _values(count)]


def test_parse_is_lazy():
    results = parse_stream(_stream(3))
    first = next(results)
    assert first == Record(*make_values(0))


def test_truncation_inside_last_frame():
    data = _stream(3)
    bounds = _frame_bounds(data)
    last_start, end = bounds[2], bounds[3]

    for cut in range(last_start + 1, end):
        results = list(parse_stream(data[:cut]))

        assert results[:2] == [Record(*v) for v in _values(2)]
        assert len(results) == 3

        tail = results[2]
        assert isinstance(tail, FrameError)
        assert tail.index == 2
        assert tail.offset == last_start
        if cut - last_start < LENGTH_PREFIX_SIZE:
            assert tail.kind == FrameErrorKind.INCOMPLETE_LENGTH_PREFIX
        else:
            assert tail.kind == FrameErrorKind.INCOMPLETE_MESSAGE


def test_cut_on_frame_boundary_is_clean():
    data = _stream(3)
    bounds = _frame_bounds(data)
    results = list(parse_stream(data[:bounds[2]]))
    assert results == [Record(*v) for v in _values(2)]


def test_declared_length_beyond_buffer():
    results = list(parse_stream(b"\xff\xff\xff\xffabc"))

    assert len(results) == 1
    assert results[0].kind == FrameErrorKind.INCOMPLETE_MESSAGE
    assert results[0].is_truncation


def test_corrupted_identifier_is_isolated():
    data = bytearray(_stream(3))
    bounds = _frame_bounds(bytes(data))
    data[bounds[1] + LENGTH_PREFIX_SIZE + FILE_IDENTIFIER_OFFSET] ^= 0xFF

    results = list(parse_stream(bytes(data)))

    assert len(results) == 3
    assert results[0] == Record(*make_values(0))
    assert isinstance(results[1], FrameError)
    assert results[1].kind == FrameErrorKind.MALFORMED_RECORD
    assert results[1].index == 1
    assert results[1].offset == bounds[1]
    assert not results[1].is_truncation
    assert results[2] == Record(*make_values(2))


def test_empty_frame_is_malformed():
    results = list(parse_stream(frame_record(b"") + _stream(1)))

    assert results[0].kind == FrameErrorKind.MALFORMED_RECORD
    assert results[1] == Record(*make_values(0))


def test_describe_mentions_kind_and_offset():
    error = FrameError(FrameErrorKind.INCOMPLETE_MESSAGE, 4, 512, "declared 90 bytes, 10 available")
    text = error.describe()
    assert "incomplete_message" in text
    assert "512" in text


# =============================================================================
# Incremental Parser
# =============================================================================

def test_byte_at_a_time_matches_whole_buffer():
    data = _stream(5)[:-7]
    parser = StreamParser()

    results = []
    for i in range(len(data)):
        results.extend(parser.feed(data[i:i + 1]))
    tail = parser.close()
    if tail is not None:
        results.append(tail)

    assert results == list(parse_stream(data))


def test_parser_states():
    frame = encode_frame(make_values(1))
    parser = StreamParser()
    assert parser.state == ParserState.AWAITING_LENGTH_PREFIX

    assert list(parser.feed(frame[:2])) == []
    assert parser.state == ParserState.AWAITING_LENGTH_PREFIX
    assert parser.pending_bytes == 2

    assert list(parser.feed(frame[2:10])) == []
    assert parser.state == ParserState.AWAITING_PAYLOAD
    assert parser.pending_bytes == 10

    assert list(parser.feed(frame[10:])) == [Record(*make_values(1))]
    assert parser.state == ParserState.AWAITING_LENGTH_PREFIX
    assert parser.close() is None
    assert parser.bytes_fed == len(frame)


def test_chunks_spanning_frames():
    data = _stream(6)
    parser = StreamParser()

    results = []
    for i in range(0, len(data), 37):
        results.extend(parser.feed(data[i:i + 37]))

    assert parser.close() is None
    assert results == [Record(*v) for v in _values(6)]
