#!/usr/bin/env python3
"""
EPM Stream Framing Protocol

This module defines how many EPM records are packed into one continuous byte
stream and how such a stream is split back into records.

Protocol Overview:
- Every record is a size-prefixed EPM FlatBuffer (see codec.py)
- Frames are written back-to-back with no separators
- A writer may fan the same frames out to several sinks (HTTP response, file)
- A reader recovers every frame boundary from the size prefix alone

Frame Format:
    [LENGTH (4 bytes)] [PAYLOAD (LENGTH bytes)]

    Bytes 0-3: Payload length (uint32, little-endian)
    Bytes 4+:  EPM FlatBuffer payload ("$EPM" at payload offset 4)

Stream Format:
    [FRAME 0] [FRAME 1] ... [FRAME N-1]

Parse Conditions:
    INCOMPLETE_LENGTH_PREFIX - Stream ended inside a length prefix (stops parse)
    INCOMPLETE_MESSAGE       - Stream ended inside a payload (stops parse)
    MALFORMED_RECORD         - Payload is not a readable EPM (frame skipped)

Usage:
    with open("stack.fb", "wb") as f:
        write_stream([f], 10, random_values())

    for item in parse_stream(data):
        if isinstance(item, FrameError):
            print(item.describe())
        else:
            print(item.dn)
"""

import struct
from dataclasses import dataclass
from enum import Enum
from itertools import islice
from typing import BinaryIO, Callable, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from .codec import MalformedRecord, Record, decode_record, encode_record


# =============================================================================
# Constants
# =============================================================================

# Size prefix: uint32 little-endian
LENGTH_PREFIX_FORMAT = "<I"
LENGTH_PREFIX_SIZE = 4

# Records generated when the caller does not say how many
DEFAULT_RECORD_COUNT = 1000

# Field values for one record: (dn, legal_name, email, telephone)
RecordValues = Tuple[str, str, str, str]


# =============================================================================
# Enums
# =============================================================================

class FrameErrorKind(Enum):
    """Conditions reported while parsing a stream."""
    INCOMPLETE_LENGTH_PREFIX = "incomplete_length_prefix"
    INCOMPLETE_MESSAGE = "incomplete_message"
    MALFORMED_RECORD = "malformed_record"


class ParserState(Enum):
    """Incremental parser states."""
    AWAITING_LENGTH_PREFIX = "awaiting_length_prefix"
    AWAITING_PAYLOAD = "awaiting_payload"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class FrameError:
    """A reportable parse condition for one frame."""
    kind: FrameErrorKind
    index: int   # Frame number in the stream
    offset: int  # Stream offset where the frame starts
    detail: str = ""

    @property
    def is_truncation(self) -> bool:
        """True when the stream ended before the frame was complete."""
        return self.kind in (
            FrameErrorKind.INCOMPLETE_LENGTH_PREFIX,
            FrameErrorKind.INCOMPLETE_MESSAGE,
        )

    def describe(self) -> str:
        text = f"Frame {self.index} at offset {self.offset}: {self.kind.value}"
        if self.detail:
            text += f" ({self.detail})"
        return text


ParseResult = Union[Record, FrameError]


# =============================================================================
# Writing
# =============================================================================

def frame_record(payload: bytes) -> bytes:
    """Prefix a payload with its little-endian uint32 length."""
    return struct.pack(LENGTH_PREFIX_FORMAT, len(payload)) + payload


def encode_frame(values: RecordValues) -> bytes:
    """
    Encode one record as a stream frame.

    The codec already emits a size-prefixed buffer; the prefix is recomputed
    here from the payload so the frame never trusts a supplied length.
    """
    blob = encode_record(*values)
    return frame_record(blob[LENGTH_PREFIX_SIZE:])


def iter_frames(count: int, value_source: Iterable[RecordValues]) -> Iterator[bytes]:
    """
    Generate up to `count` frames from a value source.

    Args:
        count: Number of frames. Negative counts produce nothing.
        value_source: Iterable of (dn, legal_name, email, telephone).

    Yields:
        One encoded frame per record.
    """
    for values in islice(value_source, max(count, 0)):
        yield encode_frame(values)


class FrameWriter:
    """Writes each frame to every sink before the next frame is produced."""

    def __init__(self, sinks: Sequence[BinaryIO]):
        if not sinks:
            raise ValueError("At least one sink is required")
        self.sinks = list(sinks)
        self.frames_written = 0
        self.bytes_written = 0

    def write_frame(self, frame: bytes) -> int:
        """
        Write one frame to all sinks in order.

        Raises:
            OSError: If any sink fails. Remaining sinks are not written.
        """
        for sink in self.sinks:
            sink.write(frame)
        self.frames_written += 1
        self.bytes_written += len(frame)
        return len(frame)


def write_stream(
    sinks: Sequence[BinaryIO],
    count: int,
    value_source: Iterable[RecordValues],
) -> int:
    """
    Write `count` framed records to every sink.

    A sink failure aborts the stream immediately; sinks keep whatever they
    received before the failure.

    Args:
        sinks: Writable binary sinks that receive identical copies.
        count: Number of records to generate.
        value_source: Iterable of field values, one tuple per record.

    Returns:
        Bytes written to each sink.
    """
    writer = FrameWriter(sinks)
    for frame in iter_frames(count, value_source):
        writer.write_frame(frame)
    return writer.bytes_written


# =============================================================================
# Parsing
# =============================================================================

class StreamParser:
    """
    Incremental stream parser.

    Feed chunks of any size; every frame completed by a chunk is decoded and
    yielded. Call close() at end of stream to learn whether it was truncated.

    State machine:
        AWAITING_LENGTH_PREFIX --(4 bytes)--> AWAITING_PAYLOAD
        AWAITING_PAYLOAD --(length bytes)--> frame ready --> AWAITING_LENGTH_PREFIX
    """

    def __init__(self, decoder: Callable[[bytes], Record] = decode_record):
        self._decoder = decoder
        self._buffer = bytearray()
        self._declared_length: Optional[int] = None
        self._frame_offset = 0  # Stream offset of the frame being assembled
        self.frame_index = 0
        self.bytes_fed = 0

    @property
    def state(self) -> ParserState:
        if self._declared_length is None:
            return ParserState.AWAITING_LENGTH_PREFIX
        return ParserState.AWAITING_PAYLOAD

    @property
    def pending_bytes(self) -> int:
        """Bytes buffered for the current, unfinished frame."""
        return len(self._buffer) + (LENGTH_PREFIX_SIZE if self._declared_length is not None else 0)

    def feed(self, chunk: bytes) -> Iterator[ParseResult]:
        """
        Add bytes to the stream and yield every result they complete.

        The generator must be exhausted before the next feed() or close().
        """
        self._buffer.extend(chunk)
        self.bytes_fed += len(chunk)
        cursor = 0

        try:
            while True:
                remaining = len(self._buffer) - cursor

                if self._declared_length is None:
                    if remaining < LENGTH_PREFIX_SIZE:
                        return
                    (self._declared_length,) = struct.unpack_from(
                        LENGTH_PREFIX_FORMAT, self._buffer, cursor
                    )
                    cursor += LENGTH_PREFIX_SIZE
                    remaining -= LENGTH_PREFIX_SIZE

                length = self._declared_length
                if remaining < length:
                    return

                payload = bytes(self._buffer[cursor:cursor + length])
                cursor += length
                yield self._complete_frame(payload)
        finally:
            # Drop consumed bytes once per feed rather than once per frame
            del self._buffer[:cursor]

    def _complete_frame(self, payload: bytes) -> ParseResult:
        index = self.frame_index
        offset = self._frame_offset

        self.frame_index += 1
        self._frame_offset += LENGTH_PREFIX_SIZE + len(payload)
        self._declared_length = None

        try:
            return self._decoder(payload)
        except MalformedRecord as e:
            return FrameError(FrameErrorKind.MALFORMED_RECORD, index, offset, str(e))

    def close(self) -> Optional[FrameError]:
        """
        Finish the stream.

        Returns:
            The truncation condition for an unfinished frame, or None if the
            stream ended on a frame boundary.
        """
        if self._declared_length is not None:
            have = len(self._buffer)
            return FrameError(
                FrameErrorKind.INCOMPLETE_MESSAGE,
                self.frame_index,
                self._frame_offset,
                f"declared {self._declared_length} bytes, {have} available",
            )
        if self._buffer:
            return FrameError(
                FrameErrorKind.INCOMPLETE_LENGTH_PREFIX,
                self.frame_index,
                self._frame_offset,
                f"{len(self._buffer)} of {LENGTH_PREFIX_SIZE} prefix bytes",
            )
        return None


def parse_stream(data: bytes) -> Iterator[ParseResult]:
    """
    Lazily parse a whole stream buffer.

    Yields a Record per decodable frame and a FrameError per malformed frame.
    A truncated tail yields one final INCOMPLETE_* error and ends the pass.
    """
    parser = StreamParser()
    yield from parser.feed(data)
    tail = parser.close()
    if tail is not None:
        yield tail


def split_results(results: Iterable[ParseResult]) -> Tuple[List[Record], List[FrameError]]:
    """Separate parse results into records and errors, preserving order."""
    records: List[Record] = []
    errors: List[FrameError] = []
    for item in results:
        if isinstance(item, FrameError):
            errors.append(item)
        else:
            records.append(item)
    return records, errors
