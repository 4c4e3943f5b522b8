#!/usr/bin/env python3
"""
EPM Stream Service

Drives the framing protocol for the three service operations:

    Generate-and-transmit:
        value source -> codec -> framer -> {response, snapshot}

    Ingest-and-record:
        inbound bytes -> snapshot (verbatim) -> framer -> codec -> observers

    Replay-last:
        snapshot -> framer -> codec -> observers

Every parsed record is reported to the registered observers; by default each
record is logged as one VERSION/DN/LEGAL NAME/EMAIL/TELEPHONE block.

Malformed frames are reported and skipped; the parse continues with the next
frame. Truncation ends the parse and is reported as a warning.
"""

import logging
import re
import sys
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Iterable, Iterator, List, Optional

from .codec import Record
from .models import StreamConfig, random_values
from .protocol import (
    FrameError,
    FrameWriter,
    RecordValues,
    iter_frames,
    parse_stream,
    split_results,
    write_stream,
)
from .storage import SnapshotStore


# =============================================================================
# Constants
# =============================================================================

# Maximum handlers per event type
MAX_EVENT_HANDLERS = 32

# Accepted count syntax: optional sign, ASCII digits, 64-bit range
COUNT_PATTERN = re.compile(r"[+-]?[0-9]+")
MIN_COUNT_VALUE = -(2 ** 63)
MAX_COUNT_VALUE = 2 ** 63 - 1

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(config: StreamConfig, stream=None):
    """Configure logging to the config's log file and stdout (or `stream`)."""
    level = getattr(logging, config.log_level.upper())

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(config.log_file),
            logging.StreamHandler(stream or sys.stdout),
        ],
    )


def format_record(record: Record) -> str:
    """Render a record the way it is reported on ingest and replay."""
    return (
        f"VERSION: {record.file_identifier}\n"
        f"DN: {record.dn}\n"
        f"LEGAL NAME: {record.legal_name}\n"
        f"EMAIL: {record.email}\n"
        f"TELEPHONE: {record.telephone}\n"
    )


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class ParseSummary:
    """Outcome of one ingest or replay pass."""
    bytes_parsed: int = 0
    records: int = 0
    errors: List[FrameError] = field(default_factory=list)

    @property
    def truncated(self) -> bool:
        return any(e.is_truncation for e in self.errors)


class _ResponseChunks:
    """Sink that hands written frames back to the response iterator."""

    def __init__(self):
        self._pending: List[bytes] = []

    def write(self, data: bytes) -> int:
        self._pending.append(data)
        return len(data)

    def take(self) -> bytes:
        data = b"".join(self._pending)
        self._pending.clear()
        return data


# =============================================================================
# Service
# =============================================================================

class StreamService:
    """
    Generates, ingests and replays EPM streams.

    Args:
        config: Service configuration.
        store: Snapshot store. A file store at config.snapshot_path by default.
        value_source: Field values for generated records. Random by default.
    """

    def __init__(
        self,
        config: Optional[StreamConfig] = None,
        store: Optional[SnapshotStore] = None,
        value_source: Optional[Iterable[RecordValues]] = None,
    ):
        self.config = config or StreamConfig()
        self.logger = logging.getLogger("StreamService")
        self.store = store or SnapshotStore(self.config.snapshot_path)
        self.value_source = iter(value_source) if value_source is not None else random_values()

        # Event handlers
        self._record_handlers: List[Callable[[Record], None]] = []
        self._error_handlers: List[Callable[[FrameError], None]] = []

    # -------------------------------------------------------------------------
    # Event Registration
    # -------------------------------------------------------------------------

    def on_record(self, handler: Callable[[Record], None]):
        """Register a handler called for every parsed record."""
        if len(self._record_handlers) >= MAX_EVENT_HANDLERS:
            raise ValueError(f"Too many record handlers (max {MAX_EVENT_HANDLERS})")
        self._record_handlers.append(handler)

    def on_error(self, handler: Callable[[FrameError], None]):
        """Register a handler called for every frame error."""
        if len(self._error_handlers) >= MAX_EVENT_HANDLERS:
            raise ValueError(f"Too many error handlers (max {MAX_EVENT_HANDLERS})")
        self._error_handlers.append(handler)

    def _notify(self, handlers: List[Callable], item):
        for handler in handlers:
            try:
                handler(item)
            except Exception as e:
                self.logger.error(f"Handler error: {e}")

    # -------------------------------------------------------------------------
    # Generate
    # -------------------------------------------------------------------------

    def resolve_count(self, raw: Optional[str]) -> int:
        """
        Turn a requested count into a record count.

        Absent or unparsable values fall back to the configured default;
        negative values produce an empty stream.
        """
        if raw is None or not COUNT_PATTERN.fullmatch(raw):
            if raw:
                self.logger.debug(f"Unparsable count {raw!r}, using {self.config.default_count}")
            return self.config.default_count

        value = int(raw)
        if not MIN_COUNT_VALUE <= value <= MAX_COUNT_VALUE:
            self.logger.debug(f"Count {raw!r} out of range, using {self.config.default_count}")
            return self.config.default_count
        return max(value, 0)

    def open_stream(self, count: int) -> Iterator[bytes]:
        """
        Start a generate-and-transmit operation.

        The snapshot is truncated before this returns, so a creation failure
        is raised here rather than in the middle of a response. Each frame is
        written to the snapshot before it is yielded to the caller.

        Raises:
            OSError: If the snapshot cannot be created.
        """
        frames = self._transmit(count)
        # Run up to the first yield: opens the snapshot, raises on failure
        next(frames)
        return frames

    def _transmit(self, count: int) -> Iterator[bytes]:
        snapshot = self.store.begin_write()
        self.logger.info(f"Streaming {count} records (snapshot: {self.store.describe()})")
        response = _ResponseChunks()
        writer = FrameWriter([response, snapshot])
        try:
            yield b""
            for frame in iter_frames(count, self.value_source):
                writer.write_frame(frame)
                yield response.take()
        finally:
            snapshot.close()
            if writer.frames_written < count:
                self.logger.warning(
                    f"Stream aborted after {writer.frames_written}/{count} records"
                )
            else:
                self.logger.info(
                    f"Streamed {writer.frames_written} records ({writer.bytes_written} bytes)"
                )

    def generate_to(self, sink: BinaryIO, count: int) -> int:
        """
        Write `count` records to `sink` and the snapshot.

        Returns:
            Bytes written to each.

        Raises:
            OSError: If the snapshot or sink cannot be written.
        """
        with self.store.begin_write() as snapshot:
            written = write_stream([sink, snapshot], count, self.value_source)
        self.logger.info(f"Generated {count} records ({written} bytes)")
        return written

    # -------------------------------------------------------------------------
    # Ingest / Replay
    # -------------------------------------------------------------------------

    def ingest(self, data: bytes) -> ParseSummary:
        """
        Record an inbound stream and report its contents.

        The snapshot is overwritten with the raw bytes before parsing.

        Raises:
            OSError: If the snapshot cannot be written.
        """
        self.store.overwrite(data)
        self.logger.info(f"Ingested {len(data)} bytes")
        return self.process(data)

    def replay_last(self) -> ParseSummary:
        """
        Report the contents of the snapshot without rewriting it.

        Raises:
            OSError: If the snapshot cannot be read.
        """
        data = self.store.read()
        self.logger.info(f"Replaying snapshot ({len(data)} bytes)")
        return self.process(data)

    def inspect_snapshot(self) -> ParseSummary:
        """Parse the snapshot without notifying observers or logging records."""
        data = self.store.read()
        records, errors = split_results(parse_stream(data))
        return ParseSummary(bytes_parsed=len(data), records=len(records), errors=errors)

    def process(self, data: bytes) -> ParseSummary:
        """Parse a stream buffer and report each record and error."""
        summary = self._summarize(data)
        self.logger.info(
            f"Processed {summary.records} records, {len(summary.errors)} errors"
        )
        return summary

    def _summarize(self, data: bytes) -> ParseSummary:
        summary = ParseSummary(bytes_parsed=len(data))

        for item in parse_stream(data):
            if isinstance(item, FrameError):
                summary.errors.append(item)
                self._report_error(item)
            else:
                summary.records += 1
                self._report_record(item)

        return summary

    def _report_record(self, record: Record):
        self.logger.info(format_record(record))
        self._notify(self._record_handlers, record)

    def _report_error(self, error: FrameError):
        self.logger.warning(error.describe())
        self._notify(self._error_handlers, error)
