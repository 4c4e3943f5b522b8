"""
EPM Stream Service

Stream, submit and replay sequences of Entity Profile Message (EPM) records
over HTTP. Each record is a size-prefixed FlatBuffer; records are packed
back-to-back into one byte stream.

Architecture:
    Value source
        │
        ▼
    Codec (codec.py)          - one record <-> one EPM FlatBuffer
        │
        ▼
    Framer (protocol.py)      - [u32 LE length][payload] frames, parse + write
        │
        ├── HTTP response (api.py)
        └── Last-stack snapshot (storage.py)

Data Flow:
    GET  /stream  - generate N records -> response + snapshot
    POST /submit  - request body -> snapshot (verbatim) -> parse -> log
    GET  /last    - snapshot -> parse -> log

Usage:
    from epm_stream import StreamService, StreamConfig
    from epm_stream.api import create_api, run_api_server

    config = StreamConfig.from_yaml("config.yaml")
    service = StreamService(config)

    # Report every record received
    service.on_record(lambda record: print(record.dn))

    run_api_server(create_api(service), port=config.api.port)
"""

from .codec import (
    EPM_FILE_IDENTIFIER,
    EpmStreamError,
    MalformedRecord,
    Record,
    decode_record,
    encode_record,
)
from .models import ApiConfig, StreamConfig, random_values
from .protocol import (
    DEFAULT_RECORD_COUNT,
    FrameError,
    FrameErrorKind,
    StreamParser,
    frame_record,
    parse_stream,
    write_stream,
)
from .service import ParseSummary, StreamService
from .storage import MemorySnapshotStore, SnapshotStore

__version__ = "0.1.0"
__all__ = [
    # Codec
    "EPM_FILE_IDENTIFIER",
    "EpmStreamError",
    "MalformedRecord",
    "Record",
    "encode_record",
    "decode_record",
    # Framing
    "DEFAULT_RECORD_COUNT",
    "FrameError",
    "FrameErrorKind",
    "StreamParser",
    "frame_record",
    "parse_stream",
    "write_stream",
    # Service
    "ApiConfig",
    "StreamConfig",
    "StreamService",
    "ParseSummary",
    "random_values",
    # Storage
    "SnapshotStore",
    "MemorySnapshotStore",
]
