#!/usr/bin/env python3
"""
HTTP API for the EPM Stream Service

This module provides a FastAPI application exposing the stream service.

Endpoints:
    GET  /                - Static UI page
    GET  /stream?count=N  - Stream N framed EPM records (default 1000)
    POST /submit          - Ingest a raw framed stream from the request body
    GET  /last            - Replay the last stored stream
    GET  /api/health      - Service health
    GET  /api/snapshot    - Read-only summary of the stored stream

Usage:
    from epm_stream import StreamService, StreamConfig
    from epm_stream.api import create_api, run_api_server

    config = StreamConfig.from_yaml("config.yaml")
    service = StreamService(config)

    app = create_api(service)
    run_api_server(app, host="0.0.0.0", port=8080)
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

try:
    from fastapi import FastAPI, HTTPException, Query, Request
    from fastapi.concurrency import run_in_threadpool
    from fastapi.responses import FileResponse, PlainTextResponse, StreamingResponse
    from pydantic import BaseModel, Field
    from starlette.requests import ClientDisconnect
except ImportError:
    raise ImportError(
        "FastAPI and Pydantic are required for the API module.\n"
        "Install with: pip3 install fastapi uvicorn pydantic"
    )

from .protocol import FrameError


# =============================================================================
# Constants
# =============================================================================

STREAM_MEDIA_TYPE = "application/octet-stream"

# Maximum frame errors returned by the snapshot summary
MAX_REPORTED_ERRORS = 50


# =============================================================================
# Pydantic Models for API Responses
# =============================================================================

class HealthResponse(BaseModel):
    """API health check response."""
    status: str = Field(..., description="Health status")
    timestamp: str = Field(..., description="Current server time")
    snapshot_path: str = Field(..., description="Where the last stream is stored")
    snapshot_exists: bool = Field(..., description="Whether a stream has been stored")
    snapshot_size_bytes: int = Field(..., ge=0, description="Size of the stored stream")


class FrameErrorResponse(BaseModel):
    """A parse condition found in a stream."""
    kind: str = Field(..., description="Condition (incomplete_message, malformed_record, ...)")
    index: int = Field(..., ge=0, description="Frame number in the stream")
    offset: int = Field(..., ge=0, description="Byte offset of the frame")
    detail: str = Field("", description="Human readable detail")


class SnapshotSummaryResponse(BaseModel):
    """Summary of the stored stream."""
    size_bytes: int = Field(..., ge=0, description="Snapshot size in bytes")
    records: int = Field(..., ge=0, description="Records decoded")
    truncated: bool = Field(..., description="Whether the stream ends mid-frame")
    errors: List[FrameErrorResponse] = Field(..., description="Frame errors, in stream order")


# =============================================================================
# API Factory
# =============================================================================

def create_api(service) -> FastAPI:
    """
    Create a FastAPI application with a stream service reference.

    Args:
        service: StreamService instance.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="EPM Stream Service",
        description="Stream, submit and replay framed EPM FlatBuffer records",
        version="0.1.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.state.service = service
    logger = logging.getLogger("API")

    # -------------------------------------------------------------------------
    # Helper Functions
    # -------------------------------------------------------------------------

    def get_service():
        """Get stream service from app state."""
        return app.state.service

    def error_to_response(error: FrameError) -> FrameErrorResponse:
        return FrameErrorResponse(
            kind=error.kind.value,
            index=error.index,
            offset=error.offset,
            detail=error.detail,
        )

    # -------------------------------------------------------------------------
    # Static Page
    # -------------------------------------------------------------------------

    @app.get("/", include_in_schema=False)
    def index():
        """Serve the UI page."""
        path = Path(get_service().config.index_path)
        if not path.is_file():
            raise HTTPException(status_code=404, detail="Index page not found")
        return FileResponse(path, media_type="text/html")

    # -------------------------------------------------------------------------
    # Stream Endpoints
    # -------------------------------------------------------------------------

    @app.get("/stream", tags=["Stream"])
    def stream(
        count: Optional[str] = Query(None, description="Records to generate (default 1000)"),
    ):
        """
        Generate a stream of framed EPM records.

        The stream is written to the response and to the snapshot file at the
        same time.
        """
        service = get_service()
        record_count = service.resolve_count(count)

        try:
            frames = service.open_stream(record_count)
        except OSError as e:
            logger.error(f"Failed to create snapshot: {e}")
            return PlainTextResponse("Failed to create file", status_code=500)

        return StreamingResponse(frames, media_type=STREAM_MEDIA_TYPE)

    @app.post("/submit", tags=["Stream"])
    async def submit(request: Request):
        """
        Ingest a framed EPM stream.

        The raw body replaces the snapshot, then each record is logged.
        """
        service = get_service()

        try:
            body = await request.body()
        except (ClientDisconnect, OSError) as e:
            logger.error(f"Failed to read request body: {e}")
            return PlainTextResponse("Failed to read request body", status_code=500)

        try:
            await run_in_threadpool(service.ingest, body)
        except OSError as e:
            logger.error(f"Failed to write snapshot: {e}")
            return PlainTextResponse("Failed to write file", status_code=500)

        return PlainTextResponse("Data processed")

    @app.get("/last", tags=["Stream"])
    def last():
        """Replay the stored stream, logging each record."""
        service = get_service()

        try:
            service.replay_last()
        except OSError as e:
            logger.error(f"Failed to read snapshot: {e}")
            return PlainTextResponse("Failed to read file", status_code=500)

        return PlainTextResponse("Last file processed")

    # -------------------------------------------------------------------------
    # Status Endpoints
    # -------------------------------------------------------------------------

    @app.get("/api/health", response_model=HealthResponse, tags=["Health"])
    def health_check():
        """Check API health and snapshot presence."""
        service = get_service()

        return HealthResponse(
            status="healthy",
            timestamp=datetime.now().isoformat(),
            snapshot_path=service.store.describe(),
            snapshot_exists=service.store.exists(),
            snapshot_size_bytes=service.store.size(),
        )

    @app.get("/api/snapshot", response_model=SnapshotSummaryResponse, tags=["Stream"])
    def snapshot_summary():
        """Summarize the stored stream without logging or rewriting it."""
        service = get_service()

        try:
            summary = service.inspect_snapshot()
        except FileNotFoundError:
            raise HTTPException(status_code=404, detail="No stream stored yet")
        except OSError as e:
            logger.error(f"Failed to read snapshot: {e}")
            raise HTTPException(status_code=500, detail="Failed to read file")

        return SnapshotSummaryResponse(
            size_bytes=summary.bytes_parsed,
            records=summary.records,
            truncated=summary.truncated,
            errors=[error_to_response(e) for e in summary.errors[:MAX_REPORTED_ERRORS]],
        )

    return app


# =============================================================================
# Server Runner
# =============================================================================

def run_api_server(
    app: FastAPI,
    host: str = "0.0.0.0",
    port: int = 8080,
    log_level: str = "info",
):
    """
    Run the API server (blocking).

    Args:
        app: FastAPI application instance.
        host: Host to bind to.
        port: Port to bind to.
        log_level: Logging level.
    """
    try:
        import uvicorn
    except ImportError:
        raise ImportError("uvicorn is required. Install with: pip3 install uvicorn")

    uvicorn.run(app, host=host, port=port, log_level=log_level)
