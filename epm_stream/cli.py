#!/usr/bin/env python3
"""
Command-Line Interface for the EPM Stream Service

Usage:
    python -m epm_stream                             # Run HTTP server with default config
    python -m epm_stream -c config.yaml              # Run with custom config
    python -m epm_stream --generate 10 -o stack.fb   # Write 10 framed records to a file
    python -m epm_stream --ingest stack.fb           # Store and report a stream file
    python -m epm_stream --replay                    # Report the stored stream
"""

import argparse
import logging
import os
import sys

from .models import StreamConfig
from .service import StreamService, setup_logging


def main(argv=None):
    """Command-line entry point."""
    parser = argparse.ArgumentParser(
        description="EPM Stream Service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m epm_stream                              # Run with default config
  python -m epm_stream -c config.yaml               # Run with custom config
  python -m epm_stream --port 9000                  # Custom API port
  python -m epm_stream --generate 10 -o stack.fb    # Write 10 records to stack.fb
  python -m epm_stream --ingest stack.fb            # Ingest a stream file
  python -m epm_stream --replay                     # Replay the last stored stream
        """
    )
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="API server host (default: from config or 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="API server port (default: from config or 8080)",
    )

    actions = parser.add_mutually_exclusive_group()
    actions.add_argument(
        "--generate",
        type=int,
        metavar="N",
        help="Write N framed records and exit",
    )
    actions.add_argument(
        "--ingest",
        metavar="PATH",
        help="Ingest a stream file and exit",
    )
    actions.add_argument(
        "--replay",
        action="store_true",
        help="Replay the stored stream and exit",
    )
    parser.add_argument(
        "-o", "--output",
        default=None,
        help="Output file for --generate (default: stdout)",
    )

    args = parser.parse_args(argv)

    # Load config
    if os.path.exists(args.config):
        try:
            config = StreamConfig.from_yaml(args.config)
        except Exception as e:
            print(f"Error loading config: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        print(f"Config file not found: {args.config}, using defaults", file=sys.stderr)
        config = StreamConfig()

    # Keep stdout clean when it carries the generated stream
    to_stdout = args.generate is not None and not args.output
    setup_logging(config, stream=sys.stderr if to_stdout else None)
    logger = logging.getLogger("CLI")
    service = StreamService(config)

    # Handle --generate
    if args.generate is not None:
        try:
            if args.output:
                with open(args.output, "wb") as f:
                    service.generate_to(f, args.generate)
            else:
                service.generate_to(sys.stdout.buffer, args.generate)
                sys.stdout.buffer.flush()
        except OSError as e:
            logger.error(f"Generate failed: {e}")
            sys.exit(1)
        sys.exit(0)

    # Handle --ingest
    if args.ingest:
        try:
            with open(args.ingest, "rb") as f:
                data = f.read()
            summary = service.ingest(data)
        except OSError as e:
            logger.error(f"Ingest failed: {e}")
            sys.exit(1)
        sys.exit(0 if not summary.errors else 2)

    # Handle --replay
    if args.replay:
        try:
            summary = service.replay_last()
        except OSError as e:
            logger.error(f"Replay failed: {e}")
            sys.exit(1)
        sys.exit(0 if not summary.errors else 2)

    # Run API server
    from .api import create_api, run_api_server

    api_host = args.host or config.api.host
    api_port = args.port or config.api.port

    print("\n" + "=" * 50)
    print("EPM STREAM SERVICE")
    print("=" * 50)
    print(f"API Host:        {api_host}")
    print(f"API Port:        {api_port}")
    print(f"Snapshot:        {config.snapshot_path}")
    print(f"Default Count:   {config.default_count}")
    print("=" * 50)

    run_api_server(
        create_api(service),
        host=api_host,
        port=api_port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
