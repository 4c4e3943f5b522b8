#!/usr/bin/env python3
"""
Configuration and Value Sources for the EPM Stream Service

This module contains the configuration data classes and the test-value
generator used when streaming records.
"""

import random
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional

import yaml

from .protocol import DEFAULT_RECORD_COUNT, RecordValues


# =============================================================================
# Constants
# =============================================================================

# Last transmitted or received stack
DEFAULT_SNAPSHOT_PATH = "last_stack.fb"

# Static UI page served at "/"
DEFAULT_INDEX_PATH = "web/index.html"

# Upper bound (exclusive) for the number embedded in generated values
RANDOM_VALUE_RANGE = 10000


# =============================================================================
# Value Source
# =============================================================================

def make_values(number: int) -> RecordValues:
    """Build the field values for one test record."""
    return (
        f"DN-{number}",
        f"LegalName-{number}",
        f"user{number}@example.com",
        f"+1-555-{number:04d}",
    )


def random_values(rng: Optional[random.Random] = None) -> Iterator[RecordValues]:
    """
    Endless source of randomized record values.

    Args:
        rng: Random generator to draw from. A fresh unseeded one by default.
    """
    rng = rng or random.Random()
    while True:
        yield make_values(rng.randrange(RANDOM_VALUE_RANGE))


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class ApiConfig:
    """API server configuration."""
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class StreamConfig:
    """Configuration for the stream service."""
    # Snapshot settings
    snapshot_path: str = DEFAULT_SNAPSHOT_PATH

    # Stream settings
    default_count: int = DEFAULT_RECORD_COUNT

    # Web settings
    index_path: str = DEFAULT_INDEX_PATH

    # API settings
    api: ApiConfig = field(default_factory=ApiConfig)

    # Logging
    log_level: str = "INFO"
    log_file: str = "epm_stream.log"

    @classmethod
    def from_yaml(cls, path: str) -> "StreamConfig":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        api_data = data.get("api", {})

        return cls(
            snapshot_path=data.get("snapshot", {}).get("path", DEFAULT_SNAPSHOT_PATH),
            default_count=data.get("stream", {}).get("default_count", DEFAULT_RECORD_COUNT),
            index_path=data.get("web", {}).get("index_path", DEFAULT_INDEX_PATH),
            api=ApiConfig(
                host=api_data.get("host", "0.0.0.0"),
                port=api_data.get("port", 8080),
            ),
            log_level=data.get("logging", {}).get("level", "INFO"),
            log_file=data.get("logging", {}).get("file", "epm_stream.log"),
        )

    def to_dict(self) -> Dict:
        """Convert config to dictionary."""
        return {
            "snapshot": {
                "path": self.snapshot_path,
            },
            "stream": {
                "default_count": self.default_count,
            },
            "web": {
                "index_path": self.index_path,
            },
            "api": {
                "host": self.api.host,
                "port": self.api.port,
            },
            "logging": {
                "level": self.log_level,
                "file": self.log_file,
            },
        }
