#!/usr/bin/env python3
"""
Configuration and Value Source Tests
"""

import random
from itertools import islice

import yaml

from epm_stream.models import (
    DEFAULT_SNAPSHOT_PATH,
    RANDOM_VALUE_RANGE,
    ApiConfig,
    StreamConfig,
    make_values,
    random_values,
)


def test_make_values_format():
    assert make_values(7) == ("DN-7", "LegalName-7", "user7@example.com", "+1-555-0007")


def test_random_values_seeded():
    first = list(islice(random_values(random.Random(11)), 20))
    second = list(islice(random_values(random.Random(11)), 20))
    assert first == second


def test_random_values_in_range():
    for dn, _, _, telephone in islice(random_values(random.Random(5)), 200):
        number = int(dn.split("-")[1])
        assert 0 <= number < RANDOM_VALUE_RANGE
        assert telephone == f"+1-555-{number:04d}"


def test_defaults():
    config = StreamConfig()
    assert config.snapshot_path == DEFAULT_SNAPSHOT_PATH
    assert config.default_count == 1000
    assert config.api.port == 8080


def test_yaml_round_trip(tmp_path):
    config = StreamConfig(
        snapshot_path="data/stack.fb",
        default_count=25,
        index_path="static/index.html",
        api=ApiConfig(host="127.0.0.1", port=9000),
        log_level="DEBUG",
        log_file="stream.log",
    )
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config.to_dict()))

    assert StreamConfig.from_yaml(str(path)) == config


def test_empty_yaml_uses_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")

    assert StreamConfig.from_yaml(str(path)) == StreamConfig()
