"""Shared fixtures for configuration tests."""

import json

import pytest

from shotcam.config import config


@pytest.fixture(autouse=True)
def clean_config():
    """Start and finish every test with an empty configuration."""
    config.reset()
    yield config
    config.reset()


@pytest.fixture()
def config_file(tmp_path):
    """Write a config document and point the singleton at it."""

    def factory(data):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        config.set_config_file(path)
        return path

    return factory
