"""Shared pytest fixtures for all tests."""

import os

import pytest

from receiver.events import EventPublisher
from receiver.registry import TransferRegistry
from sender.config import Config


@pytest.fixture
def publisher():
    """Event publisher with default queue size."""
    return EventPublisher()


@pytest.fixture
def subscription(publisher):
    """
    Subscription attached before any event is emitted.

    Args:
        publisher: publisher fixture

    Returns:
        Subscription collecting every published event
    """
    sub = publisher.subscribe()
    yield sub
    sub.close()


@pytest.fixture
def registry(publisher):
    """Registry wired to the shared publisher."""
    return TransferRegistry(publisher=publisher)


@pytest.fixture
def sample_payload():
    """
    Deterministic payload spanning several chunks.

    Returns:
        Bytes whose chunks are all distinct
    """
    return b"".join(f"chunk-{i:04d}|".encode() * 7 for i in range(12))


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a random binary file for sender tests.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to a 10 000 byte file
    """
    file_path = tmp_path / 'payload.bin'
    file_path.write_bytes(os.urandom(10_000))
    return file_path


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Returns:
        Path to temporary .chunk-relay directory
    """
    config_dir = tmp_path / '.chunk-relay'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance.

    Returns:
        Config instance with temp config file
    """
    return Config(temp_config_dir / 'config.json')
