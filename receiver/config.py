"""Configuration settings for the receiver server."""

import os
from common.constants import ARTIFACT_RETENTION_LIMIT, DEFAULT_RECEIVER_PORT, MAX_CHUNK_SIZE_BYTES


RECEIVER_HOST = os.environ.get("CHUNK_RELAY_HOST", "0.0.0.0")

RECEIVER_PORT = int(os.environ.get("CHUNK_RELAY_PORT", str(DEFAULT_RECEIVER_PORT)))

ARTIFACT_RETENTION = int(os.environ.get("CHUNK_RELAY_ARTIFACT_RETENTION", str(ARTIFACT_RETENTION_LIMIT)))

MAX_CHUNK_SIZE = int(os.environ.get("CHUNK_RELAY_MAX_CHUNK_SIZE", str(MAX_CHUNK_SIZE_BYTES)))

# 0 disables idle eviction; stalled sessions then live until reset
SESSION_IDLE_TIMEOUT_SECONDS = float(os.environ.get("CHUNK_RELAY_SESSION_IDLE_TIMEOUT", "0"))

IDLE_SWEEP_INTERVAL_SECONDS = float(os.environ.get("CHUNK_RELAY_IDLE_SWEEP_INTERVAL", "60"))

EVENT_QUEUE_SIZE = int(os.environ.get("CHUNK_RELAY_EVENT_QUEUE_SIZE", "1000"))

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CHUNK_RELAY_CORS_ORIGINS", "*").split(",")
    if origin.strip()
]
