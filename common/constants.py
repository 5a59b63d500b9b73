"""Project-wide constants (chunk size, retention, transfer methods)."""

DEFAULT_CHUNK_SIZE_BYTES: int = 64 * 1024  # 64 KiB default chunk size

ARTIFACT_RETENTION_LIMIT: int = 10

DEFAULT_MIME_TYPE: str = "application/octet-stream"

TRANSFER_METHOD_WIFI: str = "wifi"
TRANSFER_METHOD_BLUETOOTH: str = "bluetooth"
SUPPORTED_TRANSFER_METHODS: tuple = (TRANSFER_METHOD_WIFI, TRANSFER_METHOD_BLUETOOTH)
DEFAULT_TRANSFER_METHOD: str = TRANSFER_METHOD_WIFI

HASH_PREFIX_LENGTH: int = 16

DEFAULT_RECEIVER_PORT: int = 5050

# Largest decoded chunk the receiver accepts
MAX_CHUNK_SIZE_BYTES: int = 4 * 1024 * 1024
