"""SHA-256 fingerprints for chunks and whole files."""

import hmac
import hashlib
from pathlib import Path

from common.constants import DEFAULT_CHUNK_SIZE_BYTES


def compute_checksum(data: bytes) -> str:
    """Lowercase hex SHA-256 of ``data``."""
    return hashlib.sha256(data).hexdigest()


def verify_checksum(data: bytes, expected: str) -> bool:
    """
    Check a chunk against the fingerprint declared by the sender.

    Args:
        data: Chunk bytes as received
        expected: Declared hex digest; case and surrounding whitespace are ignored

    Returns:
        False for an empty declaration, otherwise whether the digests match
    """
    if not expected:
        return False
    return hmac.compare_digest(compute_checksum(data).encode(), expected.strip().lower().encode())


def compute_file_checksum(path: Path, block_size: int = DEFAULT_CHUNK_SIZE_BYTES) -> str:
    """Fingerprint a file without loading it into memory."""
    calculator = IncrementalChecksumCalculator()
    with open(path, 'rb') as f:
        for block in iter(lambda: f.read(block_size), b''):
            calculator.update(block)
    return calculator.finalize()


class IncrementalChecksumCalculator:
    """
    Running SHA-256 over a sequence of blocks.

    The digest equals compute_checksum() of the concatenated blocks, so a
    sender can fingerprint a file chunk by chunk and compare it with the
    receiver's hash of the reassembled payload.
    """

    def __init__(self):
        self._hasher = hashlib.sha256()
        self._finalized = False

    def update(self, data: bytes) -> None:
        if self._finalized:
            raise ValueError("Cannot update after finalization")
        self._hasher.update(data)

    def finalize(self) -> str:
        self._finalized = True
        return self._hasher.hexdigest()
