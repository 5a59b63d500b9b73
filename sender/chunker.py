"""Splits a local file into hashed chunks ready for submission."""

import base64
import mimetypes
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

from common.checksum import compute_checksum, compute_file_checksum
from common.constants import DEFAULT_CHUNK_SIZE_BYTES, DEFAULT_MIME_TYPE


@dataclass(frozen=True)
class OutgoingChunk:
    """
    One chunk of a file with its SHA-256 fingerprint.
    """
    index: int
    data: bytes
    checksum: str

    def encoded(self) -> str:
        return base64.b64encode(self.data).decode('ascii')


@dataclass(frozen=True)
class FileManifest:
    """
    Metadata announced to the receiver at init.
    """
    file_id: str
    file_name: str
    file_size: int
    total_chunks: int
    mime_type: str
    chunk_size: int
    file_hash: str


def guess_mime_type(file_name: str) -> str:
    mime_type, _ = mimetypes.guess_type(file_name)
    return mime_type or DEFAULT_MIME_TYPE


def count_chunks(file_size: int, chunk_size: int) -> int:
    """
    Number of chunks for a file. An empty file still sends one empty chunk.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return max(1, -(-file_size // chunk_size))


def iter_chunks(path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE_BYTES) -> Iterator[OutgoingChunk]:
    """
    Yield the chunks of a file in index order.

    Args:
        path: File to read
        chunk_size: Bytes per chunk

    Yields:
        OutgoingChunk for each byte range
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    index = 0
    with open(path, 'rb') as f:
        while True:
            data = f.read(chunk_size)
            if not data and index > 0:
                break
            yield OutgoingChunk(index=index, data=data, checksum=compute_checksum(data))
            index += 1
            if not data:
                break


def build_manifest(
    path: Path,
    chunk_size: int = DEFAULT_CHUNK_SIZE_BYTES,
    file_id: Optional[str] = None,
) -> FileManifest:
    """
    Describe a file for the init call, hashing its full contents.
    """
    path = Path(path)
    file_size = path.stat().st_size

    return FileManifest(
        file_id=file_id or str(uuid.uuid4()),
        file_name=path.name,
        file_size=file_size,
        total_chunks=count_chunks(file_size, chunk_size),
        mime_type=guess_mime_type(path.name),
        chunk_size=chunk_size,
        file_hash=compute_file_checksum(path, block_size=chunk_size),
    )


def split_bytes(data: bytes, chunk_size: int) -> List[OutgoingChunk]:
    """In-memory counterpart of iter_chunks."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    pieces = [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)] or [b'']
    return [
        OutgoingChunk(index=i, data=piece, checksum=compute_checksum(piece))
        for i, piece in enumerate(pieces)
    ]
