"""Receiver-specific data type definitions."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class SessionStatus(str, Enum):
    RECEIVING = "receiving"
    RECONSTRUCTING = "reconstructing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


@dataclass(frozen=True)
class MethodSwitch:
    """
    One change of the link a sender uses mid-transfer.
    """
    from_method: str
    to_method: str
    timestamp: datetime
    chunk_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_method,
            "to": self.to_method,
            "timestamp": self.timestamp.isoformat(),
            "chunk_count": self.chunk_count,
        }


@dataclass(frozen=True)
class ReconstructedArtifact:
    """
    A fully reassembled file plus its metadata.
    """
    session_id: str
    file_name: str
    size: int
    mime_type: str
    content_hash: str
    payload: bytes = field(repr=False)
    reconstructed_at: datetime
    elapsed_ms: int
    total_chunks: int
    transfer_method: str
    method_switches: List[MethodSwitch] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        """Artifact metadata without payload bytes."""
        return {
            "file_id": self.session_id,
            "file_name": self.file_name,
            "file_size": self.size,
            "mime_type": self.mime_type,
            "file_hash": self.content_hash,
            "reconstructed_at": self.reconstructed_at.isoformat(),
            "transfer_time_ms": self.elapsed_ms,
            "total_chunks": self.total_chunks,
            "transfer_method": self.transfer_method,
            "method_switches": [switch.to_dict() for switch in self.method_switches],
        }


@dataclass(frozen=True)
class ChunkReceipt:
    """
    Outcome of an accepted chunk submission.
    """
    session_id: str
    chunk_index: int
    received_chunks: int
    total_chunks: int
    duplicate: bool
    status: SessionStatus
    content_hash: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status == SessionStatus.COMPLETED
