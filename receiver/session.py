"""State machine for one in-flight chunked transfer."""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from common.checksum import verify_checksum
from common.constants import DEFAULT_MIME_TYPE, DEFAULT_TRANSFER_METHOD, SUPPORTED_TRANSFER_METHODS
from common.logging_config import get_logger
from receiver.exceptions import (
    HashMismatchError,
    InvalidArgumentError,
    InvalidStateError,
    OutOfRangeError,
)
from receiver.types import MethodSwitch, SessionStatus

logger = get_logger(__name__)


_TRANSITIONS = {
    SessionStatus.RECEIVING: {SessionStatus.RECONSTRUCTING, SessionStatus.FAILED},
    SessionStatus.RECONSTRUCTING: {SessionStatus.COMPLETED, SessionStatus.FAILED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.FAILED: set(),
}


class TransferSession:
    """
    Chunk table, progress counters and status of a single transfer.

    The session itself is not thread-safe. Callers serialize mutation
    through ``lock``; the registry holds it for every accept and
    status transition.
    """

    def __init__(
        self,
        session_id: str,
        file_name: str,
        declared_size: int,
        total_chunks: int,
        mime_type: str,
        transfer_method: str,
    ):
        self.session_id = session_id
        self.file_name = file_name
        self.declared_size = declared_size
        self.total_chunks = total_chunks
        self.mime_type = mime_type
        self.transfer_method = transfer_method
        self.method_switches: List[MethodSwitch] = []
        self.chunks: Dict[int, bytes] = {}
        self.status = SessionStatus.RECEIVING
        self.failure_reason: Optional[str] = None
        self.rejected_chunks = 0
        self.started_at = datetime.now(timezone.utc)
        self.started_monotonic = time.monotonic()
        self.last_activity_at = self.started_monotonic
        self.lock = asyncio.Lock()

    @classmethod
    def create(
        cls,
        session_id: str,
        file_name: str,
        declared_size: int,
        total_chunks: int,
        mime_type: Optional[str] = None,
        transfer_method: Optional[str] = None,
    ) -> "TransferSession":
        """
        Validate init parameters and build a session in ``receiving``.

        Raises:
            InvalidArgumentError: empty id or name, non-positive chunk count,
                negative size or unknown transfer method
        """
        if not session_id or not str(session_id).strip():
            raise InvalidArgumentError("File id must not be empty")
        if not file_name or not str(file_name).strip():
            raise InvalidArgumentError("File name must not be empty", session_id=session_id)
        if isinstance(total_chunks, bool) or not isinstance(total_chunks, int) or total_chunks <= 0:
            raise InvalidArgumentError(
                f"Total chunks must be a positive integer, got {total_chunks!r}",
                session_id=session_id
            )
        if declared_size is None:
            declared_size = 0
        if declared_size < 0:
            raise InvalidArgumentError(
                f"File size must not be negative, got {declared_size}",
                session_id=session_id
            )

        method = transfer_method or DEFAULT_TRANSFER_METHOD
        if method not in SUPPORTED_TRANSFER_METHODS:
            raise InvalidArgumentError(f"Unsupported transfer method: {method}", session_id=session_id)

        return cls(
            session_id=session_id,
            file_name=file_name,
            declared_size=declared_size,
            total_chunks=total_chunks,
            mime_type=mime_type or DEFAULT_MIME_TYPE,
            transfer_method=method,
        )

    @property
    def received_chunks(self) -> int:
        return len(self.chunks)

    @property
    def progress(self) -> float:
        return self.received_chunks / self.total_chunks * 100

    def is_complete(self) -> bool:
        return self.received_chunks == self.total_chunks

    def idle_seconds(self, now: Optional[float] = None) -> float:
        if now is None:
            now = time.monotonic()
        return now - self.last_activity_at

    def accept_chunk(self, index: int, data: bytes, expected_hash: str) -> bool:
        """
        Verify and store one chunk.

        Args:
            index: Chunk index in [0, total_chunks)
            data: Raw chunk bytes
            expected_hash: Declared SHA-256 hex digest of ``data``

        Returns:
            True if the chunk was stored, False if the index was already
            stored (idempotent re-delivery, first write wins)

        Raises:
            InvalidStateError: session is no longer receiving
            OutOfRangeError: index outside declared bounds
            HashMismatchError: data does not match expected_hash; nothing stored
        """
        if self.status != SessionStatus.RECEIVING:
            raise InvalidStateError(
                f"Session {self.session_id} is {self.status.value}, not accepting chunks",
                **self._rejection_context(index)
            )

        if isinstance(index, bool) or not isinstance(index, int) or index < 0 or index >= self.total_chunks:
            raise OutOfRangeError(
                f"Chunk index {index} outside [0, {self.total_chunks}) for {self.session_id}",
                **self._rejection_context(index)
            )

        if not verify_checksum(data, expected_hash):
            self.rejected_chunks += 1
            raise HashMismatchError(
                f"Hash verification failed for chunk {index} of {self.file_name}",
                **self._rejection_context(index)
            )

        if index in self.chunks:
            logger.debug(f"Duplicate chunk {index} for {self.session_id} ignored")
            return False

        self.chunks[index] = bytes(data)
        self.last_activity_at = time.monotonic()
        return True

    def switch_method(self, new_method: str, chunk_count: Optional[int] = None) -> Optional[MethodSwitch]:
        """
        Record a change of transfer method.

        Args:
            new_method: Method label to switch to
            chunk_count: Chunks received over the previous method; defaults to received_chunks

        Returns:
            The recorded switch, or None if the method is unchanged
        """
        if new_method not in SUPPORTED_TRANSFER_METHODS:
            raise InvalidArgumentError(f"Unsupported transfer method: {new_method}", session_id=self.session_id)
        if new_method == self.transfer_method:
            return None

        switch = MethodSwitch(
            from_method=self.transfer_method,
            to_method=new_method,
            timestamp=datetime.now(timezone.utc),
            chunk_count=self.received_chunks if chunk_count is None else chunk_count,
        )
        self.method_switches.append(switch)
        self.transfer_method = new_method
        return switch

    def begin_reconstruction(self) -> None:
        self._transition(SessionStatus.RECONSTRUCTING)

    def mark_completed(self) -> None:
        self._transition(SessionStatus.COMPLETED)

    def mark_failed(self, reason: str) -> None:
        self._transition(SessionStatus.FAILED)
        self.failure_reason = reason

    def _transition(self, target: SessionStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidStateError(
                f"Session {self.session_id} cannot move from {self.status.value} to {target.value}",
                session_id=self.session_id,
                received_chunks=self.received_chunks,
                total_chunks=self.total_chunks,
            )
        logger.debug(f"Session {self.session_id}: {self.status.value} -> {target.value}")
        self.status = target

    def _rejection_context(self, index) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "chunk_index": index,
            "received_chunks": self.received_chunks,
            "total_chunks": self.total_chunks,
        }

    def summary(self) -> Dict[str, Any]:
        """Session metadata and progress without chunk bytes."""
        return {
            "file_id": self.session_id,
            "file_name": self.file_name,
            "file_size": self.declared_size,
            "mime_type": self.mime_type,
            "total_chunks": self.total_chunks,
            "received_chunks": self.received_chunks,
            "chunks_received": sorted(self.chunks),
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "failure_reason": self.failure_reason,
            "rejected_chunks": self.rejected_chunks,
            "transfer_method": self.transfer_method,
            "method_switches": [switch.to_dict() for switch in self.method_switches],
        }
