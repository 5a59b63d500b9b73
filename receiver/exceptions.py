"""Custom exception classes for the transfer receiver."""

from typing import Any, Dict, Optional


class TransferError(Exception):
    """
    Base exception class for all transfer-related errors.
    """
    code = "TRANSFER_ERROR"

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id

    def to_dict(self) -> Dict[str, Any]:
        data = {"detail": str(self), "code": self.code}
        if self.session_id is not None:
            data["file_id"] = self.session_id
        return data


class ChunkRejectedError(TransferError):
    """
    Base for chunk submissions that were refused.

    Carries the session progress at the time of rejection so the caller
    can decide whether to resend.
    """

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        chunk_index: Optional[int] = None,
        received_chunks: Optional[int] = None,
        total_chunks: Optional[int] = None,
    ):
        super().__init__(message, session_id=session_id)
        self.chunk_index = chunk_index
        self.received_chunks = received_chunks
        self.total_chunks = total_chunks

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "chunk_index": self.chunk_index,
            "received_chunks": self.received_chunks,
            "total_chunks": self.total_chunks,
        })
        return data


class InvalidArgumentError(TransferError):
    """
    Raised when init parameters are malformed. No state is mutated.
    """
    code = "INVALID_ARGUMENT"


class AlreadyExistsError(TransferError):
    """
    Raised when a non-terminal session already uses the requested id.
    """
    code = "ALREADY_EXISTS"


class NotFoundError(TransferError):
    """
    Raised when a session or artifact id is unknown.
    """
    code = "NOT_FOUND"


class OutOfRangeError(ChunkRejectedError):
    """
    Raised when a chunk index falls outside the declared bounds.
    """
    code = "OUT_OF_RANGE"


class HashMismatchError(ChunkRejectedError):
    """
    Raised when chunk bytes do not match their declared fingerprint.
    The chunk is discarded; resending the same index is allowed.
    """
    code = "HASH_MISMATCH"


class InvalidStateError(ChunkRejectedError):
    """
    Raised when a session is asked to do something its status forbids.
    """
    code = "INVALID_STATE"


class MissingChunkError(TransferError):
    """
    Raised during reassembly when an index in range has no stored data.
    """
    code = "MISSING_CHUNK"

    def __init__(self, chunk_index: int, session_id: Optional[str] = None):
        super().__init__(f"Missing chunk {chunk_index}", session_id=session_id)
        self.chunk_index = chunk_index
