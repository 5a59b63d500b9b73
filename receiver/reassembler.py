"""Joins the chunks of a completed session into the original file."""

import time
from datetime import datetime, timezone

from common.checksum import compute_checksum
from common.logging_config import get_logger
from receiver.exceptions import MissingChunkError
from receiver.session import TransferSession
from receiver.types import ReconstructedArtifact

logger = get_logger(__name__)


class Reassembler:
    """
    Concatenates chunks strictly in ascending index order.

    Delivery order is irrelevant; only the index decides placement.
    The session is read, never mutated.
    """

    def reconstruct(self, session: TransferSession) -> ReconstructedArtifact:
        """
        Build the artifact for a session whose chunks are all present.

        Args:
            session: Session in reconstructing state

        Returns:
            ReconstructedArtifact with payload and whole-file hash

        Raises:
            MissingChunkError: first index in [0, total_chunks) without data
        """
        ordered = []
        for index in range(session.total_chunks):
            chunk = session.chunks.get(index)
            if chunk is None:
                raise MissingChunkError(index, session_id=session.session_id)
            ordered.append(chunk)

        payload = b"".join(ordered)
        content_hash = compute_checksum(payload)

        if session.declared_size and len(payload) != session.declared_size:
            logger.warning(
                f"Reassembled size {len(payload)} differs from declared size "
                f"{session.declared_size} for {session.session_id}"
            )

        return ReconstructedArtifact(
            session_id=session.session_id,
            file_name=session.file_name,
            size=len(payload),
            mime_type=session.mime_type,
            content_hash=content_hash,
            payload=payload,
            reconstructed_at=datetime.now(timezone.utc),
            elapsed_ms=int((time.monotonic() - session.started_monotonic) * 1000),
            total_chunks=session.total_chunks,
            transfer_method=session.transfer_method,
            method_switches=list(session.method_switches),
        )
