"""Registry of active transfer sessions and recently reassembled files."""

import asyncio
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from common.constants import ARTIFACT_RETENTION_LIMIT, MAX_CHUNK_SIZE_BYTES, SUPPORTED_TRANSFER_METHODS
from common.logging_config import get_logger
from receiver import events
from receiver.events import EventPublisher
from receiver.exceptions import (
    AlreadyExistsError,
    ChunkRejectedError,
    HashMismatchError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from receiver.reassembler import Reassembler
from receiver.session import TransferSession
from receiver.types import ChunkReceipt, ReconstructedArtifact, SessionStatus

logger = get_logger(__name__)


class TransferRegistry:
    """
    Creates, looks up and retires TransferSessions by id.

    Two lock levels:
        - ``self.lock`` guards the session map and artifact store and is
          only held for insert/lookup/evict.
        - each session's own lock serializes chunk admission, status
          transitions and the reassembly trigger for that id.
    """

    def __init__(
        self,
        publisher: Optional[EventPublisher] = None,
        reassembler: Optional[Reassembler] = None,
        retention_limit: int = ARTIFACT_RETENTION_LIMIT,
        max_chunk_size: int = MAX_CHUNK_SIZE_BYTES,
    ):
        if retention_limit <= 0:
            raise ValueError("retention_limit must be positive")
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        self.publisher = publisher or EventPublisher()
        self.reassembler = reassembler or Reassembler()
        self.retention_limit = retention_limit
        self.max_chunk_size = max_chunk_size
        self.lock = asyncio.Lock()
        self._sessions: Dict[str, TransferSession] = {}
        self._artifacts: Deque[ReconstructedArtifact] = deque(maxlen=retention_limit)

    async def init(
        self,
        session_id: str,
        file_name: str,
        file_size: int,
        total_chunks: int,
        mime_type: Optional[str] = None,
        transfer_method: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Start a new transfer session.

        Returns:
            Summary of the created session

        Raises:
            InvalidArgumentError: malformed parameters
            AlreadyExistsError: a non-terminal session already uses session_id
        """
        session = TransferSession.create(
            session_id=session_id,
            file_name=file_name,
            declared_size=file_size,
            total_chunks=total_chunks,
            mime_type=mime_type,
            transfer_method=transfer_method,
        )

        async with self.lock:
            existing = self._sessions.get(session_id)
            if existing is not None and not existing.status.is_terminal:
                raise AlreadyExistsError(
                    f"Transfer {session_id} is already {existing.status.value}",
                    session_id=session_id
                )
            if existing is not None:
                logger.info(f"Replacing {existing.status.value} transfer {session_id}")
            self._sessions[session_id] = session

        summary = session.summary()
        logger.info(
            f"Initialized {session.transfer_method} transfer {session_id} for "
            f"{session.file_name} ({session.total_chunks} chunks, {session.declared_size} bytes)"
        )
        self.publisher.publish(events.session_started(summary))
        return summary

    async def submit_chunk(
        self,
        session_id: str,
        chunk_index: int,
        data: bytes,
        chunk_hash: str,
        transfer_method: Optional[str] = None,
    ) -> ChunkReceipt:
        """
        Verify and store one chunk; reassemble when it is the last one.

        Args:
            session_id: Transfer id given at init
            chunk_index: Index of the chunk
            data: Raw chunk bytes, already decoded from the wire
            chunk_hash: Declared SHA-256 hex digest of data
            transfer_method: Optional link label; a change is recorded as a switch

        Returns:
            ChunkReceipt with current progress

        Raises:
            NotFoundError: no session for session_id
            InvalidArgumentError: chunk larger than max_chunk_size or unknown transfer_method
            OutOfRangeError, HashMismatchError, InvalidStateError: chunk rejected
        """
        session = await self._get_session(session_id)

        if len(data) > self.max_chunk_size:
            raise InvalidArgumentError(
                f"Chunk {chunk_index} is {len(data)} bytes, limit is {self.max_chunk_size}",
                session_id=session_id
            )
        if transfer_method and transfer_method not in SUPPORTED_TRANSFER_METHODS:
            raise InvalidArgumentError(f"Unsupported transfer method: {transfer_method}", session_id=session_id)

        async with session.lock:
            if not await self._is_tracked(session):
                raise NotFoundError(f"Transfer {session_id} not found", session_id=session_id)

            received_before = session.received_chunks
            try:
                stored = session.accept_chunk(chunk_index, data, chunk_hash)
            except HashMismatchError as e:
                logger.warning(f"{e} (rejections so far: {session.rejected_chunks})")
                raise
            except ChunkRejectedError as e:
                logger.warning(f"Rejected chunk for {session_id}: {e}")
                raise

            if transfer_method:
                self._apply_method_switch(session, transfer_method, chunk_count=received_before)

            if not stored:
                return self._receipt(session, chunk_index, duplicate=True)

            logger.debug(
                f"[{session.transfer_method.upper()}] Chunk {chunk_index + 1}/{session.total_chunks} "
                f"for {session.file_name} (hash {chunk_hash[:8]}...)"
            )
            self.publisher.publish(events.chunk_accepted(
                session_id=session_id,
                chunk_index=chunk_index,
                chunk_hash=chunk_hash,
                received_chunks=session.received_chunks,
                total_chunks=session.total_chunks,
                file_name=session.file_name,
                transfer_method=session.transfer_method,
            ))

            if not session.is_complete():
                return self._receipt(session, chunk_index)

            artifact = await self._reconstruct(session)
            return self._receipt(
                session,
                chunk_index,
                content_hash=artifact.content_hash if artifact else None
            )

    async def switch_method(self, session_id: str, new_method: str) -> Dict[str, Any]:
        """
        Change the transfer method label of a receiving session.

        Returns:
            Updated session summary
        """
        session = await self._get_session(session_id)

        async with session.lock:
            if session.status != SessionStatus.RECEIVING:
                raise InvalidStateError(
                    f"Session {session_id} is {session.status.value}, cannot switch method",
                    session_id=session_id,
                    received_chunks=session.received_chunks,
                    total_chunks=session.total_chunks,
                )
            self._apply_method_switch(session, new_method)
            return session.summary()

    async def get_artifact(self, session_id: str) -> ReconstructedArtifact:
        async with self.lock:
            for artifact in self._artifacts:
                if artifact.session_id == session_id:
                    return artifact
        raise NotFoundError(f"File {session_id} not found", session_id=session_id)

    async def list_artifacts(self) -> List[Dict[str, Any]]:
        """Snapshot of retained artifacts, most recent first, without payloads."""
        async with self.lock:
            artifacts = list(self._artifacts)
        return [artifact.summary() for artifact in artifacts]

    async def list_active_sessions(self) -> List[Dict[str, Any]]:
        """Snapshot of session summaries in init order."""
        async with self.lock:
            sessions = list(self._sessions.values())
        return [session.summary() for session in sessions]

    async def reset(self) -> None:
        """Drop every active session and retained artifact."""
        async with self.lock:
            cleared_sessions = len(self._sessions)
            cleared_artifacts = len(self._artifacts)
            self._sessions.clear()
            self._artifacts.clear()

        logger.warning(f"Registry reset: cleared {cleared_sessions} transfers and {cleared_artifacts} files")
        self.publisher.publish(events.registry_reset(cleared_sessions, cleared_artifacts))

    async def evict_idle_sessions(self, max_idle_seconds: float, now: Optional[float] = None) -> List[str]:
        """
        Remove receiving sessions with no accepted chunk for max_idle_seconds.

        Sessions whose lock is currently held are skipped.

        Returns:
            Ids of evicted sessions
        """
        if now is None:
            now = time.monotonic()

        expired = []
        async with self.lock:
            for session_id, session in list(self._sessions.items()):
                if session.status != SessionStatus.RECEIVING or session.lock.locked():
                    continue
                idle = session.idle_seconds(now)
                if idle > max_idle_seconds:
                    del self._sessions[session_id]
                    session.mark_failed(f"Expired after {idle:.0f}s without progress")
                    expired.append((session, idle))

        for session, idle in expired:
            logger.warning(
                f"Expired idle transfer {session.session_id} "
                f"({session.received_chunks}/{session.total_chunks} chunks, idle {idle:.1f}s)"
            )
            self.publisher.publish(events.session_expired(
                session.session_id, idle, session.received_chunks, session.total_chunks
            ))
        return [session.session_id for session, _ in expired]

    def stats(self) -> Dict[str, Any]:
        return {
            "active_transfers": len(self._sessions),
            "reconstructed_files": len(self._artifacts),
            "connected_clients": self.publisher.subscriber_count,
            "published_events": self.publisher.published,
            "retention_limit": self.retention_limit,
        }

    async def _get_session(self, session_id: str) -> TransferSession:
        async with self.lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Transfer {session_id} not found", session_id=session_id)
        return session

    async def _is_tracked(self, session: TransferSession) -> bool:
        async with self.lock:
            return self._sessions.get(session.session_id) is session

    def _apply_method_switch(
        self,
        session: TransferSession,
        new_method: str,
        chunk_count: Optional[int] = None,
    ) -> None:
        old_method = session.transfer_method
        switch = session.switch_method(new_method, chunk_count=chunk_count)
        if switch is None:
            return
        logger.info(
            f"Switched {old_method.upper()} -> {new_method.upper()} for {session.file_name} "
            f"({session.received_chunks}/{session.total_chunks} chunks)"
        )
        self.publisher.publish(events.transfer_method_switched(
            session.session_id, old_method, new_method, session.file_name, session.progress
        ))

    async def _reconstruct(self, session: TransferSession) -> Optional[ReconstructedArtifact]:
        """
        Run reassembly for a complete session. Caller holds session.lock.

        Returns:
            The stored artifact, or None if the session failed
        """
        session.begin_reconstruction()
        logger.info(f"Reconstructing file {session.file_name} ({session.session_id})...")
        self.publisher.publish(events.reconstruction_started(session.session_id, session.file_name))

        loop = asyncio.get_running_loop()
        try:
            artifact = await loop.run_in_executor(None, self.reassembler.reconstruct, session)
        except Exception as e:
            self._fail(session, str(e))
            logger.error(f"Error reconstructing file {session.file_name}: {e}", exc_info=True)
            return None

        async with self.lock:
            tracked = self._sessions.get(session.session_id) is session
            if tracked:
                evicted = self._artifacts[-1] if len(self._artifacts) == self.retention_limit else None
                self._artifacts.appendleft(artifact)
                del self._sessions[session.session_id]

        if not tracked:
            self._fail(session, "Registry reset during reconstruction")
            logger.warning(f"Discarded reassembled file {session.session_id}: registry was reset")
            return None

        if evicted is not None:
            logger.info(f"Evicted oldest retained file {evicted.session_id} ({evicted.file_name})")

        session.mark_completed()
        logger.info(
            f"File {artifact.file_name} reconstructed successfully "
            f"({artifact.size} bytes, hash {artifact.content_hash[:16]}..., {artifact.elapsed_ms} ms)"
        )
        self.publisher.publish(events.reconstruction_completed(artifact.summary()))
        return artifact

    def _fail(self, session: TransferSession, reason: str) -> None:
        session.mark_failed(reason)
        self.publisher.publish(events.reconstruction_failed(session.session_id, reason))

    @staticmethod
    def _receipt(
        session: TransferSession,
        chunk_index: int,
        duplicate: bool = False,
        content_hash: Optional[str] = None,
    ) -> ChunkReceipt:
        return ChunkReceipt(
            session_id=session.session_id,
            chunk_index=chunk_index,
            received_chunks=session.received_chunks,
            total_chunks=session.total_chunks,
            duplicate=duplicate,
            status=session.status,
            content_hash=content_hash,
        )
