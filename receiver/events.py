"""
Typed transfer events and their fan-out publisher.

The registry emits events; any number of subscribers drain their own
bounded queue. Publishing never waits on a subscriber: a full queue
drops the event for that subscriber only.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from common.constants import HASH_PREFIX_LENGTH
from common.logging_config import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    SESSION_STARTED = "SESSION_STARTED"
    CHUNK_ACCEPTED = "CHUNK_ACCEPTED"
    RECONSTRUCTION_STARTED = "RECONSTRUCTION_STARTED"
    RECONSTRUCTION_COMPLETED = "RECONSTRUCTION_COMPLETED"
    RECONSTRUCTION_FAILED = "RECONSTRUCTION_FAILED"
    REGISTRY_RESET = "REGISTRY_RESET"
    TRANSFER_METHOD_SWITCHED = "TRANSFER_METHOD_SWITCHED"
    SESSION_EXPIRED = "SESSION_EXPIRED"


@dataclass(frozen=True)
class TransferEvent:
    """
    A single notification. Payloads hold ids, counts and hashes only.
    """
    type: EventType
    session_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "file_id": self.session_id,
            "timestamp": self.timestamp,
            **self.payload,
        }


def session_started(summary: Dict[str, Any]) -> TransferEvent:
    return TransferEvent(EventType.SESSION_STARTED, summary["file_id"], {"transfer": summary})


def chunk_accepted(
    session_id: str,
    chunk_index: int,
    chunk_hash: str,
    received_chunks: int,
    total_chunks: int,
    file_name: str,
    transfer_method: str,
) -> TransferEvent:
    return TransferEvent(EventType.CHUNK_ACCEPTED, session_id, {
        "chunk_index": chunk_index,
        "chunk_hash": chunk_hash[:HASH_PREFIX_LENGTH],
        "received_chunks": received_chunks,
        "total_chunks": total_chunks,
        "file_name": file_name,
        "transfer_method": transfer_method,
    })


def reconstruction_started(session_id: str, file_name: str) -> TransferEvent:
    return TransferEvent(EventType.RECONSTRUCTION_STARTED, session_id, {"file_name": file_name})


def reconstruction_completed(artifact_summary: Dict[str, Any]) -> TransferEvent:
    return TransferEvent(
        EventType.RECONSTRUCTION_COMPLETED,
        artifact_summary["file_id"],
        {"file": artifact_summary}
    )


def reconstruction_failed(session_id: str, reason: str) -> TransferEvent:
    return TransferEvent(EventType.RECONSTRUCTION_FAILED, session_id, {"error": reason})


def registry_reset(cleared_sessions: int, cleared_artifacts: int) -> TransferEvent:
    return TransferEvent(EventType.REGISTRY_RESET, None, {
        "cleared_transfers": cleared_sessions,
        "cleared_files": cleared_artifacts,
    })


def transfer_method_switched(
    session_id: str,
    old_method: str,
    new_method: str,
    file_name: str,
    progress: float,
) -> TransferEvent:
    return TransferEvent(EventType.TRANSFER_METHOD_SWITCHED, session_id, {
        "old_method": old_method,
        "new_method": new_method,
        "file_name": file_name,
        "progress": progress,
    })


def session_expired(session_id: str, idle_seconds: float, received_chunks: int, total_chunks: int) -> TransferEvent:
    return TransferEvent(EventType.SESSION_EXPIRED, session_id, {
        "idle_seconds": round(idle_seconds, 3),
        "received_chunks": received_chunks,
        "total_chunks": total_chunks,
    })


class Subscription:
    """
    One consumer's view of the event stream.

    Usable as an async iterator or an async context manager; ``close``
    detaches it from the publisher.
    """

    def __init__(self, publisher: "EventPublisher", max_queue_size: int):
        self._publisher = publisher
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self.dropped = 0
        self.closed = False

    def offer(self, event: TransferEvent) -> bool:
        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False

    async def get(self) -> TransferEvent:
        return await self.queue.get()

    def drain(self) -> List[TransferEvent]:
        """Return every event currently queued without waiting."""
        events = []
        while True:
            try:
                events.append(self.queue.get_nowait())
            except asyncio.QueueEmpty:
                return events

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._publisher.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> TransferEvent:
        if self.closed:
            raise StopAsyncIteration
        return await self.queue.get()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class EventPublisher:
    """
    Fire-and-forget fan-out of TransferEvents.
    """

    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self._subscribers: List[Subscription] = []
        self.published = 0

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self.max_queue_size)
        self._subscribers.append(subscription)
        logger.debug(f"Subscriber attached ({len(self._subscribers)} active)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
            logger.debug(f"Subscriber detached ({len(self._subscribers)} active)")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: TransferEvent) -> int:
        """
        Offer an event to every subscriber.

        Returns:
            Number of subscribers that queued the event
        """
        self.published += 1
        delivered = 0
        for subscription in list(self._subscribers):
            if subscription.offer(event):
                delivered += 1
            else:
                logger.debug(
                    f"Subscriber queue full, dropped {event.type.value} "
                    f"for {event.session_id} ({subscription.dropped} dropped so far)"
                )
        return delivered
