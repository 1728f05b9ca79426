"""
Outbound message queue for the realtime client.

Messages emitted while the transport is not ready are buffered here, already
encoded, and flushed in order once the connection opens.
"""

from collections import deque
from dataclasses import dataclass

from ..exceptions import TransportError
from ..structured_logging.enhanced_logging_config import get_logger
from .transport import TransportConnection

logger = get_logger(__name__)


@dataclass(frozen=True)
class QueuedMessage:
    """A buffered outbound application message."""

    event: str
    channel: str | None
    payload: str


class MessageQueue:
    """
    Bounded FIFO of outbound messages.

    When full, enqueueing evicts the oldest message so the newest
    max_queue_size messages are always retained.
    """

    def __init__(self, max_queue_size: int = 100) -> None:
        """
        Initialize the message queue.

        Args:
            max_queue_size: Maximum number of buffered messages
        """
        self.max_queue_size = max_queue_size
        self._queue: deque[QueuedMessage] = deque()
        self.dropped_count = 0

    def enqueue(self, message: QueuedMessage) -> None:
        """Buffer a message, evicting the oldest one if the queue is full."""
        if len(self._queue) >= self.max_queue_size:
            dropped = self._queue.popleft()
            self.dropped_count += 1
            logger.warning(
                "Message queue full, dropping oldest message",
                dropped_event=dropped.event,
                max_queue_size=self.max_queue_size,
            )
        self._queue.append(message)
        logger.debug("Message queued", event_name=message.event, queue_size=len(self._queue))

    async def flush(self, connection: TransportConnection) -> int:
        """
        Send buffered messages in order while the connection stays open.

        A send failure stops the flush; the failed message goes back to the
        head of the queue so nothing is lost or reordered.

        Returns:
            Number of messages sent
        """
        sent = 0
        while self._queue and connection.is_open:
            message = self._queue.popleft()
            try:
                await connection.send(message.payload)
            except TransportError as e:
                self._queue.appendleft(message)
                logger.warning(
                    "Queue flush interrupted by send failure",
                    sent=sent,
                    remaining=len(self._queue),
                    error=str(e),
                )
                break
            sent += 1

        if sent:
            logger.debug("Message queue flushed", sent=sent, remaining=len(self._queue))
        return sent

    def snapshot(self) -> list[QueuedMessage]:
        return list(self._queue)

    def clear(self) -> None:
        self._queue.clear()

    def __len__(self) -> int:
        return len(self._queue)
