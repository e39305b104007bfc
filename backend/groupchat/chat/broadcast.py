"""Broadcast routing: group, global and unicast delivery to connections.

Every connection gets its own outbox (a bounded ``asyncio.Queue``) drained
by a dedicated writer task, so:

    - enqueueing never blocks the caller; business logic does not wait on I/O
    - events reach each connection in the order they were enqueued, which
      keeps per-group ordering intact
    - a slow or dead connection only fills its own outbox; when a send fails,
      times out, or the outbox overflows, that connection is dropped and
      everyone else keeps receiving
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from .sessions import SessionRegistry

logger = logging.getLogger(__name__)

Transport = Callable[[dict], Awaitable[None]]
CloseCallback = Callable[[], Awaitable[None]]

# Default per-connection outbox capacity
DEFAULT_OUTBOX_SIZE = 256


@dataclass
class _Outbox:
    queue: asyncio.Queue
    task: "asyncio.Task[None]"
    on_failure: Optional[CloseCallback]
    loop: asyncio.AbstractEventLoop


class BroadcastRouter:
    """Maps "deliver event E to group G" onto live connections."""

    def __init__(
        self,
        sessions: SessionRegistry,
        send_timeout: float = 5.0,
        outbox_size: int = DEFAULT_OUTBOX_SIZE,
    ) -> None:
        self._sessions = sessions
        self._send_timeout = send_timeout
        self._outbox_size = outbox_size
        self._outboxes: Dict[str, _Outbox] = {}

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def attach(
        self,
        connection_id: str,
        transport: Transport,
        on_failure: Optional[CloseCallback] = None,
    ) -> None:
        """Register a connection's send primitive. Must run inside the event loop."""
        self.detach(connection_id)
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._outbox_size)
        task = loop.create_task(self._pump(connection_id, queue, transport))
        self._outboxes[connection_id] = _Outbox(
            queue=queue, task=task, on_failure=on_failure, loop=loop
        )

    def detach(self, connection_id: str) -> None:
        outbox = self._outboxes.pop(connection_id, None)
        if outbox is not None:
            self._discard_pending(outbox.queue)
            outbox.task.cancel()

    def is_attached(self, connection_id: str) -> bool:
        return connection_id in self._outboxes

    async def _pump(self, connection_id: str, queue: asyncio.Queue, transport: Transport) -> None:
        while True:
            event = await queue.get()
            try:
                await asyncio.wait_for(transport(event), timeout=self._send_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.info("[Broadcast] Send to %s failed (%r); dropping connection", connection_id, e)
                self._fail(connection_id)
                return
            finally:
                queue.task_done()

    @staticmethod
    def _discard_pending(queue: asyncio.Queue) -> None:
        # Unblock anyone waiting in drain()
        while not queue.empty():
            queue.get_nowait()
            queue.task_done()

    def _fail(self, connection_id: str) -> None:
        outbox = self._outboxes.pop(connection_id, None)
        if outbox is None:
            return
        self._discard_pending(outbox.queue)
        if outbox.task is not asyncio.current_task():
            outbox.task.cancel()
        if outbox.on_failure is not None:
            outbox.loop.create_task(self._close_quietly(connection_id, outbox.on_failure))

    @staticmethod
    async def _close_quietly(connection_id: str, close: CloseCallback) -> None:
        try:
            await close()
        except Exception as e:
            logger.debug("[Broadcast] Closing %s failed: %s", connection_id, e)

    # =========================================================================
    # Delivery
    # =========================================================================

    @staticmethod
    def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
        try:
            return asyncio.get_running_loop() is loop
        except RuntimeError:
            return False

    def _put(self, connection_id: str, event: dict) -> None:
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            return
        try:
            outbox.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("[Broadcast] Outbox full for %s; dropping slow consumer", connection_id)
            self._fail(connection_id)

    def _enqueue(self, connection_ids: Iterable[str], event: dict) -> int:
        queued = 0
        for connection_id in connection_ids:
            outbox = self._outboxes.get(connection_id)
            if outbox is None:
                continue
            if self._on_loop(outbox.loop):
                self._put(connection_id, event)
            else:
                # Called from another thread or event loop
                outbox.loop.call_soon_threadsafe(self._put, connection_id, event)
            queued += 1
        return queued

    def to_group(self, group_id: str, event: dict, exclude: Optional[str] = None) -> int:
        """Deliver to every connection subscribed to ``group_id``.

        Returns:
            Number of connections the event was queued for.
        """
        targets = [c for c in self._sessions.subscribers(group_id) if c != exclude]
        return self._enqueue(targets, event)

    def to_all(self, event: dict) -> int:
        """Deliver to every authenticated connection."""
        return self._enqueue(self._sessions.authenticated_connections(), event)

    def to_connection(self, connection_id: str, event: dict) -> int:
        return self._enqueue([connection_id], event)

    def to_connections(self, connection_ids: List[str], event: dict) -> int:
        return self._enqueue(connection_ids, event)

    async def drain(self) -> None:
        """Wait until every queued event has been handed to its transport."""
        await asyncio.gather(
            *[outbox.queue.join() for outbox in list(self._outboxes.values())]
        )

    async def close(self) -> None:
        """Cancel every writer task (shutdown)."""
        tasks = [outbox.task for outbox in self._outboxes.values()]
        self._outboxes.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
