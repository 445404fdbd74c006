import asyncio
import logging
from typing import Any, Callable, Dict, Set

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from starlette.concurrency import run_in_threadpool

from .errors import TransitError
from .live import LiveQuery

logger = logging.getLogger(__name__)


class WebSocketManager:
    """
    Streams live query snapshots to websocket viewers.
    channel -> Set of WebSocket connections
    """

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, channel: str):
        """Accept a viewer and register it on a channel"""
        await websocket.accept()
        self.active_connections.setdefault(channel, set()).add(websocket)
        logger.info("WebSocket connected on %s. Total connections: %d", channel, self.get_connection_count(channel))

    def disconnect(self, websocket: WebSocket, channel: str):
        """Remove a WebSocket connection"""
        if channel in self.active_connections:
            self.active_connections[channel].discard(websocket)
            if len(self.active_connections[channel]) == 0:
                del self.active_connections[channel]
        logger.info("WebSocket disconnected from %s", channel)

    def get_connection_count(self, channel: str) -> int:
        """Get number of connected viewers on a channel"""
        return len(self.active_connections.get(channel, set()))

    async def stream(self, websocket: WebSocket, channel: str, query: LiveQuery) -> None:
        """
        Push every snapshot of ``query`` to the viewer until it goes away.
        Snapshots are full state; the client replaces what it shows.
        """
        await self.connect(websocket, channel)
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        # Writers publish from worker threads
        def _on_snapshot(snapshot: Any) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, {"type": "snapshot", "channel": channel, "data": snapshot})

        def _on_error(exc: Exception) -> None:
            detail = exc.message if isinstance(exc, TransitError) else "Live update failed"
            loop.call_soon_threadsafe(queue.put_nowait, {"type": "error", "channel": channel, "detail": detail})

        # Recomputes run in the loop's executor, never on the writer's thread
        def _schedule(refresh: Callable[[], None]) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(loop.run_in_executor, None, refresh)

        subscription = await run_in_threadpool(query.subscribe, _on_snapshot, on_error=_on_error, schedule=_schedule)
        sender = asyncio.create_task(self._send_loop(websocket, queue))
        receiver = asyncio.create_task(self._receive_loop(websocket))
        try:
            done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.warning("WebSocket error on %s: %s", channel, exc)
        finally:
            subscription.cancel()
            self.disconnect(websocket, channel)

    async def _send_loop(self, websocket: WebSocket, queue: asyncio.Queue) -> None:
        while True:
            message = await queue.get()
            await websocket.send_json(jsonable_encoder(message))

    async def _receive_loop(self, websocket: WebSocket) -> None:
        # Keep connection alive and answer pings
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")


# Global WebSocket manager instance
websocket_manager = WebSocketManager()
