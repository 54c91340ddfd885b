"""
Layout notifications over WebSocket.

Every connected client gets a `layout_updated` message tagged with the
service generation whenever the manager publishes or drops a layout.
"""
import logging

from fastapi import WebSocket, WebSocketDisconnect


logger = logging.getLogger(__name__)


class WebSocketManager:
    """Pool of connected clients receiving layout notifications."""

    def __init__(self):
        self._connections: set[WebSocket] = set()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self._connections.add(websocket)
        logger.info(f"Client connected ({self.connection_count} open)")

    def disconnect(self, websocket: WebSocket):
        self._connections.discard(websocket)
        logger.info(f"Client disconnected ({self.connection_count} open)")

    async def notify_layout_updated(self, generation: int, has_layout: bool):
        """
        Tell every client to refetch GET /api/layout.

        Clients that fail to receive are dropped from the pool.
        """
        message = {"type": "layout_updated", "generation": generation, "has_layout": has_layout}
        for websocket in list(self._connections):
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.debug(f"Dropping client after failed send: {e}")
                self._connections.discard(websocket)


ws_manager = WebSocketManager()
