"""WebSocket progress manager for real-time batch updates."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Dict, Set, Tuple
from uuid import uuid4

from fastapi import WebSocket

from shared.utils import setup_logging

logger = setup_logging("websocket-progress")


class WebSocketProgressManager:
    """Track WebSocket connections and batch subscriptions."""

    def __init__(self) -> None:
        self._connections: Dict[str, WebSocket] = {}
        self._batch_subscriptions: Dict[str, Set[str]] = defaultdict(set)
        self._client_batches: Dict[str, Set[str]] = defaultdict(set)
        self._last_events: Dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, client_id: str | None = None) -> str:
        """Accept the socket and return the id it is registered under."""
        client_key = client_id or str(uuid4())
        await websocket.accept()
        async with self._lock:
            self._connections[client_key] = websocket
        return client_key

    async def disconnect(self, client_id: str) -> None:
        """Forget a client and close its socket if it is still open."""
        async with self._lock:
            websocket = self._connections.pop(client_id, None)
            self._drop_subscriptions(client_id, list(self._client_batches.pop(client_id, set())))
        if websocket:
            try:
                await websocket.close()
            except RuntimeError:
                logger.debug(f"Connection {client_id} was already closed")

    async def subscribe(self, client_id: str, batch_id: str) -> dict[str, Any] | None:
        """Subscribe a client to a batch. Returns the latest known event for it."""
        async with self._lock:
            if client_id not in self._connections:
                raise RuntimeError("Client not connected")
            self._batch_subscriptions[batch_id].add(client_id)
            self._client_batches[client_id].add(batch_id)
            return self._last_events.get(batch_id)

    async def unsubscribe(self, client_id: str, batch_id: str | None = None) -> None:
        """Unsubscribe a client from a batch or from all batches."""
        async with self._lock:
            if client_id not in self._connections:
                return

            if batch_id is None:
                batch_ids = list(self._client_batches.get(client_id, set()))
            else:
                batch_ids = [batch_id]

            self._drop_subscriptions(client_id, batch_ids)
            if batch_id is None:
                self._client_batches.pop(client_id, None)
            else:
                self._client_batches.get(client_id, set()).discard(batch_id)

    async def publish(self, batch_id: str, event: dict[str, Any]) -> int:
        """Send a progress event to all subscribers of a batch. Returns the delivery count."""
        recipients: list[Tuple[str, WebSocket]] = []
        async with self._lock:
            self._last_events[batch_id] = event
            for client_id in list(self._batch_subscriptions.get(batch_id, set())):
                websocket = self._connections.get(client_id)
                if websocket:
                    recipients.append((client_id, websocket))

        delivered = 0
        for client_id, websocket in recipients:
            try:
                await websocket.send_json(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping client {client_id}: {e}")
                await self.disconnect(client_id)
        return delivered

    def last_event(self, batch_id: str) -> dict[str, Any] | None:
        return self._last_events.get(batch_id)

    def _drop_subscriptions(self, client_id: str, batch_ids: list[str]) -> None:
        # Caller holds the lock
        for batch_id in batch_ids:
            subscribers = self._batch_subscriptions.get(batch_id)
            if subscribers:
                subscribers.discard(client_id)
                if not subscribers:
                    self._batch_subscriptions.pop(batch_id, None)

    async def reset(self) -> None:
        """Close every socket and forget all state."""
        async with self._lock:
            connections = list(self._connections.items())
            self._connections.clear()
            self._batch_subscriptions.clear()
            self._client_batches.clear()
            self._last_events.clear()

        for client_id, websocket in connections:
            try:
                await websocket.close()
            except RuntimeError:
                logger.debug(f"Connection {client_id} was already closed")


# Process-wide instance used by the API and the worker
websocket_manager = WebSocketProgressManager()
