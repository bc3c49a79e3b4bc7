import pytest

from services.websocket_progress import WebSocketProgressManager


class StubWebSocket:
    def __init__(self, fail_on_send: bool = False) -> None:
        self.accepted = False
        self.closed = False
        self.fail_on_send = fail_on_send
        self.sent_messages = []

    async def accept(self) -> None:
        self.accepted = True

    async def close(self) -> None:
        self.closed = True

    async def send_json(self, message: dict) -> None:
        if self.fail_on_send:
            raise RuntimeError("socket closed")
        self.sent_messages.append(message)


@pytest.mark.asyncio
async def test_publish_reaches_only_batch_subscribers() -> None:
    manager = WebSocketProgressManager()
    websocket = StubWebSocket()

    client_id = await manager.connect(websocket, "client-test")
    assert websocket.accepted is True

    assert await manager.subscribe(client_id, "batch-existing") is None

    assert await manager.publish("batch-other", {"batch_id": "batch-other"}) == 0
    assert websocket.sent_messages == []

    assert await manager.publish("batch-existing", {"batch_id": "batch-existing"}) == 1
    assert websocket.sent_messages == [{"batch_id": "batch-existing"}]

    await manager.disconnect(client_id)
    assert websocket.closed is True


@pytest.mark.asyncio
async def test_subscribe_returns_latest_event() -> None:
    manager = WebSocketProgressManager()
    await manager.publish("batch-1", {"batch_id": "batch-1", "batch_status": "running"})

    client_id = await manager.connect(StubWebSocket())
    latest = await manager.subscribe(client_id, "batch-1")

    assert latest == {"batch_id": "batch-1", "batch_status": "running"}
    assert manager.last_event("batch-1") == latest
    assert manager.last_event("batch-2") is None


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery() -> None:
    manager = WebSocketProgressManager()
    websocket = StubWebSocket()
    client_id = await manager.connect(websocket, None)
    await manager.subscribe(client_id, "batch-a")
    await manager.subscribe(client_id, "batch-b")

    await manager.unsubscribe(client_id, "batch-a")
    await manager.publish("batch-a", {"batch_id": "batch-a"})
    await manager.publish("batch-b", {"batch_id": "batch-b"})
    assert websocket.sent_messages == [{"batch_id": "batch-b"}]

    await manager.unsubscribe(client_id)
    await manager.publish("batch-b", {"batch_id": "batch-b"})
    assert len(websocket.sent_messages) == 1


@pytest.mark.asyncio
async def test_subscribe_requires_connection() -> None:
    manager = WebSocketProgressManager()
    with pytest.raises(RuntimeError):
        await manager.subscribe("ghost", "batch-1")


@pytest.mark.asyncio
async def test_failed_send_drops_client() -> None:
    manager = WebSocketProgressManager()
    broken = StubWebSocket(fail_on_send=True)
    healthy = StubWebSocket()
    broken_id = await manager.connect(broken)
    healthy_id = await manager.connect(healthy)
    await manager.subscribe(broken_id, "batch-1")
    await manager.subscribe(healthy_id, "batch-1")

    assert await manager.publish("batch-1", {"batch_id": "batch-1"}) == 1
    assert broken.closed is True
    assert healthy.sent_messages == [{"batch_id": "batch-1"}]

    assert await manager.publish("batch-1", {"batch_id": "batch-1"}) == 1


@pytest.mark.asyncio
async def test_reset_closes_everything() -> None:
    manager = WebSocketProgressManager()
    websocket = StubWebSocket()
    client_id = await manager.connect(websocket)
    await manager.subscribe(client_id, "batch-1")
    await manager.publish("batch-1", {"batch_id": "batch-1"})

    await manager.reset()

    assert websocket.closed is True
    assert manager.last_event("batch-1") is None
    assert await manager.publish("batch-1", {"batch_id": "batch-1"}) == 0
