import pytest

from firewatch.websocket import ConnectionManager


class FakeWebSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


@pytest.fixture
async def manager():
    mgr = ConnectionManager(flush_interval=60)
    yield mgr
    await mgr.close()


async def test_alerts_are_sent_immediately(manager):
    ws = FakeWebSocket()
    await manager.connect(ws)

    await manager.broadcast({"type": "alert", "id": 1})
    await manager.broadcast({"type": "market_status", "market_id": 1, "status": "Fire"})

    assert ws.accepted
    assert [m["type"] for m in ws.sent] == ["alert", "market_status"]


async def test_reception_messages_are_batched(manager):
    ws = FakeWebSocket()
    await manager.connect(ws)

    await manager.broadcast({"type": "reception", "receiver_id": "001A", "repeater_id": "01", "seq": 1})
    await manager.broadcast({"type": "reception", "receiver_id": "001A", "repeater_id": "01", "seq": 2})
    await manager.broadcast({"type": "reception", "receiver_id": "001A", "repeater_id": "02", "seq": 3})
    assert ws.sent == []

    await manager.flush()

    (batch,) = ws.sent
    assert batch["type"] == "batch_update"
    assert sorted(m["seq"] for m in batch["data"]) == [2, 3]

    await manager.flush()
    assert len(ws.sent) == 1


async def test_failed_connection_is_dropped(manager):
    good, bad = FakeWebSocket(), FakeWebSocket(fail=True)
    await manager.connect(good)
    await manager.connect(bad)

    await manager.broadcast({"type": "alert", "id": 1})

    assert manager.active_connections == [good]
    assert manager.sent_counts["alert"] == 1
