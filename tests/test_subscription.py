"""EventSubscription tests.

Notifications are fed through handle_message directly, and the connection
loop runs against an in-process fake WebSocket.
"""

import asyncio
import json
from contextlib import asynccontextmanager

import pytest
from fakes import OWNER_A, OWNER_B, as_json_rpc, registration_log, transfer_log

from asset_registry.services.blockchain import subscription as subscription_module
from asset_registry.services.blockchain.chain_reader import EventKind
from asset_registry.services.blockchain.subscription import EventSubscription
from asset_registry.services.exceptions import StoreWriteFailure

WS_URL = "wss://node.example/ws"
CONTRACT = "0x5fbdb2315678afecb367f032d93f642f64180aa3"


def notification(log: dict, subscription_id: str = "0xsub") -> dict:
    return {
        "jsonrpc": "2.0",
        "method": "eth_subscription",
        "params": {"subscription": subscription_id, "result": log},
    }


class CollectingSink:
    def __init__(self, fail: bool = False):
        self.records = []
        self.fail = fail

    async def receive(self, record):
        if self.fail:
            raise StoreWriteFailure("database unavailable")
        self.records.append(record)


class FakeWebSocket:
    """Answers eth_subscribe, then replays queued notifications."""

    def __init__(self, notifications: list[dict]):
        self.sent: list[dict] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.notifications = notifications

    async def send(self, message: str) -> None:
        request = json.loads(message)
        self.sent.append(request)
        if request["method"] == "eth_subscribe":
            await self.incoming.put({"jsonrpc": "2.0", "id": request["id"], "result": "0xsub"})
            for item in self.notifications:
                await self.incoming.put(item)

    async def recv(self) -> str:
        return json.dumps(await self.incoming.get())


@pytest.fixture
def subscription():
    return EventSubscription(
        WS_URL, CONTRACT, reconnect_delay=0.01, max_reconnect_delay=0.05, recv_poll_seconds=0.01
    )


def test_subscribe_request_filters_contract_and_both_topics(subscription):
    request = subscription.subscribe_request()

    assert request["method"] == "eth_subscribe"
    kind, log_filter = request["params"]
    assert kind == "logs"
    assert log_filter["address"].lower() == CONTRACT
    assert log_filter["topics"] == [[EventKind.REGISTRATION.topic, EventKind.TRANSFER.topic]]


@pytest.mark.asyncio
class TestHandleMessage:
    async def test_registration_forwarded_to_sink(self, subscription):
        sink = CollectingSink()
        raw = as_json_rpc(registration_log(7, OWNER_A, block_number=200))

        record = await subscription.handle_message(notification(raw), sink)

        assert record is not None
        assert sink.records == [record]
        assert record.asset_id == 7
        assert record.owner == OWNER_A.lower()
        assert record.block_timestamp is None

    async def test_transfer_forwarded_to_sink(self, subscription):
        sink = CollectingSink()
        raw = as_json_rpc(transfer_log(7, OWNER_A, OWNER_B, block_number=201))

        record = await subscription.handle_message(notification(raw), sink)

        assert record.new_owner == OWNER_B.lower()

    async def test_removed_log_ignored(self, subscription):
        sink = CollectingSink()
        raw = as_json_rpc(registration_log(7, OWNER_A))
        raw["removed"] = True

        assert await subscription.handle_message(notification(raw), sink) is None
        assert sink.records == []

    async def test_malformed_log_ignored(self, subscription):
        sink = CollectingSink()
        raw = as_json_rpc(registration_log(7, OWNER_A))
        raw["data"] = "0x1234"

        assert await subscription.handle_message(notification(raw), sink) is None
        assert sink.records == []

    async def test_odd_length_hex_data_ignored(self, subscription):
        sink = CollectingSink()
        raw = as_json_rpc(registration_log(7, OWNER_A, block_number=3))
        raw["data"] += "f"

        assert await subscription.handle_message(notification(raw), sink) is None
        assert sink.records == []

        valid = as_json_rpc(registration_log(8, OWNER_A, block_number=4))
        assert await subscription.handle_message(notification(valid), sink) is not None
        assert [r.asset_id for r in sink.records] == [8]

    async def test_write_failure_does_not_raise(self, subscription):
        sink = CollectingSink(fail=True)
        raw = as_json_rpc(registration_log(7, OWNER_A))

        assert await subscription.handle_message(notification(raw), sink) is None

    async def test_non_notification_messages_ignored(self, subscription):
        sink = CollectingSink()

        assert await subscription.handle_message({"jsonrpc": "2.0", "id": 3, "result": True}, sink) is None
        assert (
            await subscription.handle_message(
                {"jsonrpc": "2.0", "id": 4, "error": {"code": -32000, "message": "x"}}, sink
            )
            is None
        )
        assert sink.records == []


@pytest.mark.asyncio
class TestRunLoop:
    async def test_streams_until_stopped_then_unsubscribes(self, subscription, monkeypatch):
        ws = FakeWebSocket(
            [
                notification(as_json_rpc(registration_log(7, OWNER_A, block_number=300))),
                notification(as_json_rpc(transfer_log(7, OWNER_A, OWNER_B, block_number=301))),
            ]
        )

        @asynccontextmanager
        async def fake_connect(url, **kwargs):
            assert url == WS_URL
            yield ws

        monkeypatch.setattr(subscription_module.websockets, "connect", fake_connect)
        sink = CollectingSink()
        stop_event = asyncio.Event()

        task = asyncio.create_task(subscription.run(sink, stop_event))
        await asyncio.sleep(0.05)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1)

        assert [r.block_number for r in sink.records] == [300, 301]
        assert [m["method"] for m in ws.sent] == ["eth_subscribe", "eth_unsubscribe"]
        assert ws.sent[1]["params"] == ["0xsub"]

    async def test_reconnects_after_connection_failure(self, subscription, monkeypatch):
        attempts = []
        ws = FakeWebSocket([notification(as_json_rpc(registration_log(9, OWNER_B)))])

        @asynccontextmanager
        async def flaky_connect(url, **kwargs):
            attempts.append(url)
            if len(attempts) < 3:
                raise OSError("connection refused")
            yield ws

        monkeypatch.setattr(subscription_module.websockets, "connect", flaky_connect)
        sink = CollectingSink()
        stop_event = asyncio.Event()

        task = asyncio.create_task(subscription.run(sink, stop_event))
        for _ in range(100):
            if sink.records:
                break
            await asyncio.sleep(0.01)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1)

        assert len(attempts) == 3
        assert [r.asset_id for r in sink.records] == [9]
