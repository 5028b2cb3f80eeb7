"""Tests for the session store."""
import asyncio
import uuid
from datetime import datetime, timezone

import pytest
from tortoise.exceptions import DBConnectionError

from felis.orm.store import EventRecord, SessionDraft, SessionStore
from felis.utils.enums import AppendStatus, HealthStatus, SessionOrigin, SessionState
from felis.utils.errors import InvalidPayload, StorageUnavailable


START = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


async def new_session(store: SessionStore, device: dict, setup: str = "reaction-test-pilot") -> str:
    return await store.create_session(
        setup_info=setup,
        device=device,
        user_agent="pytest",
        location=None,
        client_start_time=START,
    )


def batch(*specs) -> list:
    return [EventRecord(timestamp=ts, event_type=kind, data=data) for ts, kind, data in specs]


async def test_create_returns_unique_ids(store, device):
    ids = {await new_session(store, device) for _ in range(5)}
    assert len(ids) == 5
    for sid in ids:
        receipt = await store.append_events(sid, batch((1, "Ping", {})))
        assert receipt.status == AppendStatus.ACKNOWLEDGED


async def test_new_session_is_open_and_empty(store, device):
    sid = await new_session(store, device)
    record = await store.get_session(sid)
    assert record.events == []
    assert record.state == SessionState.OPEN
    assert record.origin == SessionOrigin.INCREMENTAL
    assert record.device == device
    assert record.received_at is not None


async def test_create_rejects_missing_fields(store, device):
    with pytest.raises(InvalidPayload):
        await store.create_session(
            setup_info="x", device=None, user_agent="ua", location=None, client_start_time=START
        )
    with pytest.raises(InvalidPayload):
        await store.create_session(
            setup_info="   ", device=device, user_agent="ua", location=None, client_start_time=START
        )


async def test_empty_batch_is_acknowledged_noop(store, device):
    sid = await new_session(store, device)
    await store.append_events(sid, batch((5, "A", {})))

    receipt = await store.append_events(sid, [])
    assert receipt.status == AppendStatus.ACKNOWLEDGED
    assert receipt.appended == 0

    record = await store.get_session(sid)
    assert [e.event_type for e in record.events] == ["A"]


async def test_unknown_session_is_not_found(store, device):
    await new_session(store, device)
    assert (await store.append_events(str(uuid.uuid4()), batch((1, "A", {})))).status == AppendStatus.NOT_FOUND
    assert (await store.append_events("not-a-uuid", [])).status == AppendStatus.NOT_FOUND
    assert await store.get_session("not-a-uuid") is None


async def test_retried_batch_is_stored_twice_in_order(store, device):
    sid = await new_session(store, device)
    events = batch((10, "A", {"n": 1}), (20, "B", {"n": 2}), (30, "C", {"n": 3}))

    assert (await store.append_events(sid, events)).status == AppendStatus.ACKNOWLEDGED
    assert (await store.append_events(sid, events)).status == AppendStatus.ACKNOWLEDGED

    record = await store.get_session(sid)
    assert [e.event_type for e in record.events] == ["A", "B", "C", "A", "B", "C"]


async def test_sequential_batches_keep_order(store, device):
    sid = await new_session(store, device)
    await store.append_events(sid, batch((500, "First", {}), (900, "Second", {})))
    # offsets going backwards across batches are accepted verbatim
    await store.append_events(sid, batch((100, "Third", {})))

    record = await store.get_session(sid)
    assert [(e.timestamp, e.event_type) for e in record.events] == [
        (500, "First"), (900, "Second"), (100, "Third")
    ]


async def test_reaction_pilot_scenario(store, device):
    sid = await new_session(store, device)
    first = batch(
        (120, "TargetSpawned", {"x": 400, "y": 300}),
        (950, "TargetHit", {"x": 402, "y": 305}),
    )
    assert (await store.append_events(sid, first)).status == AppendStatus.ACKNOWLEDGED
    assert (await store.append_events(sid, batch((2000, "TestEnd", {})))).status == AppendStatus.ACKNOWLEDGED

    record = await store.get_session(sid)
    assert record.events == [
        EventRecord(120, "TargetSpawned", {"x": 400, "y": 300}),
        EventRecord(950, "TargetHit", {"x": 402, "y": 305}),
        EventRecord(2000, "TestEnd", {}),
    ]


async def test_concurrent_batches_do_not_interleave(store, device):
    sid = await new_session(store, device)
    a = batch(*[(i, "A", {"i": i}) for i in range(40)])
    b = batch(*[(i, "B", {"i": i}) for i in range(40)])

    results = await asyncio.gather(store.append_events(sid, a), store.append_events(sid, b))
    assert all(r.status == AppendStatus.ACKNOWLEDGED for r in results)

    kinds = "".join(e.event_type for e in (await store.get_session(sid)).events)
    assert kinds in ("A" * 40 + "B" * 40, "B" * 40 + "A" * 40)


async def test_payload_is_opaque(store, device):
    sid = await new_session(store, device)
    payloads = ["plain text", "123", 42, 1.5, None, [1, "two", {"three": 3}], {"nested": {"deep": [True]}}]
    await store.append_events(sid, batch(*[(i, "Blob", p) for i, p in enumerate(payloads)]))

    record = await store.get_session(sid)
    assert [e.data for e in record.events] == payloads


async def test_end_time_is_written_once(store, device):
    sid = await new_session(store, device)
    end = datetime(2026, 10, 19, 9, 5, tzinfo=timezone.utc)

    receipt = await store.append_events(sid, batch((1, "A", {})), client_end_time=end)
    assert receipt.closed and not receipt.was_closed

    later = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)
    receipt = await store.append_events(sid, batch((2, "B", {})), client_end_time=later)
    assert receipt.status == AppendStatus.ACKNOWLEDGED
    assert receipt.was_closed

    record = await store.get_session(sid)
    assert record.state == SessionState.CLOSED
    assert record.client_end_time == end
    assert len(record.events) == 2


async def test_one_shot_session(store):
    end = datetime(2026, 10, 19, 9, 1, tzinfo=timezone.utc)
    draft = SessionDraft.one_shot(
        client_start_time=START,
        client_end_time=end,
        events=batch((1, "Tap", {"x": 1}), (2, "Tap", {"x": 2})),
        label="P-07",
        machine_name="lab-pc-3",
        user_agent="legacy",
    )
    sid = await store.open_session(draft)

    record = await store.get_session(sid)
    assert record.origin == SessionOrigin.ONE_SHOT
    assert record.state == SessionState.CLOSED
    assert record.label == "P-07"
    assert [e.data["x"] for e in record.events] == [1, 2]

    # further appends continue the sequence
    await store.append_events(sid, batch((3, "Tap", {"x": 3})))
    record = await store.get_session(sid)
    assert [e.data["x"] for e in record.events] == [1, 2, 3]


async def test_storage_failure_is_storage_unavailable(store, device, monkeypatch):
    sid = await new_session(store, device)

    def broken(*args, **kwargs):
        raise DBConnectionError("connection refused")

    monkeypatch.setattr("felis.orm.store.in_transaction", broken)
    with pytest.raises(StorageUnavailable):
        await new_session(store, device)
    with pytest.raises(StorageUnavailable):
        await store.append_events(sid, batch((1, "A", {})))


async def test_timeout_is_storage_unavailable(db, device, monkeypatch):
    class Stalled:
        async def __aenter__(self):
            await asyncio.sleep(5)

        async def __aexit__(self, *exc):
            return False

    monkeypatch.setattr("felis.orm.store.in_transaction", lambda *a, **k: Stalled())
    store = SessionStore(op_timeout=0.05)
    with pytest.raises(StorageUnavailable):
        await new_session(store, device)


async def test_ping_healthy(store):
    result = await store.ping()
    assert result.healthy
    assert result.status == HealthStatus.OK


async def test_ping_unreachable_never_raises(db, monkeypatch):
    class Hanging:
        async def execute_query(self, sql):
            await asyncio.sleep(5)

    class Connections:
        def __init__(self, conn=None, error=None):
            self.conn, self.error = conn, error

        def get(self, alias):
            if self.error:
                raise self.error
            return self.conn

    monkeypatch.setattr("felis.orm.store.connections", Connections(conn=Hanging()))
    result = await SessionStore(ping_timeout=0.05).ping()
    assert result.status == HealthStatus.ERROR
    assert result.message.startswith("Unreachable")

    monkeypatch.setattr("felis.orm.store.connections", Connections(error=DBConnectionError("no route to host")))
    result = await SessionStore().ping()
    assert result.status == HealthStatus.ERROR
    assert "no route to host" in result.message
