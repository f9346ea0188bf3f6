"""Tests for the connection supervisor state machine and backoff."""

from __future__ import annotations

import asyncio

import pytest

from acquasync.core.errors import ExhaustedRetries
from acquasync.core.models import ConnectionState as S
from acquasync.core.supervisor import ConnectionSupervisor
from fakes import FakeSleep, FakeTransport, settle

URL = "ws://tank.test/ws"


def make_supervisor(transport, sleep, **kwargs) -> tuple[ConnectionSupervisor, list]:
    sup = ConnectionSupervisor(transport, URL, sleep=sleep, clock=lambda: 1_700_000_000.0, **kwargs)
    transitions: list = []
    sup.add_observer(lambda old, new: transitions.append((old, new)))
    return sup, transitions


@pytest.mark.asyncio
async def test_connect_sends_hello_and_notifies_once():
    transport = FakeTransport()
    sup, transitions = make_supervisor(transport, FakeSleep())
    connected = []

    await sup.connect(lambda: connected.append(True))

    assert sup.state is S.CONNECTED
    assert transitions == [(S.DISCONNECTED, S.CONNECTING), (S.CONNECTING, S.CONNECTED)]
    assert connected == [True]
    assert transport.last.sent == [{"type": "hello", "ts": 1_700_000_000_000}]


@pytest.mark.asyncio
async def test_connect_is_noop_while_connected():
    transport = FakeTransport()
    sup, transitions = make_supervisor(transport, FakeSleep())

    await sup.connect()
    await sup.connect()

    assert transport.open_calls == 1
    assert len(transitions) == 2


@pytest.mark.asyncio
async def test_backoff_sequence_then_give_up():
    transport = FakeTransport()
    transport.fail_always = True
    sleep = FakeSleep()
    sup, _ = make_supervisor(transport, sleep)
    gave_up = []
    sup.on_unreachable(lambda: gave_up.append(True))

    await sup.connect()
    await settle()

    assert [round(s * 1000) for s in sleep.calls] == [
        1000, 2000, 4000, 8000, 15000, 15000, 15000, 15000, 15000, 15000,
    ]
    # one initial attempt plus MAX_ATTEMPTS retries, then nothing
    assert transport.open_calls == 11
    assert sup.unreachable is True
    assert sup.reconnect_pending is False
    assert sup.state is S.DISCONNECTED
    assert isinstance(sup.last_error, ExhaustedRetries)
    assert gave_up == [True]

    await settle()
    assert transport.open_calls == 11


@pytest.mark.asyncio
async def test_custom_backoff_constants():
    transport = FakeTransport()
    transport.fail_always = True
    sleep = FakeSleep()
    sup, _ = make_supervisor(transport, sleep, base_ms=500, cap_ms=3000, max_attempts=4)

    await sup.connect()
    await settle()

    assert [round(s * 1000) for s in sleep.calls] == [500, 1000, 2000, 3000]
    assert transport.open_calls == 5
    assert sup.unreachable is True


@pytest.mark.asyncio
async def test_successful_connect_resets_attempts():
    transport = FakeTransport()
    transport.failures = 3
    sleep = FakeSleep()
    sup, _ = make_supervisor(transport, sleep)

    await sup.connect()
    await settle()

    assert sup.state is S.CONNECTED
    assert sup.attempt == 0
    assert [round(s * 1000) for s in sleep.calls] == [1000, 2000, 4000]

    # the next outage starts again from the base delay
    transport.last.drop()
    transport.failures = 1
    await settle()
    assert [round(s * 1000) for s in sleep.calls] == [1000, 2000, 4000, 1000, 2000]
    assert sup.state is S.CONNECTED


@pytest.mark.asyncio
async def test_peer_close_triggers_reconnect():
    transport = FakeTransport()
    sup, transitions = make_supervisor(transport, FakeSleep())
    closed = []
    sup.on_close(lambda: closed.append(True))

    await sup.connect()
    transport.last.drop()
    await settle()

    assert transport.open_calls == 2
    assert sup.state is S.CONNECTED
    assert closed == [True]
    assert transitions == [
        (S.DISCONNECTED, S.CONNECTING),
        (S.CONNECTING, S.CONNECTED),
        (S.CONNECTED, S.DISCONNECTED),
        (S.DISCONNECTED, S.CONNECTING),
        (S.CONNECTING, S.CONNECTED),
    ]


@pytest.mark.asyncio
async def test_transport_error_mid_stream_triggers_reconnect():
    transport = FakeTransport()
    sleep = FakeSleep(block=True)
    sup, _ = make_supervisor(transport, sleep)

    await sup.connect()
    transport.last.fail()
    await settle()

    assert sup.state is S.DISCONNECTED
    assert sup.reconnect_pending is True
    assert sleep.calls == [1.0]
    assert "reset by peer" in str(sup.last_error)

    await sup.disconnect()


@pytest.mark.asyncio
async def test_disconnect_while_connecting_schedules_nothing():
    transport = FakeTransport()
    transport.gate = asyncio.Event()
    sleep = FakeSleep()
    sup, transitions = make_supervisor(transport, sleep)

    pending = asyncio.create_task(sup.connect())
    await settle(5)
    assert sup.state is S.CONNECTING

    await sup.disconnect()
    assert sup.state is S.DISCONNECTED

    transport.gate.set()
    await pending
    await settle()

    assert sup.state is S.DISCONNECTED
    assert sup.reconnect_pending is False
    assert sleep.calls == []
    # the connection that finished opening late was closed straight away
    assert transport.last.closed is True
    assert transitions == [(S.DISCONNECTED, S.CONNECTING), (S.CONNECTING, S.DISCONNECTED)]


@pytest.mark.asyncio
async def test_disconnect_while_connecting_and_open_fails():
    transport = FakeTransport()
    transport.gate = asyncio.Event()
    transport.fail_always = True
    sleep = FakeSleep()
    sup, _ = make_supervisor(transport, sleep)

    pending = asyncio.create_task(sup.connect())
    await settle(5)
    await sup.disconnect()
    transport.gate.set()
    await pending
    await settle()

    assert sup.state is S.DISCONNECTED
    assert sleep.calls == []
    assert transport.open_calls == 1


@pytest.mark.asyncio
async def test_manual_disconnect_closes_without_reconnect():
    transport = FakeTransport()
    sleep = FakeSleep()
    sup, transitions = make_supervisor(transport, sleep)

    await sup.connect()
    await sup.disconnect()
    await settle()

    assert sup.state is S.DISCONNECTED
    assert transport.last.closed is True
    assert transport.open_calls == 1
    assert sleep.calls == []
    assert transitions[-2:] == [(S.CONNECTED, S.CLOSING), (S.CLOSING, S.DISCONNECTED)]


@pytest.mark.asyncio
async def test_disconnect_cancels_pending_reconnect():
    transport = FakeTransport()
    transport.failures = 1
    sup, _ = make_supervisor(transport, FakeSleep(block=True))

    await sup.connect()
    assert sup.reconnect_pending is True

    await sup.disconnect()
    await settle()

    assert sup.reconnect_pending is False
    assert transport.open_calls == 1


@pytest.mark.asyncio
async def test_reconnect_now_recovers_from_unreachable():
    transport = FakeTransport()
    transport.fail_always = True
    sup, _ = make_supervisor(transport, FakeSleep(), max_attempts=2)

    await sup.connect()
    await settle()
    assert sup.unreachable is True

    transport.fail_always = False
    await sup.reconnect_now()

    assert sup.state is S.CONNECTED
    assert sup.unreachable is False
    assert sup.last_error is None
    assert sup.attempt == 0


@pytest.mark.asyncio
async def test_send_requires_connection():
    transport = FakeTransport()
    sup, _ = make_supervisor(transport, FakeSleep())

    assert await sup.send({"type": "controlPump", "action": "on"}) is False

    await sup.connect()
    assert await sup.send({"type": "controlPump", "action": "on"}) is True
    assert transport.last.sent[-1] == {"type": "controlPump", "action": "on"}


@pytest.mark.asyncio
async def test_frames_delivered_in_arrival_order():
    transport = FakeTransport()
    sup, _ = make_supervisor(transport, FakeSleep())
    received = []
    sup.on_frame(received.append)

    await sup.connect()
    for i in range(3):
        transport.last.feed({"type": "ping", "n": i})
    await settle()

    assert [frame for frame in received] == [
        '{"type": "ping", "n": 0}', '{"type": "ping", "n": 1}', '{"type": "ping", "n": 2}',
    ]


@pytest.mark.asyncio
async def test_frame_handler_error_does_not_drop_connection():
    transport = FakeTransport()
    sup, _ = make_supervisor(transport, FakeSleep())

    def explode(raw):
        raise RuntimeError("boom")

    sup.on_frame(explode)
    await sup.connect()
    transport.last.feed({"type": "sensorData"})
    transport.last.feed({"type": "sensorData"})
    await settle()

    assert sup.state is S.CONNECTED
    assert transport.open_calls == 1


@pytest.mark.asyncio
async def test_dispose_releases_connection_and_callbacks():
    transport = FakeTransport()
    sup, transitions = make_supervisor(transport, FakeSleep())

    await sup.connect()
    await sup.dispose()
    count = len(transitions)
    await sup.connect()

    assert transport.connections[0].closed is True
    # observers were dropped by dispose
    assert len(transitions) == count
    await sup.disconnect()


@pytest.mark.asyncio
async def test_disconnect_during_hello_starts_no_reader():
    transport = FakeTransport()
    transport.send_gate = asyncio.Event()
    sleep = FakeSleep()
    sup, _ = make_supervisor(transport, sleep)

    pending = asyncio.create_task(sup.connect())
    await settle(5)
    assert sup.state is S.CONNECTED

    await sup.disconnect()
    transport.send_gate.set()
    await pending
    await settle()

    conn = transport.last
    assert conn.closed is True
    assert conn.iterated is False
    assert conn.sent == []
    assert sup.state is S.DISCONNECTED
    assert sleep.calls == []
