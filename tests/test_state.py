from __future__ import annotations

import asyncio

import pytest

from conftest import FakeTransport
from wagateway.errors import RestartError
from wagateway.events import EventKind, LifecycleEvent
from wagateway.state import SessionState, SessionStateMachine


GRACE = 0.02
SETTLE = 0.15


def _machine(transport: FakeTransport, **kwargs) -> SessionStateMachine:
    params = {
        "auth_grace": GRACE,
        "loading_grace": GRACE,
        "restart_delay": GRACE,
    }
    params.update(kwargs)
    return SessionStateMachine(transport, **params)


async def _emit(machine: SessionStateMachine, kind: EventKind, **fields) -> None:
    await machine.handle_event(LifecycleEvent(kind, **fields))


def test_initial_state(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport)
    assert machine.current_state() is SessionState.INITIALIZING
    assert machine.is_ready() is False
    assert machine.can_dispatch() is False


@pytest.mark.anyio
async def test_start_subscribes_and_initializes(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport)
    await machine.start()
    await machine.start()
    assert fake_transport.initialize_calls == 1
    await fake_transport.publish(LifecycleEvent(EventKind.READY))
    assert machine.current_state() is SessionState.CONNECTED


@pytest.mark.anyio
async def test_start_initialize_failure_keeps_initializing(fake_transport: FakeTransport) -> None:
    fake_transport.initialize_error = RuntimeError("sidecar down")
    machine = _machine(fake_transport)
    await machine.start()
    snapshot = machine.snapshot()
    assert snapshot.state is SessionState.INITIALIZING
    assert snapshot.last_error == "sidecar down"


@pytest.mark.anyio
async def test_qr_event_invokes_renderer(fake_transport: FakeTransport) -> None:
    rendered: list[str] = []
    machine = _machine(fake_transport, on_qr=rendered.append)
    await _emit(machine, EventKind.READY)
    await machine.handle_event(LifecycleEvent.qr_issued("2@payload"))
    assert machine.current_state() is SessionState.QR_PENDING
    assert machine.is_ready() is False
    assert rendered == ["2@payload"]


@pytest.mark.anyio
async def test_renderer_failure_does_not_break_transition(fake_transport: FakeTransport) -> None:
    def _boom(_: str) -> None:
        raise RuntimeError("render failed")

    machine = _machine(fake_transport, on_qr=_boom)
    await machine.handle_event(LifecycleEvent.qr_issued("2@payload"))
    assert machine.current_state() is SessionState.QR_PENDING


@pytest.mark.anyio
async def test_ready_event_connects(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport)
    await _emit(machine, EventKind.READY)
    assert machine.current_state() is SessionState.CONNECTED
    assert machine.is_ready() is True
    assert machine.can_dispatch() is True


@pytest.mark.anyio
async def test_authenticated_promotes_after_grace(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport)
    await _emit(machine, EventKind.AUTHENTICATED)
    assert machine.current_state() is SessionState.AUTHENTICATED
    assert machine.is_ready() is False
    await asyncio.sleep(SETTLE)
    assert machine.current_state() is SessionState.CONNECTED
    assert machine.is_ready() is True


@pytest.mark.anyio
async def test_authenticated_keeps_ready_flag(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport, auth_grace=30)
    await _emit(machine, EventKind.READY)
    await _emit(machine, EventKind.AUTHENTICATED)
    assert machine.current_state() is SessionState.AUTHENTICATED
    assert machine.is_ready() is True
    assert machine.can_dispatch() is True
    await machine.shutdown()


@pytest.mark.anyio
async def test_disconnect_during_auth_grace_blocks_promotion(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport)
    await _emit(machine, EventKind.AUTHENTICATED)
    await _emit(machine, EventKind.DISCONNECTED, detail="NAVIGATION")
    await asyncio.sleep(SETTLE)
    assert machine.current_state() is SessionState.DISCONNECTED
    assert machine.is_ready() is False


@pytest.mark.anyio
async def test_loading_complete_promotes_after_grace(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport)
    await machine.handle_event(LifecycleEvent.loading(100, "WhatsApp"))
    assert machine.current_state() is SessionState.LOADING
    assert machine.is_ready() is False
    await asyncio.sleep(SETTLE)
    assert machine.current_state() is SessionState.CONNECTED
    assert machine.is_ready() is True


@pytest.mark.anyio
async def test_partial_loading_does_not_promote(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport)
    await machine.handle_event(LifecycleEvent.loading(42))
    await asyncio.sleep(SETTLE)
    assert machine.current_state() is SessionState.LOADING
    assert machine.is_ready() is False


@pytest.mark.anyio
async def test_disconnect_during_loading_grace_blocks_promotion(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport)
    await machine.handle_event(LifecycleEvent.loading(100))
    await _emit(machine, EventKind.DISCONNECTED)
    await asyncio.sleep(SETTLE)
    assert machine.current_state() is SessionState.DISCONNECTED
    assert machine.is_ready() is False


@pytest.mark.anyio
async def test_ready_during_loading_grace_wins(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport)
    await machine.handle_event(LifecycleEvent.loading(100))
    await _emit(machine, EventKind.READY)
    generation = machine.snapshot().generation
    await asyncio.sleep(SETTLE)
    assert machine.current_state() is SessionState.CONNECTED
    assert machine.snapshot().generation == generation


@pytest.mark.anyio
async def test_auth_failure(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport)
    await _emit(machine, EventKind.READY)
    await _emit(machine, EventKind.AUTH_FAILURE, detail="bad session")
    snapshot = machine.snapshot()
    assert snapshot.state is SessionState.AUTH_FAILURE
    assert snapshot.ready is False
    assert snapshot.last_error == "bad session"


@pytest.mark.anyio
async def test_transport_fault_marks_error(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport)
    await _emit(machine, EventKind.READY)
    await machine.mark_transport_fault("Evaluation failed")
    assert machine.current_state() is SessionState.ERROR
    assert machine.is_ready() is False


@pytest.mark.anyio
async def test_restart_reinitializes(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport)
    await _emit(machine, EventKind.READY)
    await machine.request_restart()
    assert machine.current_state() is SessionState.RESTARTING
    assert machine.is_ready() is False
    assert fake_transport.destroy_calls == 1
    await asyncio.sleep(SETTLE)
    assert machine.current_state() is SessionState.INITIALIZING
    assert fake_transport.initialize_calls == 1


@pytest.mark.anyio
async def test_restart_is_idempotent_and_rearms(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport, restart_delay=0.05)
    await machine.request_restart()
    await machine.request_restart()
    assert machine.current_state() is SessionState.RESTARTING
    assert fake_transport.destroy_calls == 2
    await asyncio.sleep(0.3)
    assert machine.current_state() is SessionState.INITIALIZING
    assert fake_transport.initialize_calls == 1


@pytest.mark.anyio
async def test_restart_destroy_failure(fake_transport: FakeTransport) -> None:
    fake_transport.destroy_error = RuntimeError("browser gone")
    machine = _machine(fake_transport)
    await _emit(machine, EventKind.READY)
    with pytest.raises(RestartError) as exc_info:
        await machine.request_restart()
    assert exc_info.value.detail == "browser gone"
    await asyncio.sleep(SETTLE)
    assert machine.current_state() is SessionState.RESTARTING
    assert fake_transport.initialize_calls == 0


@pytest.mark.anyio
@pytest.mark.parametrize(
    "kind",
    [
        EventKind.QR,
        EventKind.AUTHENTICATED,
        EventKind.READY,
        EventKind.AUTH_FAILURE,
        EventKind.DISCONNECTED,
        EventKind.LOADING,
        EventKind.TRANSPORT_FAULT,
    ],
)
async def test_restart_recovers_from_every_state(fake_transport: FakeTransport, kind: EventKind) -> None:
    machine = _machine(fake_transport, auth_grace=30, loading_grace=30)
    fields = {"qr": "2@x"} if kind is EventKind.QR else {}
    if kind is EventKind.LOADING:
        fields = {"percent": 100}
    await _emit(machine, kind, **fields)
    await machine.request_restart()
    await asyncio.sleep(SETTLE)
    assert machine.current_state() is SessionState.INITIALIZING
    assert machine.is_ready() is False
    await machine.shutdown()


@pytest.mark.anyio
async def test_shutdown_cancels_pending_timers(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport, auth_grace=0.05)
    await _emit(machine, EventKind.AUTHENTICATED)
    await machine.shutdown()
    await asyncio.sleep(0.1)
    assert machine.current_state() is SessionState.AUTHENTICATED
    assert fake_transport.closed is True


def test_snapshot_payload(fake_transport: FakeTransport) -> None:
    payload = _machine(fake_transport).snapshot().to_payload()
    assert payload["state"] == "INITIALIZING"
    assert payload["ready"] is False
    assert payload["last_event"] is None


@pytest.mark.anyio
async def test_transport_fault_ignored_after_restart(fake_transport: FakeTransport) -> None:
    machine = _machine(fake_transport, restart_delay=30)
    await _emit(machine, EventKind.READY)
    serial = machine.restart_serial()
    await machine.request_restart()
    await _emit(machine, EventKind.READY)

    await machine.mark_transport_fault("Evaluation failed", restart_serial=serial)
    assert machine.current_state() is SessionState.CONNECTED
    assert machine.is_ready() is True

    await machine.mark_transport_fault("Evaluation failed", restart_serial=machine.restart_serial())
    assert machine.current_state() is SessionState.ERROR
    await machine.shutdown()
