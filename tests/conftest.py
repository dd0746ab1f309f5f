import asyncio
import json
import sys
from pathlib import Path

import pytest
import pytest_asyncio
import websockets
from ocpp.routing import on
from ocpp.v16 import call_result, ChargePoint as CP
from ocpp.v16.enums import AuthorizationStatus, RegistrationStatus

sys.path.append(str(Path(__file__).resolve().parents[1]))

from ocppulse.state_machine import ChargePointSession  # noqa: E402

CSMS_URL = "ws://csms.test/ocpp"
STATION_ID = "Station001"


async def settle(rounds: int = 10):
    """Let scheduled callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 5):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout=timeout)


class ManualClock:
    """Monotonic clock plus ``sleep`` driven by :meth:`advance`."""

    def __init__(self):
        self.now = 0.0
        self._sleepers = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float):
        fut = asyncio.get_running_loop().create_future()
        self._sleepers.append((self.now + delay, fut))
        await fut

    async def advance(self, seconds: float):
        # let freshly created tasks register their sleeps first
        await settle()
        target = self.now + seconds
        while True:
            due = [(d, f) for d, f in self._sleepers if d <= target and not f.done()]
            if not due:
                break
            deadline = min(d for d, _ in due)
            self.now = deadline
            for d, fut in due:
                if d == deadline:
                    fut.set_result(None)
            self._sleepers = [(d, f) for d, f in self._sleepers if not f.done()]
            await settle()
        self.now = target
        await settle()


class FakeTransport:
    """In-memory transport: records sent frames, lets tests inject events."""

    def __init__(self, listener):
        self.listener = listener
        self.sent = []
        self.url = None
        self.subprotocol = None
        self.is_open = False
        self.closed = False

    def connect(self, url, subprotocol):
        self.url = url
        self.subprotocol = subprotocol

    def send(self, text):
        self.sent.append(text)

    def close(self):
        self.closed = True
        self.is_open = False

    # ---- test helpers ----
    def open(self):
        self.is_open = True
        self.listener.on_open()

    def receive(self, frame):
        self.listener.on_text(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self, detail=None):
        self.is_open = False
        if detail is None:
            self.listener.on_close()
        else:
            self.listener.on_error(detail)

    def frames(self):
        return [json.loads(f) for f in self.sent]

    def calls(self, action=None):
        return [f for f in self.frames() if f[0] == 2 and (action is None or f[2] == action)]

    def last_call(self, action):
        calls = self.calls(action)
        assert calls, f"no {action} call was sent"
        return calls[-1]

    def reply(self, action, payload):
        self.receive([3, self.last_call(action)[1], payload])

    def reply_error(self, action, code="InternalError", description="boom"):
        self.receive([4, self.last_call(action)[1], code, description, {}])


class Harness:
    def __init__(self, **kwargs):
        self.clock = ManualClock()
        self.transports = []
        kwargs.setdefault("call_timeout", 30)
        kwargs.setdefault("sweep_interval", 1)
        self.session = ChargePointSession(
            transport_factory=self._make_transport,
            sleep=self.clock.sleep,
            clock=self.clock,
            **kwargs,
        )

    def _make_transport(self, listener):
        transport = FakeTransport(listener)
        self.transports.append(transport)
        return transport

    @property
    def transport(self) -> FakeTransport:
        return self.transports[-1]

    def connect(self, ocpp_version="1.6", **kwargs):
        kwargs.setdefault("id_tag", "User123")
        kwargs.setdefault("connector_id", 1)
        self.session.connect(CSMS_URL, STATION_ID, ocpp_version=ocpp_version, **kwargs)
        self.transport.open()

    def start_charging(self, tx_id=42, **kwargs):
        self.session.start_charging(**kwargs)
        self.transport.reply(
            "StartTransaction",
            {"transactionId": tx_id, "idTagInfo": {"status": "Accepted"}},
        )


@pytest_asyncio.fixture
async def harness():
    h = Harness()
    try:
        yield h
    finally:
        h.session.disconnect()
        await settle()


class MockCSMS(CP):
    """Minimal CSMS that records what the charge point sends."""

    def __init__(self, id, websocket):
        super().__init__(id, websocket)
        self.boot_notifications: asyncio.Queue = asyncio.Queue()
        self.start_requests: asyncio.Queue = asyncio.Queue()
        self.stop_requests: asyncio.Queue = asyncio.Queue()
        self.meter_values: asyncio.Queue = asyncio.Queue()

    @on("BootNotification")
    async def on_boot(self, charge_point_model, charge_point_vendor, **kwargs):
        await self.boot_notifications.put(
            {
                "charge_point_model": charge_point_model,
                "charge_point_vendor": charge_point_vendor,
                **kwargs,
            }
        )
        return call_result.BootNotification(
            current_time="2024-01-01T00:00:00Z", interval=10, status=RegistrationStatus.accepted
        )

    @on("StartTransaction")
    async def on_start(self, connector_id, id_tag, meter_start, timestamp, **kwargs):
        await self.start_requests.put(
            {"connector_id": connector_id, "id_tag": id_tag, "meter_start": meter_start}
        )
        return call_result.StartTransaction(
            transaction_id=42,
            id_tag_info={"status": AuthorizationStatus.accepted},
        )

    @on("StopTransaction")
    async def on_stop(self, transaction_id, meter_stop, timestamp, **kwargs):
        await self.stop_requests.put(
            {"transaction_id": transaction_id, "meter_stop": meter_stop, **kwargs}
        )
        return call_result.StopTransaction(
            id_tag_info={"status": AuthorizationStatus.accepted}
        )

    @on("MeterValues")
    async def on_meter_values(self, connector_id, meter_value, **kwargs):
        await self.meter_values.put(
            {"connector_id": connector_id, "meter_value": meter_value, **kwargs}
        )
        return call_result.MeterValues()


class CSMS:
    """WebSocket server that accepts one charge point and exposes MockCSMS."""

    def __init__(self, host: str = "127.0.0.1", port: int = 0):
        self.host = host
        self.port = port
        self.connected: asyncio.Event = asyncio.Event()
        self.cp: MockCSMS | None = None
        self.server = None

    async def start(self):
        async def on_connect(ws):
            self.cp = MockCSMS("CSMS", ws)
            self.connected.set()
            try:
                await self.cp.start()
            except websockets.ConnectionClosed:
                pass

        self.server = await websockets.serve(
            on_connect, self.host, self.port, subprotocols=["ocpp1.6"]
        )
        # store the actual port in case an ephemeral port was requested
        if self.port == 0 and self.server.sockets:
            self.port = self.server.sockets[0].getsockname()[1]

    async def stop(self):
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}/ocpp"


@pytest_asyncio.fixture
async def simulator():
    """A real charge point session wired to a mock CSMS over WebSocket."""
    csms = CSMS()
    await csms.start()
    session = ChargePointSession(call_timeout=5, sweep_interval=0.5)
    try:
        yield {"csms": csms, "session": session}
    finally:
        session.disconnect()
        await asyncio.sleep(0.05)
        await csms.stop()


@pytest.fixture
def clock():
    return ManualClock()
