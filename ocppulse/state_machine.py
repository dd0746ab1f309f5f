import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ocpp.v16.enums import RegistrationStatus

from . import payloads
from .codec import (
    BOOT_NOTIFICATION,
    METER_VALUES,
    START_TRANSACTION,
    STOP_TRANSACTION,
    Call,
    CallError,
    MalformedFrame,
    decode,
    encode,
)
from .config import CALL_TIMEOUT_SEC, METER_PERIOD_SEC, SWEEP_INTERVAL_SEC
from .errors import CallTimeout, InvalidCommand, TransportFailure
from .journal import ConnectionLog
from .meter import MeterEmitter, MeterSample
from .registry import CallRegistry, PendingCall, UnmatchedResponse
from .transport import WebSocketTransport


class SessionState:
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    CHARGING = "Charging"
    STOPPING = "Stopping"


class _TransportEvents:
    """Routes events of one transport to the session, tagged with their origin."""

    def __init__(self, session: "ChargePointSession"):
        self._session = session
        self.transport = None

    def on_open(self) -> None:
        self._session._on_open(self.transport)

    def on_text(self, frame: str) -> None:
        self._session._on_text(self.transport, frame)

    def on_close(self) -> None:
        self._session._on_transport_lost(self.transport, "connection closed")

    def on_error(self, detail: str) -> None:
        self._session._on_transport_lost(self.transport, detail)


class ChargePointSession:
    """One simulated charge point talking to one CSMS.

    All state changes happen in plain (non-async) methods running on the
    event loop, so transport events, user commands and meter ticks never
    interleave inside a transition. Calls are fire-and-forget: responses are
    correlated through the :class:`CallRegistry` and dispatched to
    ``_on_<action>`` handlers.
    """

    def __init__(
        self,
        transport_factory: Callable[[Any], Any] = WebSocketTransport,
        tx_id_source: payloads.TransactionIdSource = payloads.transaction_id_from_response,
        call_timeout: float = CALL_TIMEOUT_SEC,
        sweep_interval: float = SWEEP_INTERVAL_SEC,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        log: Optional[ConnectionLog] = None,
        meter: Optional[MeterEmitter] = None,
    ):
        self._transport_factory = transport_factory
        self._tx_id_source = tx_id_source
        self._call_timeout = call_timeout
        self._sweep_interval = sweep_interval
        self._sleep = sleep
        self._clock = clock
        self.log = log or ConnectionLog()
        self.registry = CallRegistry(clock=clock)
        self.meter = meter or MeterEmitter(self, sleep=sleep)
        self._transport = None
        self._sweeper: Optional[asyncio.Task] = None

        self.state = SessionState.DISCONNECTED
        self.server_url: Optional[str] = None
        self.charge_station_id: Optional[str] = None
        self.connector_id = 1
        self.id_tag: Optional[str] = None
        self.ocpp_version = payloads.OCPP_16
        self.meter_interval = METER_PERIOD_SEC
        self.transaction_id: Optional[int] = None
        self.registration_status: Optional[str] = None
        self._start_pending: Optional[str] = None
        self._stop_pending: Optional[str] = None

        self._handlers = {
            BOOT_NOTIFICATION: self._on_boot_notification,
            START_TRANSACTION: self._on_start_transaction,
            STOP_TRANSACTION: self._on_stop_transaction,
            METER_VALUES: self._on_meter_values,
        }

    # ----- properties -----
    @property
    def is_connected(self) -> bool:
        return self.state in (SessionState.CONNECTED, SessionState.CHARGING, SessionState.STOPPING)

    @property
    def is_charging(self) -> bool:
        return self.state == SessionState.CHARGING

    @property
    def start_pending(self) -> bool:
        return self._start_pending is not None

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "server_url": self.server_url,
            "charge_station_id": self.charge_station_id,
            "connector_id": self.connector_id,
            "id_tag": self.id_tag,
            "ocpp_version": self.ocpp_version,
            "meter_interval": self.meter_interval,
            "transaction_id": self.transaction_id,
            "registration_status": self.registration_status,
            "start_pending": self.start_pending,
            "meter_running": self.meter.running,
            "meter_wh": self.meter.register_wh,
            "pending_calls": [p.action for p in self.registry.pending()],
        }

    # ----- user commands -----
    def connect(
        self,
        server_url: str,
        charge_station_id: str,
        ocpp_version: str = payloads.OCPP_16,
        id_tag: Optional[str] = None,
        connector_id: Optional[int] = None,
        meter_interval: Optional[int] = None,
    ) -> str:
        if self.state != SessionState.DISCONNECTED:
            self._reject("connect", f"session is {self.state}")
        if not server_url or not charge_station_id:
            self._reject("connect", "OCPP server URL and charge station id are required")
        if ocpp_version not in payloads.SUPPORTED_VERSIONS:
            self._reject("connect", f"unsupported OCPP version {ocpp_version!r}")
        if connector_id is not None:
            self._check_positive("connect", "connector id", connector_id)
        if meter_interval is not None:
            self._check_positive("connect", "meter interval", meter_interval)

        self.server_url = server_url
        self.charge_station_id = charge_station_id
        self.ocpp_version = ocpp_version
        if id_tag is not None:
            self.id_tag = id_tag
        if connector_id is not None:
            self.connector_id = connector_id
        if meter_interval is not None:
            self.meter_interval = meter_interval

        endpoint = f"{server_url.rstrip('/')}/{charge_station_id}"
        events = _TransportEvents(self)
        transport = self._transport_factory(events)
        events.transport = transport
        self._transport = transport
        self.state = SessionState.CONNECTING
        self.log.add(f"Connecting to {endpoint} as {charge_station_id} (OCPP {ocpp_version})")
        transport.connect(endpoint, payloads.subprotocol(ocpp_version))
        self._sweeper = asyncio.create_task(self._sweep_loop())
        # queued by the transport until the socket opens
        return self._send_call(BOOT_NOTIFICATION, payloads.boot_notification(ocpp_version))

    def disconnect(self) -> None:
        if self.state == SessionState.DISCONNECTED:
            self.log.add("Disconnect requested while already disconnected")
            return
        transport = self._transport
        self._reset()
        if transport is not None:
            transport.close()
        self.log.add("Disconnected from OCPP backend.")

    def start_charging(self, connector_id: Optional[int] = None, id_tag: Optional[str] = None) -> str:
        if not self.is_connected:
            self._reject("start charging", "not connected to the OCPP backend")
        if self.state in (SessionState.CHARGING, SessionState.STOPPING):
            self._reject("start charging", f"a transaction is already active ({self.state})")
        if self._start_pending is not None:
            self._reject("start charging", "a StartTransaction is already awaiting its response")
        connector_id = connector_id if connector_id is not None else self.connector_id
        id_tag = id_tag if id_tag is not None else self.id_tag
        if not id_tag:
            self._reject("start charging", "an ID tag is required")
        self._check_positive("start charging", "connector id", connector_id)

        self.connector_id = connector_id
        self.id_tag = id_tag
        payload = payloads.start_transaction(
            self.ocpp_version, connector_id, id_tag, self.meter.register_wh
        )
        self._start_pending = self._send_call(START_TRANSACTION, payload)
        self.log.add(f"Start charging requested: connector={connector_id}, idTag={id_tag}")
        return self._start_pending

    def stop_charging(self) -> str:
        if self.state != SessionState.CHARGING:
            self._reject("stop charging", f"not charging ({self.state})")
        if self.transaction_id is None:
            self._reject("stop charging", "no transaction id available")

        self.meter.stop()
        payload = payloads.stop_transaction(
            self.ocpp_version, self.transaction_id, self.id_tag, self.meter.register_wh
        )
        self._stop_pending = self._send_call(STOP_TRANSACTION, payload)
        self.state = SessionState.STOPPING
        self.log.add(f"Stop charging requested: tx_id={self.transaction_id}")
        return self._stop_pending

    def set_meter_interval(self, seconds: int) -> None:
        self._check_positive("set meter interval", "meter interval", seconds)
        self.meter_interval = seconds
        self.log.add(f"Meter value interval set to {seconds}s")

    # ----- meter emitter hooks -----
    def can_emit_meter_values(self, transaction_id: Optional[int]) -> bool:
        return (
            self.state == SessionState.CHARGING
            and self.transaction_id is not None
            and self.transaction_id == transaction_id
            and self._transport is not None
            and self._transport.is_open
        )

    def submit_meter_values(self, connector_id: int, transaction_id: int, samples: List[MeterSample]) -> str:
        payload = payloads.meter_values(
            connector_id, transaction_id, [s.to_meter_value() for s in samples]
        )
        return self._send_call(METER_VALUES, payload)

    # ----- call expiry -----
    def expire_calls(self, now: Optional[float] = None) -> List[PendingCall]:
        now = self._clock() if now is None else now
        expired = self.registry.expire(now, self._call_timeout)
        for pending in expired:
            err = CallTimeout(pending.action, pending.unique_id)
            self.log.add(f"Call failed: {err}", logging.WARNING)
            if pending.unique_id == self._start_pending:
                self._start_pending = None
                self.log.add("StartTransaction timed out; not charging", logging.WARNING)
            elif pending.unique_id == self._stop_pending:
                self._finish_stop()
        return expired

    async def _sweep_loop(self):
        while True:
            await self._sleep(self._sweep_interval)
            self.expire_calls()

    # ----- transport events -----
    def _on_open(self, transport) -> None:
        if transport is not self._transport:
            return
        if self.state == SessionState.CONNECTING:
            self.state = SessionState.CONNECTED
        self.log.add("Connected to OCPP backend.")

    def _on_transport_lost(self, transport, detail: str) -> None:
        if transport is not self._transport:
            return
        err = TransportFailure(detail)
        self._reset()
        self.log.add(f"Disconnected from OCPP backend: {err}", logging.WARNING)

    def _on_text(self, transport, frame: str) -> None:
        if transport is not self._transport:
            return
        self.log.add(f"Received message: {frame}")
        envelope = decode(frame)
        if isinstance(envelope, MalformedFrame):
            self.log.add(f"Dropped malformed frame ({envelope.reason}): {envelope.raw}", logging.WARNING)
            return
        if isinstance(envelope, Call):
            # no CSMS initiated actions are supported
            self._send(
                CallError(
                    envelope.unique_id,
                    "NotImplemented",
                    f"{envelope.action} is not supported by this charge point",
                    {},
                )
            )
            return
        matched = self.registry.resolve(envelope.unique_id, envelope)
        if isinstance(matched, UnmatchedResponse):
            self.log.add(f"Dropped response for unknown uniqueId {matched.unique_id}", logging.WARNING)
            return
        action, response = matched
        if isinstance(response, CallError):
            self.log.add(
                f"Call error received for {action}: {response.error_code} {response.error_description}",
                logging.WARNING,
            )
        else:
            self.log.add(f"Call result received for {action}")
        try:
            self._handlers[action](envelope.unique_id, response)
        except Exception as exc:
            logging.exception(f"{action} handler failed")
            self.log.add(f"Failed to handle {action} response: {type(exc).__name__}: {exc}", logging.ERROR)

    # ----- response handlers -----
    def _on_boot_notification(self, unique_id: str, response) -> None:
        if isinstance(response, CallError):
            return
        payload = response.payload if isinstance(response.payload, dict) else {}
        self.registration_status = payload.get("status")
        if self.registration_status != RegistrationStatus.accepted:
            self.log.add(f"BootNotification not accepted: status={self.registration_status}", logging.WARNING)

    def _on_start_transaction(self, unique_id: str, response) -> None:
        if unique_id != self._start_pending:
            return
        self._start_pending = None
        if self.state != SessionState.CONNECTED:
            return
        if isinstance(response, CallError):
            self.log.add("StartTransaction rejected; not charging", logging.WARNING)
            return
        tx_id = self._tx_id_source(response.payload)
        if tx_id is None:
            self.log.add(f"StartTransaction result carries no transactionId: {response.payload}", logging.WARNING)
            return
        id_tag_info = response.payload.get("idTagInfo") if isinstance(response.payload, dict) else None
        if isinstance(id_tag_info, dict) and id_tag_info.get("status") not in (None, "Accepted"):
            self.log.add(f"idTag {self.id_tag} reported as {id_tag_info.get('status')}", logging.WARNING)
        self.transaction_id = tx_id
        self.state = SessionState.CHARGING
        self.meter.start(self.connector_id, tx_id, lambda: self.meter_interval)
        self.log.add(f"Charging started: transaction ID {tx_id}")

    def _on_stop_transaction(self, unique_id: str, response) -> None:
        if unique_id == self._stop_pending:
            self._finish_stop()

    def _on_meter_values(self, unique_id: str, response) -> None:
        logging.debug(f"MeterValues {unique_id} confirmed")

    # ----- internals -----
    def _finish_stop(self) -> None:
        tx_id = self.transaction_id
        self._stop_pending = None
        self.transaction_id = None
        if self.state == SessionState.STOPPING:
            self.state = SessionState.CONNECTED
        self.log.add(f"Charging stopped: transaction ID {tx_id}")

    def _send_call(self, action: str, payload: Dict[str, Any]) -> str:
        unique_id, frame = self.registry.submit(action, payload)
        self._transport.send(frame)
        self.log.add(f"Sent message: {frame}")
        return unique_id

    def _send(self, envelope) -> None:
        frame = encode(envelope)
        self._transport.send(frame)
        self.log.add(f"Sent message: {frame}")

    def _reset(self) -> None:
        self.meter.stop()
        self.registry.clear()
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None
        self._transport = None
        self.transaction_id = None
        self.registration_status = None
        self._start_pending = None
        self._stop_pending = None
        self.state = SessionState.DISCONNECTED

    def _reject(self, command: str, reason: str):
        self.log.add(f"Rejected {command}: {reason}", logging.WARNING)
        raise InvalidCommand(reason)

    def _check_positive(self, command: str, name: str, value) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            self._reject(command, f"{name} must be a positive integer, got {value!r}")
