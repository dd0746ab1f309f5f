import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Union

from ocpp.v16.enums import Measurand, ReadingContext, UnitOfMeasure

from .config import METER_RATE_W, METER_START_WH


@dataclass
class MeterSample:
    timestamp: str
    value: str
    unit: str = UnitOfMeasure.kwh.value
    measurand: str = Measurand.energy_active_import_register.value
    context: str = ReadingContext.sample_periodic.value

    def to_meter_value(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "sampledValue": [
                {
                    "value": self.value,
                    "unit": self.unit,
                    "measurand": self.measurand,
                    "context": self.context,
                }
            ],
        }


class MeterEmitter:
    """Periodic MeterValues producer for the active transaction.

    The interval is read again before every tick, so a change only applies
    to the next sleep. The owning session decides whether a tick may emit;
    when it may not, the emitter stops itself.
    """

    def __init__(
        self,
        session,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        meter_start_wh: int = METER_START_WH,
        rate_w: int = METER_RATE_W,
        rng: Optional[random.Random] = None,
    ):
        self._session = session
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._task: Optional[asyncio.Task] = None
        self._interval: Callable[[], float] = lambda: 0
        self.energy_wh = float(meter_start_wh)
        self.rate_w = rate_w
        self.connector_id: Optional[int] = None
        self.transaction_id: Optional[int] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def register_wh(self) -> int:
        return int(self.energy_wh)

    def start(self, connector_id: int, transaction_id: int, interval: Union[float, Callable[[], float]]):
        self.stop()
        self.connector_id = connector_id
        self.transaction_id = transaction_id
        self._interval = interval if callable(interval) else (lambda: interval)
        self.ticks = 0
        self._task = asyncio.create_task(self._run())
        logging.info(f"Meter emitter started: connector={connector_id}, tx_id={transaction_id}")

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logging.info(f"Meter emitter stopped: tx_id={self.transaction_id}")

    def sample(self, elapsed_sec: float) -> MeterSample:
        # energy only ever grows; jitter the charge rate a little per tick
        rate = self.rate_w * self._rng.uniform(0.95, 1.05)
        self.energy_wh += rate * elapsed_sec / 3600
        return MeterSample(
            timestamp=datetime.now(timezone.utc).isoformat(),
            value=f"{self.energy_wh / 1000:.3f}",
        )

    async def _run(self):
        me = asyncio.current_task()
        while True:
            interval = self._interval()
            await self._sleep(interval)
            if self._task is not me:
                return
            if not self._session.can_emit_meter_values(self.transaction_id):
                logging.info("Meter emitter stopping itself: session no longer charging")
                self._task = None
                return
            sample = self.sample(interval)
            self.ticks += 1
            self._session.submit_meter_values(self.connector_id, self.transaction_id, [sample])
