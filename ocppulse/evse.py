import asyncio
import logging
from dataclasses import asdict
from typing import Literal, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .config import *
from .errors import InvalidCommand
from .payloads import RandomTransactionIdSource, transaction_id_from_response
from .state_machine import ChargePointSession

logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")

app = FastAPI(title="OCPPulse Simulator Control")

session = ChargePointSession(
    tx_id_source=RandomTransactionIdSource() if USE_RANDOM_TX_ID else transaction_id_from_response
)


class ConnectRequest(BaseModel):
    server_url: str = CSMS_URL
    charge_station_id: str = CPID
    id_tag: Optional[str] = ID_TAG
    connector_id: int = Field(CONNECTOR_ID, gt=0)
    meter_interval: int = Field(METER_PERIOD_SEC, gt=0)
    ocpp_version: Literal["1.6", "2.0.1"] = OCPP_VERSION


class StartRequest(BaseModel):
    connector_id: Optional[int] = Field(None, gt=0)
    id_tag: Optional[str] = None


class IntervalRequest(BaseModel):
    seconds: int = Field(..., gt=0)


def _invalid(exc: InvalidCommand) -> HTTPException:
    return HTTPException(status_code=409, detail=str(exc))


@app.get("/health")
async def health():
    return {"ok": True}


@app.get("/status")
async def status():
    return session.status()


@app.get("/log")
async def connection_log(limit: int = 100):
    return {"entries": [asdict(e) for e in session.log.entries()[:limit]]}


@app.post("/connect")
async def connect(req: ConnectRequest):
    try:
        session.connect(
            req.server_url,
            req.charge_station_id,
            ocpp_version=req.ocpp_version,
            id_tag=req.id_tag,
            connector_id=req.connector_id,
            meter_interval=req.meter_interval,
        )
    except InvalidCommand as exc:
        raise _invalid(exc)
    return {"ok": True, "state": session.state}


@app.post("/disconnect")
async def disconnect():
    session.disconnect()
    return {"ok": True, "state": session.state}


@app.post("/start")
async def start(req: Optional[StartRequest] = None):
    req = req or StartRequest()
    try:
        session.start_charging(connector_id=req.connector_id, id_tag=req.id_tag)
    except InvalidCommand as exc:
        raise _invalid(exc)
    return {"ok": True, "state": session.state, "connector": session.connector_id}


@app.post("/stop")
async def stop():
    try:
        session.stop_charging()
    except InvalidCommand as exc:
        raise _invalid(exc)
    return {"ok": True, "state": session.state}


@app.put("/meter_interval")
async def meter_interval(req: IntervalRequest):
    try:
        session.set_meter_interval(req.seconds)
    except InvalidCommand as exc:
        raise _invalid(exc)
    return {"ok": True, "meter_interval": session.meter_interval}


async def serve():
    server = uvicorn.Server(uvicorn.Config(app, host="0.0.0.0", port=HTTP_PORT, loop="asyncio", log_level="info"))
    if AUTO_CONNECT:
        session.connect(
            CSMS_URL, CPID, ocpp_version=OCPP_VERSION, id_tag=ID_TAG,
            connector_id=CONNECTOR_ID, meter_interval=METER_PERIOD_SEC,
        )
    try:
        await server.serve()
    finally:
        session.disconnect()


def main():
    asyncio.run(serve())


if __name__ == "__main__":
    main()
