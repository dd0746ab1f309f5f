"""Request payloads per OCPP version, and where transaction ids come from."""
import random
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .config import CP_MODEL, CP_VENDOR, FIRMWARE_VERSION

OCPP_16 = "1.6"
OCPP_201 = "2.0.1"
SUPPORTED_VERSIONS = (OCPP_16, OCPP_201)

# single connector simulator: the EVSE is always 1 under 2.0.1
EVSE_ID = 1

TransactionIdSource = Callable[[Any], Optional[int]]


def subprotocol(ocpp_version: str) -> str:
    return "ocpp2.0.1" if ocpp_version == OCPP_201 else "ocpp1.6"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def boot_notification(ocpp_version: str) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "chargePointVendor": CP_VENDOR,
        "chargePointModel": CP_MODEL,
    }
    if ocpp_version == OCPP_201:
        payload["reason"] = "PowerUp"
    else:
        payload["firmwareVersion"] = FIRMWARE_VERSION
    return payload


def start_transaction(
    ocpp_version: str, connector_id: int, id_tag: str, meter_start: int, timestamp: Optional[str] = None
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "connectorId": connector_id,
        "idTag": id_tag,
        "meterStart": meter_start,
        "timestamp": timestamp or utc_now(),
    }
    if ocpp_version == OCPP_201:
        payload["evseId"] = EVSE_ID
    return payload


def stop_transaction(
    ocpp_version: str, transaction_id: int, id_tag: str, meter_stop: int, timestamp: Optional[str] = None
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "transactionId": transaction_id,
        "idTag": id_tag,
        "meterStop": meter_stop,
        "timestamp": timestamp or utc_now(),
    }
    if ocpp_version == OCPP_201:
        payload["evseId"] = EVSE_ID
    return payload


def meter_values(connector_id: int, transaction_id: int, meter_value: List[dict]) -> Dict[str, Any]:
    return {
        "connectorId": connector_id,
        "transactionId": transaction_id,
        "meterValue": meter_value,
    }


def transaction_id_from_response(payload: Any) -> Optional[int]:
    """Read the CSMS-assigned transactionId out of a StartTransaction result."""
    if not isinstance(payload, dict):
        return None
    tx_id = payload.get("transactionId")
    if isinstance(tx_id, bool):
        return None
    if isinstance(tx_id, int):
        return tx_id
    if isinstance(tx_id, str) and tx_id.isdigit():
        return int(tx_id)
    return None


class RandomTransactionIdSource:
    """Testing stub for backends that never assign a transaction id.

    Ignores the response payload entirely. Not protocol correct: use
    :func:`transaction_id_from_response` against a real CSMS.
    """

    def __init__(self, rng: Optional[random.Random] = None, upper: int = 999):
        self._rng = rng or random.Random()
        self._upper = upper

    def __call__(self, payload: Any) -> Optional[int]:
        return self._rng.randint(1, self._upper)
