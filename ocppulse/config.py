import os

CSMS_URL = os.getenv("CSMS_URL", "ws://127.0.0.1:9000/ocpp")
CPID = os.getenv("CPID", "Station001")
ID_TAG = os.getenv("ID_TAG", "User123")
CONNECTOR_ID = int(os.getenv("CONNECTOR_ID", "1"))
OCPP_VERSION = os.getenv("OCPP_VERSION", "1.6")   # 1.6 | 2.0.1

# identity announced in BootNotification
CP_VENDOR = os.getenv("CP_VENDOR", "OCPPulse")
CP_MODEL = os.getenv("CP_MODEL", "OCPPulse Simulator")
FIRMWARE_VERSION = os.getenv("FIRMWARE_VERSION", "1.0")

METER_START_WH = int(os.getenv("METER_START_WH", "0"))
METER_RATE_W = int(os.getenv("METER_RATE_W", "7000"))          # 7 kW
METER_PERIOD_SEC = int(os.getenv("METER_PERIOD_SEC", "60"))

# pending calls older than this are reported as timed out
CALL_TIMEOUT_SEC = float(os.getenv("CALL_TIMEOUT_SEC", "30"))
SWEEP_INTERVAL_SEC = float(os.getenv("SWEEP_INTERVAL_SEC", "1"))

# testing stub: invent transaction ids instead of reading them from the CSMS
USE_RANDOM_TX_ID = os.getenv("USE_RANDOM_TX_ID", "0").lower() in ("1", "true", "yes")

LOG_MAX_ENTRIES = int(os.getenv("LOG_MAX_ENTRIES", "500"))
HTTP_PORT = int(os.getenv("HTTP_PORT", "7071"))
CONTROL_URL = os.getenv("CONTROL_URL", f"http://127.0.0.1:{HTTP_PORT}")
# connect to CSMS_URL as CPID as soon as the control server is up
AUTO_CONNECT = os.getenv("AUTO_CONNECT", "0").lower() in ("1", "true", "yes")
