import argparse
import json
from typing import Optional

import requests

from .config import CONTROL_URL


def _do_json(method: str, url: str, body: Optional[dict] = None) -> requests.Response:
    resp = requests.request(method, url, json=body, timeout=15)
    print(f"{method} {url} -> {resp.status_code} {resp.reason}")
    return resp


def _print_body(resp: requests.Response) -> None:
    try:
        print(json.dumps(resp.json(), indent=2))
    except ValueError:
        print(resp.text)


def show_log(base: str, limit: int) -> None:
    resp = _do_json("GET", f"{base}/log?limit={limit}")
    if not resp.ok:
        _print_body(resp)
        return
    entries = resp.json().get("entries", [])
    if not entries:
        print("log is empty")
        return
    for e in entries:
        print(f"{e.get('timestamp')} {e.get('level'):7s} {e.get('message')}")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drive the OCPPulse simulator over its HTTP control API")
    parser.add_argument("--base", default=CONTROL_URL, help=f"control API base URL (default: {CONTROL_URL})")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("status", help="show session status")

    p_log = sub.add_parser("log", help="show the connection log, newest first")
    p_log.add_argument("--limit", type=int, default=50)

    p_connect = sub.add_parser("connect", help="connect to a CSMS and send BootNotification")
    p_connect.add_argument("serverUrl")
    p_connect.add_argument("chargeStationId")
    p_connect.add_argument("--id-tag")
    p_connect.add_argument("--connector", type=int)
    p_connect.add_argument("--interval", type=int, help="meter value interval in seconds")
    p_connect.add_argument("--ocpp", choices=["1.6", "2.0.1"])

    sub.add_parser("disconnect", help="close the connection")

    p_start = sub.add_parser("start", help="start charging")
    p_start.add_argument("connectorId", type=int, nargs="?")
    p_start.add_argument("idTag", nargs="?")

    sub.add_parser("stop", help="stop charging")

    p_interval = sub.add_parser("interval", help="change the meter value interval")
    p_interval.add_argument("seconds", type=int)

    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    base = args.base.rstrip("/")
    if args.cmd == "status":
        _print_body(_do_json("GET", f"{base}/status"))
    elif args.cmd == "log":
        show_log(base, args.limit)
    elif args.cmd == "connect":
        body = {"server_url": args.serverUrl, "charge_station_id": args.chargeStationId}
        for key, value in (
            ("id_tag", args.id_tag),
            ("connector_id", args.connector),
            ("meter_interval", args.interval),
            ("ocpp_version", args.ocpp),
        ):
            if value is not None:
                body[key] = value
        _print_body(_do_json("POST", f"{base}/connect", body))
    elif args.cmd == "disconnect":
        _print_body(_do_json("POST", f"{base}/disconnect"))
    elif args.cmd == "start":
        body = {}
        if args.connectorId is not None:
            body["connector_id"] = args.connectorId
        if args.idTag is not None:
            body["id_tag"] = args.idTag
        _print_body(_do_json("POST", f"{base}/start", body))
    elif args.cmd == "stop":
        _print_body(_do_json("POST", f"{base}/stop"))
    elif args.cmd == "interval":
        _print_body(_do_json("PUT", f"{base}/meter_interval", {"seconds": args.seconds}))


if __name__ == "__main__":
    main()
