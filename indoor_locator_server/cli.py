from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from datetime import datetime

from .beacon_store import BeaconStore
from .config_manager import ConfigManager
from .fix_store import CsvFixStore
from .models import Beacon
from .mqtt_processor import MQTTDataProcessor
from .processor import UplinkProcessor


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level.upper())
        return
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_json(obj) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def run_mqtt(args):
    config = ConfigManager(args.config)
    processor = MQTTDataProcessor(config)

    t = threading.Thread(target=processor.start_mqtt_client, daemon=True)
    t.start()

    # graceful shutdown
    def handle_sigint(sig, frame):
        processor.stop_mqtt_client()
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_sigint)
    signal.signal(signal.SIGTERM, handle_sigint)

    t.join()
    return 0


def run_estimate(args):
    config = ConfigManager(args.config)
    processor = UplinkProcessor.from_config(config, CsvFixStore(config.get_fix_db_path()))
    if args.file == "-":
        payload = json.load(sys.stdin)
    else:
        with open(args.file, "r", encoding="utf-8") as f:
            payload = json.load(f)
    record = processor.insert_data(args.device, payload, dry_run=args.dry_run)
    if record is None:
        print("no position estimated", file=sys.stderr)
        return 1
    _print_json(record.to_dict())
    return 0


def run_history(args):
    config = ConfigManager(args.config)
    store = CsvFixStore(config.get_fix_db_path())
    if args.since or args.until:
        start = datetime.fromisoformat(args.since) if args.since else None
        end = datetime.fromisoformat(args.until) if args.until else None
        records = store.history_between(args.device, start, end)[: args.limit]
    else:
        records = store.history(args.device, args.limit)
    _print_json([r.to_dict() for r in records])
    return 0


def run_latest(args):
    config = ConfigManager(args.config)
    store = CsvFixStore(config.get_fix_db_path())
    _print_json({device: r.to_dict() for device, r in store.latest_per_device().items()})
    return 0


def run_beacons(args):
    config = ConfigManager(args.config)
    store = BeaconStore(config)
    store.load()
    if args.action == "add":
        store.add(Beacon(mac=args.mac, x=args.x, y=args.y))
    elif args.action == "update":
        if not store.update(Beacon(mac=args.mac, x=args.x, y=args.y)):
            print(f"unknown beacon {args.mac}", file=sys.stderr)
            return 1
    elif args.action == "remove":
        if not store.delete(args.mac):
            print(f"unknown beacon {args.mac}", file=sys.stderr)
            return 1
    else:
        _print_json([{"mac": b.mac, "x": b.x, "y": b.y} for b in store.all().values()])
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="indoor-locator-server", description="Indoor Locator Server CLI")
    parser.add_argument("--config", default=None, help="config file, defaults to ./config/config.yaml or $INDOOR_LOCATOR_CONFIG")
    parser.add_argument("--log-level", default="INFO", help="logging level (default INFO)")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="listen for uplinks on MQTT")
    p_run.set_defaults(func=run_mqtt)

    p_est = sub.add_parser("estimate", help="process one uplink JSON file ('-' for stdin)")
    p_est.add_argument("file")
    p_est.add_argument("--device", default=None, help="device id, defaults to end_device_ids.device_id")
    p_est.add_argument("--dry-run", action="store_true", help="do not write the record")
    p_est.set_defaults(func=run_estimate)

    p_hist = sub.add_parser("history", help="print stored fixes of a device, newest first")
    p_hist.add_argument("device")
    p_hist.add_argument("--limit", type=int, default=100)
    p_hist.add_argument("--since", default=None, help="ISO timestamp")
    p_hist.add_argument("--until", default=None, help="ISO timestamp")
    p_hist.set_defaults(func=run_history)

    p_latest = sub.add_parser("latest", help="print the newest fix of every device")
    p_latest.set_defaults(func=run_latest)

    p_beacons = sub.add_parser("beacons", help="manage the beacon registry")
    b_sub = p_beacons.add_subparsers(dest="action")
    b_sub.add_parser("list")
    b_add = b_sub.add_parser("add")
    b_add.add_argument("mac")
    b_add.add_argument("x", type=float)
    b_add.add_argument("y", type=float)
    b_update = b_sub.add_parser("update")
    b_update.add_argument("mac")
    b_update.add_argument("x", type=float)
    b_update.add_argument("y", type=float)
    b_remove = b_sub.add_parser("remove")
    b_remove.add_argument("mac")
    p_beacons.set_defaults(func=run_beacons)

    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    # no sub-command: start the listener
    if not hasattr(args, "func"):
        return run_mqtt(args)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
