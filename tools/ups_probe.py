#!/usr/bin/env python3
# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""UPS probe - read status and charge once, print what the supervisor would see.

Runs the same probe the supervisor uses (NUT or SNMP) a few times and
prints each reading, so the UPS name, SNMP host and community can be
checked before the service is started. Never issues a UPS shutdown.

Usage:
    python3 tools/ups_probe.py --ups nutdev1
    python3 tools/ups_probe.py --probe snmp --host 192.168.1.50 --count 3
    python3 tools/ups_probe.py --json
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

# Add supervisor source to path
SUPERVISOR_DIR = Path(__file__).resolve().parent.parent / "supervisor"
sys.path.insert(0, str(SUPERVISOR_DIR))

from src.config import Config, ConfigError
from src.nut_client import NUTProbe
from src.snmp_probe import SNMPProbe
from src.ups_model import PowerReading


def banner(text: str):
    width = 60
    print(f"\n{'=' * width}")
    print(f"  {text}")
    print(f"{'=' * width}")


def apply_overrides(args):
    """Map CLI flags onto the environment variables Config reads."""
    overrides = {
        "UPS_NAME": args.ups,
        "UPS_PROBE": args.probe,
        "UPS_SNMP_HOST": args.host,
        "UPS_SNMP_COMMUNITY_READ": args.community,
        "UPS_PROBE_TIMEOUT": str(args.timeout) if args.timeout else None,
    }
    for key, value in overrides.items():
        if value:
            os.environ[key] = value


async def read_once(probe) -> PowerReading:
    status = await probe.status()
    if status is None:
        return PowerReading.unreachable()
    charge = await probe.battery_charge()
    return PowerReading.from_status(status, battery_percent=charge)


async def main():
    parser = argparse.ArgumentParser(
        description="UPS Probe - read UPS status and battery charge"
    )
    parser.add_argument("--probe", choices=("nut", "snmp"),
                        help="Probe type (default: UPS_PROBE or nut)")
    parser.add_argument("--ups", help="NUT UPS name (default: UPS_NAME or nutdev1)")
    parser.add_argument("--host", help="SNMP host (default: UPS_SNMP_HOST)")
    parser.add_argument("--community", help="SNMP read community")
    parser.add_argument("--timeout", type=float, help="Per-query timeout in seconds")
    parser.add_argument("--count", type=int, default=1,
                        help="Number of readings to take (default: 1)")
    parser.add_argument("--interval", type=float, default=2.0,
                        help="Seconds between readings (default: 2)")
    parser.add_argument("--json", action="store_true", help="Print readings as JSON")
    args = parser.parse_args()

    apply_overrides(args)
    try:
        config = Config()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    probe = SNMPProbe(config) if config.probe_type == "snmp" else NUTProbe(config)

    if not args.json:
        banner("UPS Probe")
        print(f"  Probe:   {config.probe_type}")
        if config.probe_type == "snmp":
            print(f"  Host:    {config.snmp_host}:{config.snmp_port}")
        else:
            print(f"  UPS:     {config.ups_name}")
        print(f"  Timeout: {config.probe_timeout:g}s")

    readings = []
    try:
        reachable = await probe.ping()
        if not args.json:
            print(f"  Ping:    {'OK' if reachable else 'FAILED'}")

        for i in range(args.count):
            reading = await read_once(probe)
            readings.append(reading.to_dict())
            if not args.json:
                section = f"Reading {i + 1}/{args.count}"
                print(f"\n--- {section} ---")
                for k, v in reading.to_dict().items():
                    print(f"  {k}: {v}")
            if i + 1 < args.count:
                await asyncio.sleep(args.interval)

        if args.json:
            print(json.dumps({
                "reachable": reachable,
                "readings": readings,
                "health": probe.get_health(),
            }, indent=2))
        else:
            banner("Probe Health")
            for k, v in probe.get_health().items():
                print(f"  {k}: {v}")
    finally:
        probe.close()

    if not reachable:
        sys.exit(2)


if __name__ == "__main__":
    asyncio.run(main())
