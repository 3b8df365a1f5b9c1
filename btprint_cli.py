#!/usr/bin/env python3
"""
Bluetooth ESC/POS receipt printer CLI
-------------------------------------

Prints text on a paired thermal receipt printer. The printer is picked
from the paired devices by name (XPrinter, GOOJPRT, "POS-58", ...) unless
an address is given.

Usage examples:

  # 1) List paired devices, printers marked with '*'
  python3 btprint_cli.py devices

  # 2) Print the self-test page
  python3 btprint_cli.py print

  # 3) Print a message / a file at normal size without cutting
  python3 btprint_cli.py print --message "Hello" --width 1 --height 1 --no-cut
  python3 btprint_cli.py print --file receipt.txt

  # 4) macOS: use the bound serial port instead of a raw RFCOMM socket
  python3 btprint_cli.py --backend serial print --message "Hello"

  # 5) BLE-only printers need the write characteristic
  BTPRINT_WRITE_UUID=xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx \
    python3 btprint_cli.py --backend ble print

  # 6) Call an operation by name with JSON arguments
  python3 btprint_cli.py call bluetoothPrint --args '{"text": "Hi", "cut": false}'

Settings can also come from the environment: BTPRINT_BACKEND,
BTPRINT_ADDRESS, BTPRINT_RFCOMM_CHANNEL, BTPRINT_BAUDRATE,
BTPRINT_WRITE_UUID, BTPRINT_SCAN_TIMEOUT, BTPRINT_NO_CUT.
"""

import argparse
import functools
import json
import logging
import os
import sys

from bt_transport import DEFAULT_BAUDRATE, connect_ble, connect_rfcomm, connect_serial
from escpos_commands import DEFAULT_SCALE, MAX_SCALE, MIN_SCALE, PrintRequest
from print_session import bluetooth_print, dispatch
from printer_discovery import (
    BleScanAdapter,
    BluetoothDisabledError,
    BluetoothUnavailableError,
    BluezAdapter,
    SerialPortAdapter,
    is_printer_name,
)


# ---------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------

BACKENDS = ("rfcomm", "serial", "ble")

DEFAULT_BACKEND = os.getenv("BTPRINT_BACKEND", "rfcomm").strip().lower()
DEFAULT_ADDRESS = os.getenv("BTPRINT_ADDRESS", "").strip()
DEFAULT_RFCOMM_CHANNEL = int(os.getenv("BTPRINT_RFCOMM_CHANNEL", "1"))
DEFAULT_SERIAL_BAUDRATE = int(os.getenv("BTPRINT_BAUDRATE", str(DEFAULT_BAUDRATE)))
DEFAULT_WRITE_UUID = os.getenv("BTPRINT_WRITE_UUID", "").strip().lower()
DEFAULT_SCAN_TIMEOUT = float(os.getenv("BTPRINT_SCAN_TIMEOUT", "5.0"))

BTPRINT_NO_CUT = os.getenv("BTPRINT_NO_CUT", "0").strip()
DEFAULT_NO_CUT = BTPRINT_NO_CUT in ("1", "true", "TRUE", "yes", "on")

LOG_FORMAT = "%(levelname)s: %(message)s"


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def build_backend(args):
    """Return (adapter, connect) for the selected backend."""
    backend = args.backend
    if backend == "rfcomm":
        return BluezAdapter(), functools.partial(connect_rfcomm, channel=args.channel)
    if backend == "serial":
        return SerialPortAdapter(), functools.partial(connect_serial, baudrate=args.baudrate)
    if backend == "ble":
        write_uuid = (args.write_uuid or DEFAULT_WRITE_UUID).strip().lower()
        return BleScanAdapter(timeout=args.timeout), functools.partial(connect_ble, write_uuid=write_uuid)
    print(f"Unknown backend '{backend}'. Choose one of: {', '.join(BACKENDS)}", file=sys.stderr)
    sys.exit(1)


def report(result) -> int:
    if result.ok:
        print(result.message)
        return 0
    print(f"ERROR [{result.kind.value}]: {result.detail}", file=sys.stderr)
    return 1


# ---------------------------------------------------------------------
# Commands: devices / print / call
# ---------------------------------------------------------------------


def do_devices(args) -> int:
    adapter, _ = build_backend(args)
    try:
        adapter.check_available()
        devices = adapter.paired_devices()
    except (BluetoothUnavailableError, BluetoothDisabledError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if not devices:
        print("No paired devices found.")
        return 0

    for d in devices:
        marker = "*" if is_printer_name(d.name) else " "
        print(f"{marker} {d.address}  |  name={d.name!r}")
    return 0


def read_text(args):
    if args.file:
        try:
            with open(args.file, "r", encoding="utf-8") as f:
                return f.read()
        except (OSError, IOError) as e:
            print(f"Error reading file '{args.file}': {e}", file=sys.stderr)
            sys.exit(1)
    return args.message


def do_print(args) -> int:
    text = read_text(args)
    try:
        request = PrintRequest(
            text=text,
            width_scale=args.width,
            height_scale=args.height,
            cut=not (args.no_cut or DEFAULT_NO_CUT),
        )
    except ValueError as e:
        print(f"Invalid print options: {e}", file=sys.stderr)
        sys.exit(1)

    adapter, connect = build_backend(args)
    address = args.address or DEFAULT_ADDRESS or None
    if address:
        print(f"Printing to {address}...")
    else:
        print("Looking for a paired printer...")
    return report(bluetooth_print(request, adapter, connect, address=address))


def do_call(args) -> int:
    try:
        arguments = json.loads(args.args) if args.args else {}
    except json.JSONDecodeError as e:
        print(f"Invalid --args JSON: {e}", file=sys.stderr)
        sys.exit(1)
    if not isinstance(arguments, dict):
        print("--args must be a JSON object", file=sys.stderr)
        sys.exit(1)

    adapter, connect = build_backend(args)
    address = args.address or DEFAULT_ADDRESS or None
    return report(dispatch(args.method, arguments, adapter, connect, address=address))


# ---------------------------------------------------------------------
# CLI setup
# ---------------------------------------------------------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Bluetooth ESC/POS receipt printer CLI")
    p.add_argument(
        "--backend",
        choices=BACKENDS,
        default=DEFAULT_BACKEND if DEFAULT_BACKEND in BACKENDS else "rfcomm",
        help="Transport: rfcomm socket, bound serial port, or BLE (default: env BTPRINT_BACKEND or rfcomm)",
    )
    p.add_argument("--channel", type=int, default=DEFAULT_RFCOMM_CHANNEL, help="RFCOMM channel (default 1)")
    p.add_argument(
        "--baudrate",
        type=int,
        default=DEFAULT_SERIAL_BAUDRATE,
        help=f"Serial port baud rate (default {DEFAULT_BAUDRATE})",
    )
    p.add_argument("--write-uuid", help="BLE write characteristic UUID")
    p.add_argument("--timeout", type=float, default=DEFAULT_SCAN_TIMEOUT, help="BLE scan duration in seconds")
    p.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    sub = p.add_subparsers(dest="command", required=True)

    # devices
    pd = sub.add_parser("devices", help="List paired devices; printers are marked with '*'")
    pd.set_defaults(func=do_devices)

    # print
    pp = sub.add_parser("print", help="Print text (default: self-test page)")
    pp.add_argument("--address", help="Printer address or port; skips auto-selection")
    group = pp.add_mutually_exclusive_group()
    group.add_argument("--file", help="Text file to print")
    group.add_argument("--message", help="Inline text to print")
    pp.add_argument(
        "--width",
        type=int,
        default=DEFAULT_SCALE,
        help=f"Character width multiplier {MIN_SCALE}-{MAX_SCALE} (default {DEFAULT_SCALE})",
    )
    pp.add_argument(
        "--height",
        type=int,
        default=DEFAULT_SCALE,
        help=f"Character height multiplier {MIN_SCALE}-{MAX_SCALE} (default {DEFAULT_SCALE})",
    )
    pp.add_argument(
        "--no-cut",
        action="store_true",
        help="Do not send the paper cut command. Can also set env BTPRINT_NO_CUT=1.",
    )
    pp.set_defaults(func=do_print)

    # call
    pc = sub.add_parser("call", help="Invoke an operation by name, e.g. bluetoothPrint")
    pc.add_argument("method", help="Operation name")
    pc.add_argument("--args", help="JSON object with the operation arguments")
    pc.add_argument("--address", help="Printer address or port; skips auto-selection")
    pc.set_defaults(func=do_call)

    return p


def main(argv=None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted, exiting.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
