"""
Paired printer discovery
------------------------

Picks the printer to talk to from the host's paired Bluetooth devices.

Selection is a name heuristic: a device is a printer candidate when its
lower-cased name contains one of PRINTER_KEYWORDS. The first candidate in
enumeration order wins; nothing is sorted.

Enumeration comes from one of three adapters:
  - BluezAdapter       bonded devices from `bluetoothctl` (Linux)
  - SerialPortAdapter  bound Bluetooth serial ports, via pyserial
  - BleScanAdapter     nearby BLE devices, via bleak
"""

import asyncio
import logging
import subprocess
from dataclasses import dataclass
from typing import Iterable, List, Optional

from bleak import BleakScanner
from bleak.exc import (
    BleakBluetoothNotAvailableError,
    BleakBluetoothNotAvailableReason,
    BleakError,
)
from serial.tools import list_ports

logger = logging.getLogger(__name__)


PRINTER_KEYWORDS = (
    "printer",
    "thermal",
    "pos",
    "receipt",
    "v510",
    "hosoton",
    "ktp",
    "rpp",
    "mpt",
    "goojprt",
    "zjiang",
    "xprinter",
)

BLUETOOTHCTL = "bluetoothctl"
BLUETOOTHCTL_TIMEOUT_SEC = 10
DEFAULT_SCAN_TIMEOUT_SEC = 5.0


class BluetoothUnavailableError(Exception):
    """No Bluetooth hardware (or no way to reach it) on this host."""


class BluetoothDisabledError(Exception):
    """Bluetooth hardware is present but powered off."""


@dataclass(frozen=True)
class Peripheral:
    address: str
    name: Optional[str] = None
    bonded: bool = True

    def __str__(self):
        return f"{self.name or '<unnamed>'} ({self.address})"


# ---------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------


def is_printer_name(name: Optional[str]) -> bool:
    if not name:
        return False
    lowered = name.lower()
    return any(keyword in lowered for keyword in PRINTER_KEYWORDS)


def printer_candidates(devices: Iterable[Peripheral]) -> List[Peripheral]:
    return [d for d in devices if is_printer_name(d.name)]


def select_printer(devices: Iterable[Peripheral]) -> Optional[Peripheral]:
    """Return the first printer candidate in ``devices``, or None."""
    for device in devices:
        if is_printer_name(device.name):
            logger.debug("Found printer device: %s", device)
            return device
    return None


# ---------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------


def _run_bluetoothctl(*args: str) -> str:
    try:
        result = subprocess.run(
            [BLUETOOTHCTL, *args],
            capture_output=True,
            text=True,
            timeout=BLUETOOTHCTL_TIMEOUT_SEC,
            check=False,
        )
    except FileNotFoundError as e:
        raise BluetoothUnavailableError(f"{BLUETOOTHCTL} not found; is BlueZ installed?") from e
    except subprocess.TimeoutExpired as e:
        raise BluetoothUnavailableError(f"{BLUETOOTHCTL} did not respond") from e
    return result.stdout


def parse_paired_devices(output: str) -> List[Peripheral]:
    """Parse ``Device <address> <name>`` lines from bluetoothctl."""
    devices = []
    for line in output.splitlines():
        parts = line.strip().split(" ", 2)
        if len(parts) < 2 or parts[0] != "Device":
            continue
        name = parts[2].strip() if len(parts) == 3 else None
        devices.append(Peripheral(address=parts[1], name=name or None))
    return devices


class BluezAdapter:
    """Bonded devices known to the BlueZ daemon."""

    def check_available(self):
        output = _run_bluetoothctl("show")
        if "No default controller available" in output or "Controller" not in output:
            raise BluetoothUnavailableError("Bluetooth is not available on this device")
        if "Powered: no" in output:
            raise BluetoothDisabledError("Bluetooth is not enabled")

    def paired_devices(self) -> List[Peripheral]:
        devices = parse_paired_devices(_run_bluetoothctl("devices", "Paired"))
        logger.debug("bluetoothctl reports %d paired device(s)", len(devices))
        return devices


class SerialPortAdapter:
    """
    Serial ports bound to paired devices. macOS creates /dev/cu.<name> for
    every paired SPP device; on Linux use `rfcomm bind` to get /dev/rfcommN.
    """

    def check_available(self):
        # Ports exist independently of the radio state; nothing to probe.
        return None

    def paired_devices(self) -> List[Peripheral]:
        devices = []
        for port in list_ports.comports():
            description = port.description
            if not description or description == "n/a":
                description = port.name
            devices.append(Peripheral(address=port.device, name=description))
        return devices


class BleScanAdapter:
    """Nearby BLE peripherals. These are not necessarily bonded."""

    def __init__(self, timeout: float = DEFAULT_SCAN_TIMEOUT_SEC):
        self.timeout = timeout
        self._devices = None

    async def _discover(self):
        return await BleakScanner.discover(timeout=self.timeout)

    def check_available(self):
        # bleak only reports adapter problems when a scan starts
        try:
            self._devices = asyncio.run(self._discover())
        except BleakBluetoothNotAvailableError as e:
            if e.reason == BleakBluetoothNotAvailableReason.POWERED_OFF:
                raise BluetoothDisabledError(f"Bluetooth is not enabled: {e.args[0]}") from e
            raise BluetoothUnavailableError(f"Bluetooth is not available: {e.args[0]}") from e
        except (BleakError, OSError) as e:
            raise BluetoothUnavailableError(f"Bluetooth is not available: {e}") from e

    def paired_devices(self) -> List[Peripheral]:
        if self._devices is None:
            self.check_available()
        devices = [Peripheral(address=d.address, name=d.name, bonded=False) for d in self._devices]
        self._devices = None
        return devices
