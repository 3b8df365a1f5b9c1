"""
Bluetooth transports
--------------------

Each transport exposes the same connect primitive:

  connect(address, service_uuid) -> connection
  connection.write(data); connection.flush(); connection.close()

Any failure is raised as TransportError with the underlying message.

  - connect_rfcomm  classic Bluetooth RFCOMM socket (Linux, stdlib socket)
  - connect_serial  a bound Bluetooth serial port (pyserial)
  - connect_ble     BLE GATT write characteristic (bleak)
"""

import asyncio
import errno
import logging
import socket
from typing import Optional

import serial
from bleak import BleakClient
from bleak.exc import BleakError

logger = logging.getLogger(__name__)


# Serial Port Profile, reserved by the Bluetooth SIG
SPP_UUID = "00001101-0000-1000-8000-00805f9b34fb"

# Receipt printers publish SPP on RFCOMM channel 1
SERVICE_CHANNELS = {SPP_UUID: 1}

DEFAULT_BAUDRATE = 9600
SERIAL_TIMEOUT_SEC = 2
SERIAL_WRITE_TIMEOUT_SEC = 5

# BLE communication constants
DEFAULT_CHUNK_SIZE = 180
DEFAULT_WRITE_DELAY_SEC = 0.02


class TransportError(Exception):
    """A connect, write, flush or close failed at the transport level."""


# ---------------------------------------------------------------------
# RFCOMM
# ---------------------------------------------------------------------


class RfcommConnection:
    def __init__(self, sock):
        self._sock = sock
        self._stream = sock.makefile("wb")

    def write(self, data: bytes):
        try:
            self._stream.write(data)
        except (OSError, ValueError) as e:
            raise TransportError(str(e)) from e

    def flush(self):
        try:
            self._stream.flush()
        except (OSError, ValueError) as e:
            raise TransportError(str(e)) from e

    def close(self):
        try:
            try:
                self._stream.close()
            finally:
                self._sock.close()
        except OSError as e:
            raise TransportError(str(e)) from e


def connect_rfcomm(address: str, service_uuid: str, channel: Optional[int] = None) -> RfcommConnection:
    family = getattr(socket, "AF_BLUETOOTH", None)
    proto = getattr(socket, "BTPROTO_RFCOMM", None)
    if family is None or proto is None:
        raise TransportError("RFCOMM sockets are not supported on this platform")

    if channel is None:
        channel = SERVICE_CHANNELS.get(service_uuid.lower())
        if channel is None:
            raise TransportError(f"No RFCOMM channel known for service {service_uuid}")

    try:
        sock = socket.socket(family, socket.SOCK_STREAM, proto)
    except OSError as e:
        raise TransportError(f"Cannot open RFCOMM socket: {e}") from e

    try:
        sock.connect((address, channel))
    except OSError as e:
        sock.close()
        if e.errno == errno.EHOSTDOWN:
            raise TransportError(
                f"Cannot connect to Bluetooth device {address}: device is off or out of range"
            ) from e
        if e.errno == errno.ECONNREFUSED:
            raise TransportError(f"Connection refused by device {address}") from e
        raise TransportError(str(e)) from e

    logger.debug("RFCOMM connected to %s on channel %d", address, channel)
    return RfcommConnection(sock)


# ---------------------------------------------------------------------
# Serial port
# ---------------------------------------------------------------------


class SerialConnection:
    def __init__(self, port: serial.Serial):
        self._port = port

    def write(self, data: bytes):
        try:
            self._port.write(data)
        except serial.SerialException as e:
            raise TransportError(str(e)) from e

    def flush(self):
        try:
            self._port.flush()
        except serial.SerialException as e:
            raise TransportError(str(e)) from e

    def close(self):
        try:
            self._port.close()
        except (serial.SerialException, OSError) as e:
            raise TransportError(str(e)) from e


def connect_serial(address: str, service_uuid: str, baudrate: int = DEFAULT_BAUDRATE) -> SerialConnection:
    """``address`` is the port path, e.g. /dev/cu.XPrinter or /dev/rfcomm0."""
    try:
        port = serial.Serial(
            port=address,
            baudrate=baudrate,
            timeout=SERIAL_TIMEOUT_SEC,
            write_timeout=SERIAL_WRITE_TIMEOUT_SEC,
        )
    except (serial.SerialException, OSError, ValueError) as e:
        raise TransportError(str(e)) from e
    logger.debug("Opened serial port %s at %d baud", address, baudrate)
    return SerialConnection(port)


# ---------------------------------------------------------------------
# BLE
# ---------------------------------------------------------------------


async def write_long(
    client: BleakClient,
    char_uuid: str,
    data: bytes,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    delay: float = DEFAULT_WRITE_DELAY_SEC,
):
    """Write a long buffer to a GATT characteristic in chunks."""
    for i in range(0, len(data), chunk_size):
        chunk = data[i : i + chunk_size]
        await client.write_gatt_char(char_uuid, chunk, response=False)
        if delay:
            await asyncio.sleep(delay)


class BleConnection:
    """
    Synchronous wrapper around BleakClient.

    Writes are buffered until flush(), which sends them in chunks to the
    write characteristic. The client runs on a private event loop that
    lives as long as the connection.
    """

    def __init__(
        self,
        address: str,
        write_uuid: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        delay: float = DEFAULT_WRITE_DELAY_SEC,
    ):
        self.write_uuid = write_uuid
        self.chunk_size = chunk_size
        self.delay = delay
        self._loop = asyncio.new_event_loop()
        self._client = BleakClient(address)
        self._buffer = bytearray()

    def _run(self, coro):
        try:
            return self._loop.run_until_complete(coro)
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            raise TransportError(str(e) or type(e).__name__) from e

    def open(self):
        try:
            self._run(self._client.connect())
        except Exception:
            self._loop.close()
            raise

    def write(self, data: bytes):
        self._buffer += data

    def flush(self):
        data, self._buffer = bytes(self._buffer), bytearray()
        self._run(write_long(self._client, self.write_uuid, data, self.chunk_size, self.delay))

    def close(self):
        try:
            self._run(self._client.disconnect())
        finally:
            self._loop.close()


def connect_ble(
    address: str,
    service_uuid: str,
    write_uuid: Optional[str] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> BleConnection:
    # BLE printers expose a vendor write characteristic instead of SPP
    if not write_uuid:
        raise TransportError("No write characteristic UUID configured for BLE")
    try:
        connection = BleConnection(address, write_uuid.strip().lower(), chunk_size=chunk_size)
    except (BleakError, ValueError) as e:
        raise TransportError(str(e)) from e
    connection.open()
    logger.debug("BLE connected to %s", address)
    return connection
