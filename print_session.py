"""
Print session and the bluetoothPrint entry point
------------------------------------------------

A PrintSession drives one connection through

  IDLE -> CONNECTING -> ENCODING -> SENDING -> CLOSING -> DONE
                 \\                      \\
                  +----> FAILED <--------+

and reports a PrintResult. Sessions are single use; there is no retry.

bluetooth_print() adds the adapter checks and printer selection in front
of a session. dispatch() maps an operation name to its handler.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from bt_transport import SPP_UUID, TransportError
from escpos_commands import PrintRequest, build_command_stream
from printer_discovery import (
    BluetoothDisabledError,
    BluetoothUnavailableError,
    Peripheral,
    select_printer,
)

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    BLUETOOTH_NOT_AVAILABLE = "BLUETOOTH_NOT_AVAILABLE"
    BLUETOOTH_NOT_ENABLED = "BLUETOOTH_NOT_ENABLED"
    NO_PRINTER_FOUND = "NO_PRINTER_FOUND"
    CONNECT_ERROR = "CONNECT_ERROR"
    WRITE_ERROR = "WRITE_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"


class SessionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ENCODING = "encoding"
    SENDING = "sending"
    CLOSING = "closing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class PrintResult:
    ok: bool
    message: str = ""
    kind: Optional[ErrorKind] = None
    detail: str = ""

    @classmethod
    def success(cls, message: str) -> "PrintResult":
        return cls(ok=True, message=message)

    @classmethod
    def failure(cls, kind: ErrorKind, detail: str) -> "PrintResult":
        return cls(ok=False, kind=kind, detail=detail)


SUCCESS_MESSAGE = "Print successful via Bluetooth"
NO_PRINTER_MESSAGE = "No printer devices found. Please pair your printer first."


def _close_quietly(connection):
    try:
        connection.close()
    except Exception as e:
        logger.warning("Error closing printer connection: %s", e)


class PrintSession:
    """One connect-send-close cycle against ``device``."""

    def __init__(self, device: Peripheral, connect: Callable):
        self.device = device
        self._connect = connect
        self.state = SessionState.IDLE
        self.result = None

    def _fail(self, kind: ErrorKind, detail: str) -> PrintResult:
        logger.error("%s: %s", kind.value, detail)
        self.state = SessionState.FAILED
        self.result = PrintResult.failure(kind, detail)
        return self.result

    def run(self, request: PrintRequest) -> PrintResult:
        if self.state is not SessionState.IDLE:
            raise RuntimeError("PrintSession objects are single use")

        self.state = SessionState.CONNECTING
        logger.info("Connecting to printer: %s", self.device)
        try:
            connection = self._connect(self.device.address, SPP_UUID)
        except TransportError as e:
            return self._fail(ErrorKind.CONNECT_ERROR, f"Failed to connect: {e}")

        self.state = SessionState.ENCODING
        stream = build_command_stream(request)

        self.state = SessionState.SENDING
        try:
            connection.write(stream)
            connection.flush()
        except TransportError as e:
            _close_quietly(connection)
            return self._fail(ErrorKind.WRITE_ERROR, f"Failed to print: {e}")
        except Exception:
            _close_quietly(connection)
            self.state = SessionState.FAILED
            raise
        logger.info("Print commands sent successfully (%d bytes)", len(stream))

        # Bytes are flushed; a failing close no longer changes the outcome.
        self.state = SessionState.CLOSING
        _close_quietly(connection)

        self.state = SessionState.DONE
        self.result = PrintResult.success(SUCCESS_MESSAGE)
        return self.result


def bluetooth_print(
    request: PrintRequest,
    adapter,
    connect: Callable,
    address: Optional[str] = None,
) -> PrintResult:
    """
    Print ``request`` on the first paired printer reported by ``adapter``.

    ``adapter`` provides check_available() and paired_devices(); ``connect``
    is a transport connect primitive. An explicit ``address`` skips the
    device selection. Never raises.
    """
    try:
        try:
            adapter.check_available()
        except BluetoothUnavailableError as e:
            return PrintResult.failure(ErrorKind.BLUETOOTH_NOT_AVAILABLE, str(e))
        except BluetoothDisabledError as e:
            return PrintResult.failure(ErrorKind.BLUETOOTH_NOT_ENABLED, str(e))

        if address:
            device = Peripheral(address=address)
        else:
            logger.debug("Scanning for printer devices...")
            device = select_printer(adapter.paired_devices())
            if device is None:
                return PrintResult.failure(ErrorKind.NO_PRINTER_FOUND, NO_PRINTER_MESSAGE)

        return PrintSession(device, connect).run(request)
    except Exception as e:
        logger.exception("Bluetooth print error")
        return PrintResult.failure(ErrorKind.UNEXPECTED_ERROR, f"Bluetooth error: {e}")


# ---------------------------------------------------------------------
# Method dispatch
# ---------------------------------------------------------------------


def request_from_arguments(arguments: dict) -> PrintRequest:
    """Build a PrintRequest from call arguments (``text``, ``widthScale``, ...)."""
    kwargs = {"text": arguments.get("text")}
    if arguments.get("widthScale") is not None:
        kwargs["width_scale"] = arguments["widthScale"]
    if arguments.get("heightScale") is not None:
        kwargs["height_scale"] = arguments["heightScale"]
    if arguments.get("cut") is not None:
        kwargs["cut"] = bool(arguments["cut"])
    return PrintRequest(**kwargs)


def handle_bluetooth_print(arguments: dict, adapter, connect: Callable, address=None) -> PrintResult:
    try:
        request = request_from_arguments(arguments or {})
    except ValueError as e:
        return PrintResult.failure(ErrorKind.UNEXPECTED_ERROR, f"Invalid arguments: {e}")
    return bluetooth_print(request, adapter, connect, address=address)


METHOD_HANDLERS = {
    "bluetoothPrint": handle_bluetooth_print,
}


def dispatch(method: str, arguments: dict, adapter, connect: Callable, address=None) -> PrintResult:
    handler = METHOD_HANDLERS.get(method)
    if handler is None:
        return PrintResult.failure(ErrorKind.NOT_IMPLEMENTED, f"Unknown method: {method}")
    return handler(arguments, adapter, connect, address=address)
