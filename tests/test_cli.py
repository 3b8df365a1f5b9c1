"""Integration tests for the btprint command line"""
import pytest
import sys
import os
from unittest.mock import MagicMock, patch, mock_open

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import btprint_cli
from btprint_cli import build_arg_parser, build_backend, main
from escpos_commands import PrintRequest
from print_session import ErrorKind, PrintResult
from printer_discovery import (
    Peripheral,
    BleScanAdapter,
    BluezAdapter,
    SerialPortAdapter,
    BluetoothDisabledError,
)


class TestBuildBackend:
    """Tests for build_backend"""

    @pytest.mark.unit
    def test_rfcomm_backend(self):
        """Test that rfcomm uses BlueZ and the configured channel"""
        args = build_arg_parser().parse_args(["--backend", "rfcomm", "--channel", "3", "devices"])
        adapter, connect = build_backend(args)

        assert isinstance(adapter, BluezAdapter)
        assert connect.func is btprint_cli.connect_rfcomm
        assert connect.keywords == {"channel": 3}

    @pytest.mark.unit
    def test_serial_backend(self):
        """Test that serial uses pyserial ports and the baud rate"""
        args = build_arg_parser().parse_args(["--backend", "serial", "--baudrate", "19200", "devices"])
        adapter, connect = build_backend(args)

        assert isinstance(adapter, SerialPortAdapter)
        assert connect.keywords == {"baudrate": 19200}

    @pytest.mark.unit
    def test_ble_backend(self):
        """Test that ble uses a scan adapter and the write UUID"""
        args = build_arg_parser().parse_args(
            ["--backend", "ble", "--write-uuid", " ABCD-1234 ", "--timeout", "2", "devices"]
        )
        adapter, connect = build_backend(args)

        assert isinstance(adapter, BleScanAdapter)
        assert adapter.timeout == 2.0
        assert connect.keywords == {"write_uuid": "abcd-1234"}

    @pytest.mark.unit
    def test_rejects_unknown_backend(self):
        """Test that argparse rejects unknown backends"""
        with pytest.raises(SystemExit):
            build_arg_parser().parse_args(["--backend", "usb", "devices"])


class TestDevicesCommand:
    """Tests for the devices command"""

    @pytest.mark.integration
    def test_lists_devices_and_marks_printers(self, capsys):
        """Test that printers are marked with '*'"""
        adapter = MagicMock()
        adapter.paired_devices.return_value = [
            Peripheral("AA:AA:AA:AA:AA:AA", "Canon Office"),
            Peripheral("BB:BB:BB:BB:BB:BB", "XPrinter T80"),
        ]

        with patch("btprint_cli.build_backend", return_value=(adapter, MagicMock())):
            code = main(["devices"])

        out = capsys.readouterr().out
        assert code == 0
        assert "* BB:BB:BB:BB:BB:BB" in out
        assert "  AA:AA:AA:AA:AA:AA" in out

    @pytest.mark.integration
    def test_no_devices(self, capsys):
        """Test the message when nothing is paired"""
        adapter = MagicMock()
        adapter.paired_devices.return_value = []

        with patch("btprint_cli.build_backend", return_value=(adapter, MagicMock())):
            code = main(["devices"])

        assert code == 0
        assert "No paired devices found" in capsys.readouterr().out

    @pytest.mark.integration
    def test_disabled_radio(self, capsys):
        """Test that adapter errors are printed and exit 1"""
        adapter = MagicMock()
        adapter.check_available.side_effect = BluetoothDisabledError("Bluetooth is not enabled")

        with patch("btprint_cli.build_backend", return_value=(adapter, MagicMock())):
            code = main(["devices"])

        assert code == 1
        assert "Bluetooth is not enabled" in capsys.readouterr().err


class TestPrintCommand:
    """Tests for the print command"""

    @pytest.mark.integration
    def test_prints_message(self, capsys):
        """Test that --message builds the request and reports success"""
        with patch("btprint_cli.build_backend", return_value=("adapter", "connect")), \
                patch("btprint_cli.bluetooth_print", return_value=PrintResult.success("ok")) as mock_print:
            code = main(["print", "--message", "Hello", "--width", "1", "--height", "1"])

        assert code == 0
        request = mock_print.call_args[0][0]
        assert request == PrintRequest(text="Hello", width_scale=1, height_scale=1, cut=True)
        assert mock_print.call_args[1]["address"] is None
        assert "ok" in capsys.readouterr().out

    @pytest.mark.integration
    def test_no_text_prints_self_test(self):
        """Test that print without text sends a request with text None"""
        with patch("btprint_cli.build_backend", return_value=("adapter", "connect")), \
                patch("btprint_cli.bluetooth_print", return_value=PrintResult.success("ok")) as mock_print:
            main(["print"])

        assert mock_print.call_args[0][0].text is None

    @pytest.mark.integration
    def test_reads_file(self):
        """Test that --file contents are printed"""
        with patch("btprint_cli.build_backend", return_value=("adapter", "connect")), \
                patch("btprint_cli.bluetooth_print", return_value=PrintResult.success("ok")) as mock_print, \
                patch("builtins.open", mock_open(read_data="Content from file")):
            main(["print", "--file", "receipt.txt", "--no-cut"])

        request = mock_print.call_args[0][0]
        assert request.text == "Content from file"
        assert request.cut is False

    @pytest.mark.integration
    def test_missing_file_exits(self):
        """Test that an unreadable file exits with 1"""
        with patch("builtins.open", side_effect=OSError("No such file")):
            with pytest.raises(SystemExit) as exc_info:
                main(["print", "--file", "missing.txt"])

        assert exc_info.value.code == 1

    @pytest.mark.integration
    def test_invalid_scale_exits(self):
        """Test that an out-of-range size exits with 1"""
        with pytest.raises(SystemExit) as exc_info:
            main(["print", "--message", "x", "--width", "9"])

        assert exc_info.value.code == 1

    @pytest.mark.integration
    def test_failure_is_reported(self, capsys):
        """Test that a failed print prints the error kind and exits 1"""
        failure = PrintResult.failure(ErrorKind.NO_PRINTER_FOUND, "No printer devices found.")

        with patch("btprint_cli.build_backend", return_value=("adapter", "connect")), \
                patch("btprint_cli.bluetooth_print", return_value=failure):
            code = main(["print"])

        assert code == 1
        assert "ERROR [NO_PRINTER_FOUND]: No printer devices found." in capsys.readouterr().err

    @pytest.mark.integration
    def test_address_is_passed_through(self):
        """Test that --address is forwarded to bluetooth_print"""
        with patch("btprint_cli.build_backend", return_value=("adapter", "connect")), \
                patch("btprint_cli.bluetooth_print", return_value=PrintResult.success("ok")) as mock_print:
            main(["print", "--address", "00:11:22:33:44:55"])

        assert mock_print.call_args[1]["address"] == "00:11:22:33:44:55"


class TestCallCommand:
    """Tests for the call command"""

    @pytest.mark.integration
    def test_dispatches_with_json_arguments(self):
        """Test that --args JSON is passed to dispatch"""
        with patch("btprint_cli.build_backend", return_value=("adapter", "connect")), \
                patch("btprint_cli.dispatch", return_value=PrintResult.success("ok")) as mock_dispatch:
            code = main(["call", "bluetoothPrint", "--args", '{"text": "Hi"}'])

        assert code == 0
        mock_dispatch.assert_called_once_with(
            "bluetoothPrint", {"text": "Hi"}, "adapter", "connect", address=None
        )

    @pytest.mark.integration
    def test_invalid_json_exits(self):
        """Test that malformed --args exits with 1"""
        with pytest.raises(SystemExit) as exc_info:
            main(["call", "bluetoothPrint", "--args", "{not json"])

        assert exc_info.value.code == 1

    @pytest.mark.integration
    def test_non_object_json_exits(self):
        """Test that --args must be an object"""
        with pytest.raises(SystemExit):
            main(["call", "bluetoothPrint", "--args", "[1, 2]"])
