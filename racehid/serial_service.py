"""Building serial-number write commands and checking the device's reply."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from racehid.command import RaceCommandError, parse_hex_string
from racehid.service import RaceServiceError
from racehid.transport import TransportError

LogListener = Callable[[str], None]

WRITE_TIMEOUT_MS = 2000

_RACE_CHANNEL = 0x05
_RACE_RESPONSE_TYPE = 0x5B


class SerialWriteError(Exception):
    """Raised when a serial number cannot be written or the device rejects it."""


class _RaceService(Protocol):
    def request_response(self, race_cmd: bytes, target: int, timeout_ms: int) -> bytes: ...


class SerialNumberService:
    """Writes serial numbers to a device through RACE commands."""

    def __init__(self, race_service: _RaceService) -> None:
        self._race_service = race_service
        self._log_listeners: list[LogListener] = []

    def add_log_listener(self, callback: LogListener) -> None:
        self._log_listeners.append(callback)

    def format_serial(self, prefix: str, value: int, width: int) -> str:
        """Prefix followed by ``value`` zero-padded to ``width`` digits."""
        digits = str(value)
        if width >= 0:
            digits = digits.rjust(width, "0")
        else:
            digits = digits.ljust(-width, "0")
        return f"{prefix}{digits}"

    def build_cmd_from_template(self, hex_template: str, serial: str) -> bytes:
        """Fill ``{SERIAL_ASCII}`` / ``{SERIAL_HEX}`` in a hex template and parse it.

        Raises RaceCommandError when the result is not valid hex bytes.
        """
        ascii_hex = serial.encode("utf-8").hex(" ").upper()
        text = hex_template.replace("{SERIAL_ASCII}", ascii_hex)
        text = text.replace("{SERIAL_HEX}", serial)
        return parse_hex_string(text)

    def write_serial_by_template(self, hex_template: str, serial: str, target: int) -> None:
        """Send the serial write command and verify the device accepted it."""
        try:
            cmd = self.build_cmd_from_template(hex_template, serial)
        except RaceCommandError as exc:
            raise SerialWriteError(str(exc)) from exc
        try:
            response = self._race_service.request_response(cmd, target, WRITE_TIMEOUT_MS)
        except (RaceServiceError, TransportError) as exc:
            raise SerialWriteError(str(exc)) from exc
        self.check_race_general_success(cmd, response)
        self._log("[SN] write serial done: " + serial)

    def check_race_general_success(self, request_cmd: bytes, response: bytes) -> None:
        """Raise SerialWriteError unless ``response`` is a success reply to ``request_cmd``."""
        if len(response) < 7 or len(request_cmd) < 6:
            raise SerialWriteError("RACE response/request length is too short.")
        if response[0] != _RACE_CHANNEL or response[1] != _RACE_RESPONSE_TYPE:
            raise SerialWriteError("RACE response type is not 0x5B.")
        if response[4] != request_cmd[4] or response[5] != request_cmd[5]:
            raise SerialWriteError("RACE response ID mismatch.")
        status = response[6]
        if status != 0x00:
            raise SerialWriteError(f"RACE status fail: 0x{status:02x}")

    def _log(self, line: str) -> None:
        for callback in list(self._log_listeners):
            callback(line)