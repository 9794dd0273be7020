"""Sending RACE commands over a HID transport and collecting responses."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from typing import Protocol

from racehid.command import RaceCommandError, parse_hex_string, to_hex_string
from racehid.packet import HidReportConfig, PacketError, build_out_report, parse_in_report
from racehid.transport import TransportError

LogListener = Callable[[str], None]
PacketListener = Callable[[bytes, int], None]


class RaceServiceError(Exception):
    """Raised when a sequence fails or a response does not arrive."""


class _Transport(Protocol):
    def add_report_listener(self, callback: Callable[[bytes], None]) -> None: ...

    def add_error_listener(self, callback: Callable[[str], None]) -> None: ...

    def write_report(self, report: bytes) -> None: ...


class RaceService:
    """Frames RACE commands for the transport and decodes incoming reports."""

    def __init__(self, transport: _Transport, config: HidReportConfig | None = None) -> None:
        self._transport = transport
        self._cfg = config or HidReportConfig()
        self._lock = threading.Lock()
        self._log_listeners: list[LogListener] = []
        self._packet_listeners: list[PacketListener] = []
        transport.add_report_listener(self.handle_report)
        transport.add_error_listener(lambda err: self._log("[HID][ERR] " + err))

    @property
    def config(self) -> HidReportConfig:
        return self._cfg

    def set_packet_config(self, cfg: HidReportConfig) -> None:
        self._cfg = cfg

    def add_log_listener(self, callback: LogListener) -> None:
        self._log_listeners.append(callback)

    def add_packet_listener(self, callback: PacketListener) -> None:
        with self._lock:
            self._packet_listeners.append(callback)

    def send_single(self, race_cmd: bytes, target: int) -> None:
        """Send one command; transport failures raise TransportError."""
        self._transport.write_report(build_out_report(race_cmd, target, self._cfg))
        self._log(f"[TX] target=0x{target:02x} cmd={to_hex_string(race_cmd)}")

    def send_sequence(self, hex_lines: Iterable[str], target: int) -> None:
        """Send each non-blank, non-comment line as one command, stopping at the first failure."""
        for number, raw in enumerate(hex_lines, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            try:
                cmd = parse_hex_string(line)
            except RaceCommandError as exc:
                raise RaceServiceError(f"Line {number} parse failed: {exc}") from exc
            try:
                self.send_single(cmd, target)
            except TransportError as exc:
                raise RaceServiceError(f"Line {number} send failed: {exc}") from exc

    def request_response(self, race_cmd: bytes, target: int, timeout_ms: int) -> bytes:
        """Send a command and return the payload of the next RACE packet received."""
        arrived = threading.Event()
        responses: list[bytes] = []

        def on_packet(payload: bytes, _target: int) -> None:
            if not arrived.is_set():
                responses.append(payload)
                arrived.set()

        self.add_packet_listener(on_packet)
        try:
            self.send_single(race_cmd, target)
            arrived.wait(timeout_ms / 1000)
        finally:
            with self._lock:
                self._packet_listeners.remove(on_packet)

        if not responses or not responses[0]:
            raise RaceServiceError(f"RACE response timeout ({timeout_ms} ms).")
        return responses[0]

    def handle_report(self, report: bytes) -> None:
        """Decode an incoming HID report and notify packet listeners."""
        try:
            parsed = parse_in_report(report, self._cfg)
        except PacketError as exc:
            self._log(f"[RX][ERR] {exc}")
            return
        if parsed is None:
            return
        payload, target = parsed
        self._log(f"[RX] target=0x{target:02x} payload={to_hex_string(payload)}")
        with self._lock:
            listeners = list(self._packet_listeners)
        for callback in listeners:
            callback(payload, target)

    def _log(self, line: str) -> None:
        for callback in list(self._log_listeners):
            callback(line)