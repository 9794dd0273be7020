"""The serial-number station: ties HID transport, RACE services, records and printing together."""

from __future__ import annotations

import contextlib
import re
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Protocol

from racehid.command import RaceCommandError, parse_hex_string, to_hex_string
from racehid.packet import HidReportConfig
from racehid.paths import app_data_dir, app_log_dir, app_tool_data_root
from racehid.printer import PrintError, print_serial_label
from racehid.records import CsvLog, RunLog
from racehid.serial_service import SerialNumberService, SerialWriteError
from racehid.service import RaceService, RaceServiceError
from racehid.settings import SettingsError, SnModeSettings
from racehid.transport import TransportError

LogListener = Callable[[str], None]

DEFAULT_VID = 0x0E8D
DEFAULT_PID = 0x0809
TARGET_LOCAL = 0x00
TARGET_REMOTE = 0x80

MAC_READ_COMMAND = "05 5A 03 00 D5 0C 00"
MAC_READ_TIMEOUT_MS = 1500
MIN_AUTO_POLL_MS = 100

_HEX_NUMBER = re.compile(r"\s*\+?(?:0[xX])?([0-9a-fA-F]+)\s*")
_DEC_NUMBER = re.compile(r"\s*([+-]?\d+)\s*")
_U64_MAX = (1 << 64) - 1
_I32_MAX = (1 << 31) - 1


class StationError(Exception):
    """Raised when a station action cannot be carried out."""


class _Transport(Protocol):
    def add_report_listener(self, callback: Callable[[bytes], None]) -> None: ...

    def add_error_listener(self, callback: Callable[[str], None]) -> None: ...

    def write_report(self, report: bytes) -> None: ...

    def configure_input_polling(self, report_id: int, read_buffer_size: int = ...) -> None: ...

    def open(self, vid: int, pid: int) -> None: ...

    def close(self) -> None: ...

    def is_open(self) -> bool: ...

    def device_exists(self, vid: int, pid: int) -> bool: ...


def _parse_hex(text: str, limit: int) -> int | None:
    match = _HEX_NUMBER.fullmatch(text)
    if not match:
        return None
    value = int(match.group(1), 16)
    return value if value <= limit else None


def _parse_dec(text: str, low: int, high: int) -> int | None:
    match = _DEC_NUMBER.fullmatch(text)
    if not match:
        return None
    value = int(match.group(1))
    return value if low <= value <= high else None


def _stamp(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S") + f".{moment.microsecond // 1000:03d}"


def parse_usb_config(
    vid_text: str, pid_text: str, out_text: str, in_text: str
) -> tuple[int, int, HidReportConfig]:
    """Parse hex VID, PID and report ids into ``(vid, pid, config)``."""
    vid = _parse_hex(vid_text, 0xFFFF)
    pid = _parse_hex(pid_text, 0xFFFF)
    out_id = _parse_hex(out_text, 0xFFFFFFFF)
    in_id = _parse_hex(in_text, 0xFFFFFFFF)
    if vid is None or pid is None or out_id is None or in_id is None:
        raise StationError("Invalid VID/PID/Report ID input.")
    return vid, pid, HidReportConfig(out_report_id=out_id & 0xFF, in_report_id=in_id & 0xFF)


class SerialStation:
    """Sends RACE commands and writes consecutive serial numbers to devices."""

    def __init__(
        self,
        transport: _Transport,
        settings: SnModeSettings | None = None,
        data_root: Path | None = None,
    ) -> None:
        root = Path(data_root) if data_root is not None else app_tool_data_root()
        self.data_root = root
        self.data_dir = app_data_dir(root)
        self.run_log = RunLog(app_log_dir(root))
        self.csv_log = CsvLog(self.data_dir)
        self._log_listeners: list[LogListener] = []
        self._lock = threading.RLock()

        load_error = ""
        if settings is None:
            try:
                settings = SnModeSettings.load(SnModeSettings.storage_file_path(self.data_dir))
            except SettingsError as exc:
                load_error = str(exc)
                settings = SnModeSettings.defaults()
        self.settings = settings

        self.next_serial = 1
        start = _parse_dec(self.settings.sn_start, 0, _U64_MAX)
        if start is not None:
            self.next_serial = start

        self.vid = DEFAULT_VID
        self.pid = DEFAULT_PID
        self.config = HidReportConfig()
        self.target = TARGET_LOCAL
        self.auto_armed = False
        self.last_result = "Last: (no operation yet)"
        self._auto_stop = threading.Event()
        self._auto_thread: threading.Thread | None = None

        self._transport = transport
        self.race_service = RaceService(transport, self.config)
        self.serial_service = SerialNumberService(self.race_service)
        self.race_service.add_log_listener(self._log)
        self.serial_service.add_log_listener(self._log)

        if load_error:
            self._log(f"[WARN] SN settings: {load_error}")
        self._log(f"[INFO] Data files root: {root} (subdirs Log, Data)")

    def add_log_listener(self, callback: LogListener) -> None:
        self._log_listeners.append(callback)

    def apply_usb_config(self, vid: int, pid: int, out_report_id: int, in_report_id: int) -> None:
        """Use these ids for the device and for framing reports."""
        self.vid = vid
        self.pid = pid
        self.config = HidReportConfig(
            out_report_id=out_report_id,
            in_report_id=in_report_id,
            report_size=self.config.report_size,
        )
        self.race_service.set_packet_config(self.config)

    def update_settings(self, settings: SnModeSettings) -> None:
        """Adopt new settings, store them and move the next serial up to the start."""
        self.settings = settings
        path = SnModeSettings.storage_file_path(self.data_dir)
        try:
            settings.save(path)
        except SettingsError as exc:
            self._log(f"[ERR] Save SN settings: {exc}")
        else:
            self._log(f"[INFO] SN settings saved to {path}")
        start = _parse_dec(settings.sn_start, 0, _U64_MAX)
        if start is not None and self.next_serial < start:
            self.next_serial = start

    def validate_serial_range(self) -> tuple[int, int]:
        """Return ``(start, width)`` from the settings, raising on invalid values."""
        start = _parse_dec(self.settings.sn_start, 0, _U64_MAX)
        width = _parse_dec(self.settings.sn_width, -_I32_MAX - 1, _I32_MAX)
        if start is None or width is None or width <= 0:
            raise StationError("Invalid start number or width.")
        if self.next_serial < start:
            self.next_serial = start
        return start, width

    def build_serial_string(self, serial_value: int, width: int) -> str:
        """Compose prefix, enabled codes and the zero-padded number."""
        number = str(serial_value).rjust(width, "0")
        if len(number) != width:
            raise StationError("Serial width overflow.")
        s = self.settings
        parts = [s.sn_prefix.strip()]
        if s.use_plant:
            parts.append(s.plant_code)
        if s.use_manufacturer:
            parts.append(s.manufacturer_code)
        if s.use_product:
            parts.append(s.product_code)
        parts.append(number)
        if s.use_month:
            parts.append(s.month_code)
        if s.use_year:
            parts.append(s.year_code)
        return "".join(parts)

    def preview(self) -> tuple[str, str]:
        """``(command_text, summary)`` for the next serial to be written."""
        try:
            _, width = self.validate_serial_range()
        except StationError as exc:
            return str(exc), ""
        try:
            serial = self.build_serial_string(self.next_serial, width)
        except StationError as exc:
            return str(exc), ""
        summary = f"Next serial string: {serial}"
        try:
            cmd = self.serial_service.build_cmd_from_template(self.settings.sn_template, serial)
        except RaceCommandError as exc:
            return str(exc) or "(empty command)", summary
        return to_hex_string(cmd), summary

    def read_mac_address(self) -> str:
        """Ask the device for its Bluetooth address, formatted ``AA:BB:...``."""
        cmd = parse_hex_string(MAC_READ_COMMAND)
        try:
            resp = self.race_service.request_response(cmd, self.target, MAC_READ_TIMEOUT_MS)
        except (RaceServiceError, TransportError) as exc:
            raise StationError(str(exc)) from exc
        if len(resp) < 14:
            raise StationError("MAC response too short.")
        if resp[0] != 0x05 or resp[1] != 0x5B:
            raise StationError("Unexpected MAC response header.")
        if resp[4] != 0xD5 or resp[5] != 0x0C:
            raise StationError("Unexpected MAC response ID.")
        if resp[6] != 0x00:
            raise StationError(f"MAC read status fail: 0x{resp[6]:02x}")
        return ":".join(f"{b:02X}" for b in reversed(resp[8:14]))

    def write_current_serial_once(self) -> bool:
        """Read the MAC, write the next serial and record the outcome; True on success."""
        with self._lock:
            return self._write_current_serial_once()

    def _write_current_serial_once(self) -> bool:
        try:
            _, width = self.validate_serial_range()
        except StationError:
            self._log("[ERR] Invalid serial setup.")
            self._set_last_result(False, "invalid serial setup")
            return False

        try:
            serial = self.build_serial_string(self.next_serial, width)
        except StationError as exc:
            self._log(f"[ERR] {exc}")
            self._set_last_result(False, str(exc))
            return False

        try:
            mac = self.read_mac_address()
        except StationError as exc:
            self._log(f"[ERR] MAC read failed: {exc}")
            self._record("-", serial, "MAC_READ_FAIL", "NOT_RUN")
            self._set_last_result(False, f"MAC read: {exc}")
            return False
        self._log(f"[INFO] MAC read: {mac}")

        if self.settings.prevent_duplicate and self.csv_log.is_duplicate(mac, serial):
            self._log(f"[WARN] Duplicate detected, skip write. mac={mac} serial={serial}")
            self._record(mac, serial, "DUPLICATE_SKIP", "NOT_RUN")
            self._set_last_result(False, "duplicate skipped")
            return False

        try:
            self.serial_service.write_serial_by_template(self.settings.sn_template, serial, self.target)
        except SerialWriteError as exc:
            self._log(f"[ERR] {exc}")
            self._record(mac, serial, "WRITE_FAIL", "NOT_RUN")
            self._set_last_result(False, str(exc))
            return False

        print_result = "NOT_RUN"
        if self.settings.enable_print:
            try:
                print_serial_label(self.settings, serial, mac)
            except PrintError as exc:
                self._log(f"[ERR] Print failed: {exc}")
                print_result = "FAIL"
            else:
                self._log("[INFO] Label printed.")
                print_result = "OK"

        try:
            self.csv_log.append_record(mac, serial, "OK", print_result)
        except OSError as exc:
            self._log(f"[ERR] CSV write failed: {exc}")
        self._log(f"[INFO] Write done. serial={serial} mac={mac}")
        self._set_last_result(True, f"serial={serial} mac={mac}")
        self.next_serial += 1
        return True

    def connect(self) -> None:
        """Open the configured device with GET_REPORT input polling."""
        self._open_device()
        self._log(f"[INFO] HID connected VID=0x{self.vid:04x} PID=0x{self.pid:04x}".upper())

    def disconnect(self) -> None:
        self._transport.close()
        self._log("[INFO] HID disconnected.")

    def send_single_text(self, text: str) -> None:
        """Parse one hex command and send it to the current target."""
        try:
            cmd = parse_hex_string(text)
        except RaceCommandError as exc:
            self._fail(str(exc))
        try:
            self.race_service.send_single(cmd, self.target)
        except TransportError as exc:
            self._fail(str(exc))

    def send_sequence_text(self, text: str) -> None:
        """Send every command line of ``text`` in order."""
        try:
            self.race_service.send_sequence(text.split("\n"), self.target)
        except RaceServiceError as exc:
            self._fail(str(exc))
        self._log("[INFO] Sequence send completed.")

    def write_next_serial(self) -> bool:
        """Open the device if needed and write the next serial once."""
        if not self._transport.is_open():
            self._open_device()
        return self.write_current_serial_once()

    def start_auto(self) -> None:
        """Poll for devices and write one serial to each newly attached unit."""
        if self._transport.is_open():
            self._fail("Disconnect manual HID session before auto SN mode.")
        poll_ms = _parse_dec(self.settings.sn_poll_ms, -_I32_MAX - 1, _I32_MAX)
        if poll_ms is None or poll_ms < MIN_AUTO_POLL_MS:
            self._fail("Auto poll must be >= 100 ms (check Settings).")
        try:
            self.validate_serial_range()
        except StationError:
            self._fail("Invalid serial setup.")

        self.auto_armed = False
        self._stop_auto_timer()
        stop = threading.Event()
        interval = poll_ms / 1000

        def run() -> None:
            while not stop.wait(interval):
                self.auto_tick()

        self._auto_stop = stop
        self._auto_thread = threading.Thread(target=run, name="auto-sn", daemon=True)
        self._auto_thread.start()
        self._log(f"[INFO] Auto SN started, polling every {poll_ms} ms.")

    def stop_auto(self) -> None:
        self._stop_auto_timer()
        self.auto_armed = False
        if self._transport.is_open():
            self._transport.close()
        self._log("[INFO] Auto SN stopped.")

    def auto_tick(self) -> None:
        """One auto-mode step: write to a new device, or rearm once it is removed."""
        with self._lock:
            if not self._transport.device_exists(self.vid, self.pid):
                if self.auto_armed:
                    self._log("[INFO] Device removed, ready for next unit.")
                    self.auto_armed = False
                if self._transport.is_open():
                    self._transport.close()
                return
            if self.auto_armed:
                return

            self._transport.configure_input_polling(self.config.in_report_id, self.config.report_size)
            try:
                self._transport.open(self.vid, self.pid)
            except TransportError as exc:
                self._log(f"[ERR] Auto open failed: {exc}")
                return
            if self._write_current_serial_once():
                self.auto_armed = True
                self._log("[INFO] Auto write done, waiting for device removal.")
            self._transport.close()

    def _open_device(self) -> None:
        self._transport.configure_input_polling(self.config.in_report_id, self.config.report_size)
        try:
            self._transport.open(self.vid, self.pid)
        except TransportError as exc:
            self._fail(str(exc))

    def _stop_auto_timer(self) -> None:
        thread = self._auto_thread
        if thread is None:
            return
        self._auto_stop.set()
        self._auto_thread = None
        if thread is not threading.current_thread():
            thread.join()

    def _record(self, mac: str, serial: str, burn_result: str, print_result: str) -> None:
        with contextlib.suppress(OSError):
            self.csv_log.append_record(mac, serial, burn_result, print_result)

    def _set_last_result(self, ok: bool, detail: str) -> None:
        prefix = "Last: OK — " if ok else "Last: FAIL — "
        self.last_result = prefix + detail

    def _fail(self, message: str) -> None:
        self._log(f"[ERR] {message}")
        raise StationError(message)

    def _log(self, line: str) -> None:
        now = datetime.now()
        lines: list[str]
        try:
            lines = [self.run_log.append(line, now)]
        except OSError as exc:
            stamp = _stamp(now)
            lines = [f"[{stamp}] {line}", f"[{stamp}] [ERR] {exc}"]
        for text in lines:
            for callback in list(self._log_listeners):
                callback(text)