"""HID transport: device selection, report I/O and background input polling."""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Protocol

RACE_HID_USAGE_PAGE = 0xFF13
"""Top-level usage page of the RACE mux HID interface."""

_READ_SIZE = 64


class TransportError(Exception):
    """Raised when the HID device cannot be opened, read or written."""


@dataclass(frozen=True)
class HidDeviceInfo:
    """One enumerated HID interface."""

    path: str
    vendor_id: int
    product_id: int
    usage_page: int = 0
    usage: int = 0
    interface_number: int = -1
    serial_number: str = ""
    manufacturer: str = ""
    product: str = ""


class HidDevice(Protocol):
    """An open HID device. Methods raise OSError on failure."""

    def write(self, data: bytes) -> int: ...

    def read(self, size: int) -> bytes: ...

    def get_input_report(self, report_id: int, size: int) -> bytes: ...

    def set_nonblocking(self, enabled: bool) -> None: ...

    def close(self) -> None: ...


class HidBackend(Protocol):
    """Access to the system's HID devices."""

    def init(self) -> None: ...

    def exit(self) -> None: ...

    def enumerate(self, vendor_id: int, product_id: int) -> Iterable[HidDeviceInfo]: ...

    def open_path(self, path: str) -> HidDevice: ...


ReportListener = Callable[[bytes], None]
ErrorListener = Callable[[str], None]


class HidTransport:
    """Opens one HID interface and delivers incoming reports to listeners."""

    def __init__(self, backend: HidBackend, poll_interval: float | None = 0.02) -> None:
        self._backend = backend
        self._poll_interval = poll_interval
        self._device: HidDevice | None = None
        self._lock = threading.RLock()
        self._poll_input_report_id = 0
        self._poll_read_buffer_size = _READ_SIZE
        self._report_listeners: list[ReportListener] = []
        self._error_listeners: list[ErrorListener] = []
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        backend.init()

    def __enter__(self) -> HidTransport:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
        self._backend.exit()

    def add_report_listener(self, callback: ReportListener) -> None:
        self._report_listeners.append(callback)

    def add_error_listener(self, callback: ErrorListener) -> None:
        self._error_listeners.append(callback)

    def pick_device_path(self, vid: int, pid: int) -> str | None:
        """Path of the RACE interface for vid/pid, else the first matching one."""
        fallback: str | None = None
        for info in self._backend.enumerate(vid, pid):
            if info.vendor_id != vid or info.product_id != pid:
                continue
            if info.usage_page == RACE_HID_USAGE_PAGE:
                return info.path
            if fallback is None:
                fallback = info.path
        return fallback

    def device_exists(self, vid: int, pid: int) -> bool:
        return bool(self.pick_device_path(vid, pid))

    def open(self, vid: int, pid: int) -> None:
        """Open the device, keeping any input polling configured beforehand."""
        saved_id = self._poll_input_report_id
        saved_size = self._poll_read_buffer_size
        self.close()
        self._poll_input_report_id = saved_id
        self._poll_read_buffer_size = saved_size

        ids = f"VID:0x{vid:04x} PID:0x{pid:04x}"
        path = self.pick_device_path(vid, pid)
        if not path:
            raise TransportError(f"No HID interface found for {ids}".upper())
        try:
            device = self._backend.open_path(path)
        except OSError as exc:
            raise TransportError(f"Failed to open HID path for {ids}".upper()) from exc
        if device is None:
            raise TransportError(f"Failed to open HID path for {ids}".upper())
        device.set_nonblocking(True)
        with self._lock:
            self._device = device
        self.start_polling()

    def close(self) -> None:
        self.stop_polling()
        with self._lock:
            self._poll_input_report_id = 0
            if self._device is not None:
                self._device.close()
                self._device = None

    def is_open(self) -> bool:
        return self._device is not None

    def write_report(self, report: bytes) -> None:
        with self._lock:
            if self._device is None:
                raise TransportError("HID device is not open.")
            try:
                self._device.write(bytes(report))
            except OSError as exc:
                raise TransportError(_failure("hid_write failed", exc)) from exc

    def configure_input_polling(self, report_id: int, read_buffer_size: int = _READ_SIZE) -> None:
        """Poll with GET_REPORT for ``report_id`` when non-zero, else interrupt reads."""
        self._poll_input_report_id = report_id
        self._poll_read_buffer_size = max(_READ_SIZE, read_buffer_size)

    def get_input_report(self, report_id: int) -> bytes | None:
        """Fetch one input report; None when the device had nothing to give."""
        with self._lock:
            if self._device is None:
                raise TransportError("HID device is not open.")
            size = self._poll_read_buffer_size
            try:
                data = self._device.get_input_report(report_id, size)
            except OSError as exc:
                raise TransportError(_failure("hid_get_input_report failed", exc)) from exc

        data = bytes(data[:size])
        buf = bytearray(size)
        buf[0] = report_id & 0xFF
        buf[: len(data)] = data
        count = len(data)
        if count == 0:
            if not sys.platform.startswith("linux"):
                return None
            count = size
        return bytes(buf[:count])

    def poll_read(self) -> None:
        """Read at most one report and hand it to the listeners."""
        with self._lock:
            device = self._device
            report_id = self._poll_input_report_id
        if device is None:
            return

        if report_id != 0:
            try:
                report = self.get_input_report(report_id)
            except TransportError as exc:
                self._emit_error(str(exc))
                return
            if report is not None:
                self._emit_report(report)
            return

        try:
            with self._lock:
                data = device.read(_READ_SIZE)
        except OSError:
            self._emit_error("hid_read failed.")
            return
        if data:
            self._emit_report(bytes(data))

    def start_polling(self) -> None:
        """Start the background poller, unless polling is manual."""
        if self._poll_interval is None or self._thread is not None:
            return
        stop_event = threading.Event()
        interval = self._poll_interval

        def run() -> None:
            while not stop_event.wait(interval):
                self.poll_read()

        self._stop_event = stop_event
        self._thread = threading.Thread(target=run, name="hid-poll", daemon=True)
        self._thread.start()

    def stop_polling(self) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        self._thread = None
        if thread is not threading.current_thread():
            thread.join()

    def _emit_report(self, report: bytes) -> None:
        for callback in list(self._report_listeners):
            callback(report)

    def _emit_error(self, message: str) -> None:
        for callback in list(self._error_listeners):
            callback(message)


def _failure(prefix: str, exc: OSError) -> str:
    detail = str(exc)
    return f"{prefix}: {detail}" if detail else f"{prefix}."