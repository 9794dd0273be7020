"""Label printing: filling the label template and sending it to a network printer."""

from __future__ import annotations

import re
import socket

from racehid.settings import SnModeSettings

DEFAULT_TIMEOUT = 1.5

_PORT_TEXT = re.compile(r"\s*[+-]?\d+\s*")


class PrintError(Exception):
    """Raised when a label cannot be sent to the printer."""


def build_print_template(template: str, serial: str, mac: str) -> str:
    """Fill ``{SERIAL}`` and ``{MAC}`` in a label template."""
    return template.replace("{SERIAL}", serial).replace("{MAC}", mac)


def _printer_port(text: str) -> int:
    port = int(text) if _PORT_TEXT.fullmatch(text) else 0
    if not 0 < port <= 65535:
        raise PrintError("Invalid printer port.")
    return port


def print_serial_label(
    settings: SnModeSettings, serial: str, mac: str, timeout: float = DEFAULT_TIMEOUT
) -> None:
    """Send the filled label template to the printer over TCP."""
    port = _printer_port(settings.printer_port)
    host = settings.printer_ip.strip()
    if not host:
        raise PrintError("Printer IP is empty.")

    payload = build_print_template(settings.print_template, serial, mac).encode("utf-8")
    if not payload.endswith(b"\n"):
        payload += b"\n"

    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except OSError as exc:
        raise PrintError("Printer connect timeout/fail.") from exc
    with sock:
        try:
            sock.sendall(payload)
        except OSError as exc:
            raise PrintError("Printer write failed.") from exc