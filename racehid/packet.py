"""Framing of RACE commands into fixed-size HID reports and back."""

from __future__ import annotations

from dataclasses import dataclass


class PacketError(ValueError):
    """Raised when an incoming HID report is malformed."""


@dataclass(frozen=True)
class HidReportConfig:
    """Report ids and the fixed report size used on the HID link."""

    out_report_id: int = 0x06
    in_report_id: int = 0x07
    report_size: int = 62


def build_out_report(race_cmd: bytes, target: int, cfg: HidReportConfig) -> bytes:
    """Wrap a RACE command in an OUT report: id, length, target, command."""
    out = bytearray(cfg.report_size)
    out[0] = cfg.out_report_id & 0xFF
    payload_len = min(len(race_cmd) + 1, cfg.report_size - 3)
    out[1] = payload_len & 0xFF
    out[2] = target & 0xFF
    body = race_cmd[: max(payload_len - 1, 0)]
    out[3 : 3 + len(body)] = body
    return bytes(out)


def parse_in_report(raw_report: bytes, cfg: HidReportConfig) -> tuple[bytes, int] | None:
    """Extract ``(payload, target)`` from an IN report.

    Returns None for a report that carries no payload; raises PacketError
    for a malformed one.
    """
    if len(raw_report) < cfg.report_size:
        raise PacketError("HID report length is too short.")
    if raw_report[0] != cfg.in_report_id:
        raise PacketError("Unexpected report id.")
    valid_len = raw_report[1]
    if valid_len == 0:
        return None
    # IN reports carry only the RACE bytes in the length; the target sits apart at [2].
    if valid_len > cfg.report_size - 3:
        raise PacketError("Invalid valid-length byte in HID report.")
    return bytes(raw_report[3 : 3 + valid_len]), raw_report[2]