"""Parsing and formatting of RACE commands written as hex byte text."""

from __future__ import annotations

import re

_SEPARATORS = re.compile(r"[,;\s]+")
_HEX_NUMBER = re.compile(r"[+-]?(?:0[xX])?[0-9a-fA-F]+")


class RaceCommandError(ValueError):
    """Raised when a hex command string cannot be parsed."""


def parse_hex_string(text: str) -> bytes:
    """Parse bytes written as hex separated by spaces, commas or semicolons."""
    cleaned = _SEPARATORS.sub(" ", text.strip()).strip()
    if not cleaned:
        raise RaceCommandError("Empty race command.")

    values = []
    for part in cleaned.split():
        value = int(part, 16) if _HEX_NUMBER.fullmatch(part) else -1
        if not 0 <= value <= 0xFF:
            raise RaceCommandError(f"Invalid byte: {part}")
        values.append(value)
    return bytes(values)


def to_hex_string(data: bytes) -> str:
    """Format bytes as upper-case two-digit hex separated by single spaces."""
    return " ".join(f"{b:02X}" for b in data)