"""Serial-number mode settings, their code choices and JSON storage."""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

from racehid.paths import app_data_dir

SETTINGS_FILE_NAME = "sn_mode_settings.json"

DEFAULT_SN_TEMPLATE = "05 5A 0B 00 07 1C 00 {SERIAL_ASCII}"
DEFAULT_PRINT_TEMPLATE = (
    "^XA\n^FO30,30^A0N,40,40^FD{SERIAL}^FS\n^FO30,90^BY2\n"
    "^BCN,80,Y,N,N^FD{SERIAL}^FS\n^FO30,190^A0N,28,28^FDMAC:{MAC}^FS\n^XZ"
)


class SettingsError(Exception):
    """Raised when settings cannot be read from or written to disk."""


@dataclass(frozen=True)
class CodeOption:
    """One selectable code with its human-readable meaning."""

    code: str
    name: str

    @property
    def label(self) -> str:
        return f"{self.code} - {self.name}"


PLANT_OPTIONS = (
    CodeOption("HZ", "HuiZhou"),
    CodeOption("DG", "DongGuan"),
)

MANUFACTURER_OPTIONS = (
    CodeOption("A", "AUT"),
    CodeOption("H", "Honsenn"),
)

PRODUCT_OPTIONS = (
    CodeOption("0011", "MIX SKYSCRAPER BLACK"),
    CodeOption("0012", "MIX OLYMPIC WHITE"),
    CodeOption("0013", "MIX SURF BLUE"),
    CodeOption("0014", "MIX LILAC"),
    CodeOption("0015", "MIX SAKURA PINK"),
    CodeOption("0021", "ELIE6 SKYSCRAPER BLACK"),
    CodeOption("0022", "ELIE6 OLYMPIC WHITE"),
    CodeOption("0031", "ELIE12 SKYSCRAPER BLACK"),
    CodeOption("0032", "ELIE12 OLYMPIC WHITE"),
    CodeOption("0041", "TRACK 02 SKYSCRAPER BLACK"),
    CodeOption("0042", "TRACK 02 OLYMPIC WHITE"),
    CodeOption("0051", "TOUR 02 SKYSCRAPER BLACK"),
    CodeOption("0052", "TOUR 02 OLYMPIC WHITE"),
)

MONTH_OPTIONS = (
    CodeOption("A", "January"),
    CodeOption("B", "February"),
    CodeOption("C", "March"),
    CodeOption("D", "April"),
    CodeOption("E", "May"),
    CodeOption("F", "June"),
    CodeOption("G", "July"),
    CodeOption("H", "August"),
    CodeOption("I", "September"),
    CodeOption("J", "October"),
)

YEAR_OPTIONS = (
    CodeOption("A", "2025"),
    CodeOption("B", "2026"),
    CodeOption("C", "2027"),
    CodeOption("D", "2028"),
    CodeOption("E", "2029"),
    CodeOption("F", "2030"),
)


def select_code(options: Sequence[CodeOption], code: str, fallback: str | None = None) -> str:
    """``code`` if it is one of ``options``, otherwise ``fallback`` (default: the first option)."""
    if any(option.code == code for option in options):
        return code
    if fallback is not None:
        return fallback
    return options[0].code if options else code


def _json_key(field_name: str) -> str:
    first, *rest = field_name.split("_")
    return first + "".join(part.capitalize() for part in rest)


@dataclass
class SnModeSettings:
    """Everything that shapes a serial number, its write command and its label."""

    sn_prefix: str = "SPK"
    sn_start: str = "1"
    sn_width: str = "8"
    sn_poll_ms: str = "500"
    sn_template: str = ""
    use_plant: bool = True
    use_manufacturer: bool = True
    use_product: bool = True
    use_month: bool = True
    use_year: bool = True
    prevent_duplicate: bool = True
    enable_print: bool = False
    plant_code: str = "HZ"
    manufacturer_code: str = "A"
    product_code: str = "0011"
    month_code: str = "A"
    year_code: str = "B"
    printer_ip: str = "192.168.1.100"
    printer_port: str = "9100"
    print_template: str = ""

    @classmethod
    def defaults(cls) -> SnModeSettings:
        """Default settings including the RACE and label templates."""
        return cls(sn_template=DEFAULT_SN_TEMPLATE, print_template=DEFAULT_PRINT_TEMPLATE)

    @staticmethod
    def storage_file_path(data_dir: Path | None = None) -> Path:
        """Where the settings are stored inside the data directory."""
        directory = Path(data_dir) if data_dir is not None else app_data_dir()
        return directory / SETTINGS_FILE_NAME

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SnModeSettings:
        """Settings from a JSON object; missing or mistyped entries keep their defaults."""
        base = cls.defaults()
        changes: dict[str, Any] = {}
        for field in fields(cls):
            value = data.get(_json_key(field.name))
            expected = bool if isinstance(getattr(base, field.name), bool) else str
            if isinstance(value, expected):
                changes[field.name] = value
        return replace(base, **changes)

    def to_dict(self) -> dict[str, Any]:
        """The settings as a JSON object with camelCase keys."""
        return {_json_key(name): value for name, value in asdict(self).items()}

    @classmethod
    def load(cls, path: Path | None = None) -> SnModeSettings:
        """Load from ``path``; a missing file yields the defaults."""
        target = Path(path) if path is not None else cls.storage_file_path()
        if not target.exists():
            return cls.defaults()
        try:
            raw = target.read_bytes()
        except OSError as exc:
            raise SettingsError(f"Cannot read {target}") from exc
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SettingsError("Invalid JSON in sn_mode_settings.") from exc
        if not isinstance(data, dict):
            raise SettingsError("Invalid JSON in sn_mode_settings.")
        return cls.from_dict(data)

    def save(self, path: Path | None = None) -> None:
        """Write the settings atomically as indented JSON."""
        target = Path(path) if path is not None else self.storage_file_path()
        text = json.dumps(self.to_dict(), indent=4, sort_keys=True, ensure_ascii=False) + "\n"
        try:
            handle = tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=target.parent,
                prefix=target.name + ".",
                suffix=".tmp",
                delete=False,
            )
        except OSError as exc:
            raise SettingsError(f"Cannot write {target}") from exc
        temp_path = Path(handle.name)
        try:
            with handle:
                handle.write(text)
            os.replace(temp_path, target)
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            raise SettingsError(f"Commit failed: {target}") from exc