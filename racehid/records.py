"""Day-based run log files and the CSV history of serial-number writes."""

from __future__ import annotations

import fnmatch
from datetime import datetime
from pathlib import Path

CSV_HEADER = "timestamp,mac,serial_number,burn_result,print_result"
MAX_CSV_SIZE = 5 * 1024 * 1024
"""A CSV file at or above this size is full; the next index is used."""

_HEADER_PREFIX = "timestamp,mac,serial_number"
_CSV_PATTERN = "mac_sn_*.csv"
_MAX_CSV_INDEX = 999


def _day(now: datetime) -> str:
    return now.strftime("%Y%m%d")


class RunLog:
    """Appends timestamped lines to one log file per day."""

    def __init__(self, log_dir: Path) -> None:
        self.log_dir = Path(log_dir)

    def file_path(self, now: datetime | None = None) -> Path:
        """The log file for the day of ``now``."""
        moment = now or datetime.now()
        return self.log_dir / f"tool_{_day(moment)}.log"

    def append(self, line: str, now: datetime | None = None) -> str:
        """Write ``line`` with a millisecond timestamp and return the written text.

        Raises OSError when the log file cannot be written.
        """
        moment = now or datetime.now()
        stamp = moment.strftime("%Y-%m-%d %H:%M:%S") + f".{moment.microsecond // 1000:03d}"
        full = f"[{stamp}] {line}"
        path = self.file_path(moment)
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                handle.write(full + "\n")
        except OSError as exc:
            raise OSError(f"Cannot write log file: {path}") from exc
        return full


class CsvLog:
    """Records of MAC/serial writes in size-limited daily CSV files."""

    def __init__(self, data_dir: Path) -> None:
        self.csv_dir = Path(data_dir) / "csv"

    def current_csv_file_path(self, now: datetime | None = None) -> Path:
        """The first file of the day that is missing or still below the size limit."""
        moment = now or datetime.now()
        self.csv_dir.mkdir(parents=True, exist_ok=True)
        day = _day(moment)
        for index in range(1, _MAX_CSV_INDEX + 1):
            path = self.csv_dir / f"mac_sn_{day}_{index:03d}.csv"
            if not path.exists() or path.stat().st_size < MAX_CSV_SIZE:
                return path
        return self.csv_dir / f"mac_sn_{day}_{_MAX_CSV_INDEX:03d}.csv"

    def append_record(
        self,
        mac: str,
        serial: str,
        burn_result: str,
        print_result: str,
        now: datetime | None = None,
    ) -> Path:
        """Append one record, writing the header first into a new file.

        Returns the file written to; raises OSError when it cannot be opened.
        """
        moment = now or datetime.now()
        path = self.current_csv_file_path(moment)
        new_file = not path.exists()
        try:
            handle = path.open("a", encoding="utf-8")
        except OSError as exc:
            raise OSError(f"Cannot open csv file: {path}") from exc
        row = ",".join(
            (
                moment.strftime("%Y-%m-%d %H:%M:%S"),
                mac.replace(",", "_"),
                serial.replace(",", "_"),
                burn_result,
                print_result,
            )
        )
        with handle:
            if new_file:
                handle.write(CSV_HEADER + "\n")
            handle.write(row + "\n")
        return path

    def is_duplicate(self, mac: str, serial: str) -> bool:
        """True when a successful write of this MAC or this serial is on record."""
        self.csv_dir.mkdir(parents=True, exist_ok=True)
        files = sorted(
            path
            for path in self.csv_dir.iterdir()
            if path.is_file() and fnmatch.fnmatchcase(path.name.lower(), _CSV_PATTERN)
        )
        wanted_mac = mac.casefold()
        for path in files:
            try:
                lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
            except OSError:
                continue
            if self._lines_contain(lines, wanted_mac, serial):
                return True
        return False

    @staticmethod
    def _lines_contain(lines: list[str], wanted_mac: str, serial: str) -> bool:
        first_line = True
        for raw in lines:
            line = raw.strip()
            if not line:
                continue
            if first_line:
                first_line = False
                if line.startswith(_HEADER_PREFIX):
                    continue
            cols = line.split(",")
            if len(cols) < 5:
                continue
            old_mac, old_sn, old_burn = (col.strip() for col in cols[1:4])
            if old_burn == "OK" and (old_mac.casefold() == wanted_mac or old_sn == serial):
                return True
        return False