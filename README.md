# racehid

`racehid` talks to RACE-speaking devices over USB HID. It wraps RACE commands
into fixed-size HID output reports, unwraps HID input reports into RACE
payloads, and builds a production-line serial-number station on top: read the
device MAC address, write the next serial number, keep a CSV history that
blocks duplicates, and optionally send a ZPL label to a network printer.

The package has no runtime dependencies. Access to HID devices goes through a
`racehid.transport.HidBackend` object that you supply, so the whole stack can
also be driven by a fake backend in tests.

## Modules

| Module | What it holds |
| --- | --- |
| `racehid.command` | `parse_hex_string`, `to_hex_string`, `RaceCommandError` |
| `racehid.packet` | `HidReportConfig`, `build_out_report`, `parse_in_report`, `PacketError` |
| `racehid.transport` | `HidBackend`, `HidDevice`, `HidDeviceInfo`, `HidTransport`, `TransportError` |
| `racehid.service` | `RaceService`, `RaceServiceError` |
| `racehid.serial_service` | `SerialNumberService`, `SerialWriteError` |
| `racehid.paths` | `app_tool_data_root`, `app_log_dir`, `app_data_dir` |
| `racehid.settings` | `SnModeSettings`, `CodeOption`, `select_code`, `SettingsError` |
| `racehid.records` | `RunLog`, `CsvLog` |
| `racehid.printer` | `build_print_template`, `print_serial_label`, `PrintError` |
| `racehid.station` | `SerialStation`, `parse_usb_config`, `StationError` |

## Hex commands

RACE commands are written as hex bytes separated by spaces, commas or
semicolons:

```python
from racehid.command import parse_hex_string, to_hex_string

cmd = parse_hex_string("05 5a,03;00 D5 0C 00")
assert cmd == bytes([0x05, 0x5A, 0x03, 0x00, 0xD5, 0x0C, 0x00])
assert to_hex_string(cmd) == "05 5A 03 00 D5 0C 00"
```

Empty text, or a token that is not a byte value in hex, raises
`RaceCommandError`.

## HID reports

`HidReportConfig` defaults to output report id `0x06`, input report id `0x07`
and a report size of 62 bytes. An output report is laid out as
`[report id][length][target][command...]`, zero-padded to the report size,
where the length counts the target byte plus the command bytes (cut short if
the command does not fit):

```python
from racehid.packet import HidReportConfig, build_out_report

report = build_out_report(cmd, 0x00, HidReportConfig())
assert len(report) == 62
assert report[:4] == bytes([0x06, 0x08, 0x00, 0x05])
```

`parse_in_report(raw_report, cfg)` checks the report size, the input report id
and the length byte, and returns `(payload, target)`. A report whose length
byte is zero returns `None`; a malformed report raises `PacketError`.

## Transport

`HidTransport(backend, poll_interval=0.02)` calls `backend.init()` on creation
and, used as a context manager, closes the device and calls `backend.exit()`
on exit.

- `pick_device_path(vid, pid)` prefers the interface on the RACE usage page
  `0xFF13`, otherwise the first matching one; `device_exists(vid, pid)` tells
  whether any is present.
- `open(vid, pid)` opens it in non-blocking mode and starts a background
  thread calling `poll_read()` every `poll_interval` seconds. Pass
  `poll_interval=None` to call `poll_read()` yourself.
- `configure_input_polling(report_id, read_buffer_size)` makes polling fetch
  input reports with GET_REPORT for a non-zero `report_id` instead of reading
  interrupt reports. This setting survives `open()` and is cleared by
  `close()`.
- `write_report(report)` and `get_input_report(report_id)` raise
  `TransportError` when the device is not open or the backend fails.
- Received reports go to callbacks registered with `add_report_listener`,
  read errors to those registered with `add_error_listener`.

## Sending commands

`RaceService(transport, config)` sits on a transport:

- `send_single(race_cmd, target)` sends one command (transport failures raise
  `TransportError`);
- `send_sequence(hex_lines, target)` sends one command per line, skipping blank
  lines and lines starting with `#`, and raises `RaceServiceError` naming the
  first line that fails to parse or send;
- `request_response(race_cmd, target, timeout_ms)` sends a command and returns
  the payload of the next RACE packet received, raising `RaceServiceError` on
  timeout.

Decoded packets go to callbacks from `add_packet_listener`, and TX/RX log lines
to those from `add_log_listener`. Target `0x00` addresses the local device,
`0x80` the remote one (`racehid.station.TARGET_LOCAL` / `TARGET_REMOTE`).

`SerialNumberService(race_service)` builds a write command from a hex template
(`{SERIAL_ASCII}` becomes the serial's UTF-8 bytes in hex, `{SERIAL_HEX}` the
serial text itself), sends it with a 2000 ms timeout and checks that the reply
is a `05 5B` response with the request's id and status `00`, raising
`SerialWriteError` otherwise.

## Settings

`SnModeSettings` holds the serial-number layout (prefix, plant, manufacturer,
product, running number width and start, month and year codes), the RACE
template used to write it, the auto-mode poll interval, the duplicate check
and the printer settings. `SnModeSettings.load(path)` and `save(path)` read and
write `sn_mode_settings.json` (by default in the data directory) as JSON with
camelCase keys; a missing file gives `SnModeSettings.defaults()`, and missing or
mistyped keys keep their defaults. Read and write failures raise
`SettingsError`.

The selectable codes are listed as `CodeOption` tuples in
`PLANT_OPTIONS`, `MANUFACTURER_OPTIONS`, `PRODUCT_OPTIONS`, `MONTH_OPTIONS` and
`YEAR_OPTIONS`; `select_code(options, code, fallback)` checks a code against
such a list.

## Serial-number station

`SerialStation(transport, settings, data_root)` ties everything together. With
no `settings` it loads them from the data directory; with no `data_root` it
uses `app_tool_data_root()`, which is the program's directory if writable and
otherwise the user's local data directory.

- `apply_usb_config(vid, pid, out_report_id, in_report_id)` sets the device
  and report ids; `parse_usb_config(...)` turns hex text into these values.
- `connect()`, `disconnect()`, `send_single_text(text)` and
  `send_sequence_text(text)` cover manual use; failures raise `StationError`.
- `preview()` returns the hex command and a summary for the next serial.
- `write_current_serial_once()` reads the MAC address, refuses a MAC or serial
  already burned successfully according to the CSV history (when duplicate
  prevention is on), writes the serial, prints a label if enabled, records the
  result in `Data/csv/mac_sn_<yyyyMMdd>_<nnn>.csv` and advances
  `next_serial`. A day's CSV moves on to the next file once it reaches 5 MiB.
  `write_next_serial()` opens the device first if needed.
- `update_settings(settings)` saves new settings and moves `next_serial` up to
  the start number.

Every log line is written with a timestamp to `Log/tool_<yyyyMMdd>.log` under
the data root and passed to callbacks from `add_log_listener`.

For unattended lines, `start_auto()` starts a background thread that calls
`auto_tick()` at the configured poll interval (at least 100 ms): each newly
attached device gets one serial number, and the station waits for it to be
unplugged before the next. `stop_auto()` ends the run.

## Label printing

`build_print_template(template, serial, mac)` fills `{SERIAL}` and `{MAC}` in a
ZPL template; `print_serial_label(settings, serial, mac, timeout)` sends it to
the configured printer address and port over TCP, raising `PrintError` when the
port is invalid, the address is empty, or the printer cannot be reached or
written to.

## What the package does not do

- It ships no `HidBackend` for real hardware; you provide one that enumerates
  and opens HID devices on your system.
- It has no graphical window and no command-line program. The station is a
  library object driven from your own code.

## Running the tests

Install the `test` extra and run `pytest` from the project directory.