from dataclasses import replace

import pytest

from racehid.command import to_hex_string
from racehid.packet import HidReportConfig
from racehid.settings import DEFAULT_SN_TEMPLATE, SnModeSettings
from racehid.station import SerialStation, StationError, parse_usb_config
from racehid.transport import TransportError

MAC_CMD = bytes.fromhex("055A0300D50C00")
MAC_LE = bytes([0x01, 0x00, 0x00, 0x00, 0x00, 0x02])
MAC_TEXT = "02:00:00:00:00:01"


def make_in_report(payload, target=0):
    return (bytes([0x07, len(payload), target]) + payload).ljust(62, b"\0")


def device_responder(mac_status=0, write_status=0):
    def respond(report):
        cmd = report[3 : 3 + report[1] - 1]
        if cmd == MAC_CMD:
            return bytes([0x05, 0x5B, 0x0C, 0x00, 0xD5, 0x0C, mac_status, 0x00]) + MAC_LE
        return bytes([0x05, 0x5B, 0x03, 0x00, cmd[4], cmd[5], write_status])

    return respond


class FakeTransport:
    def __init__(self, responder=None, present=True):
        self.report_listeners = []
        self.error_listeners = []
        self.written = []
        self.opened = False
        self.present = present
        self.responder = responder
        self.polling = None
        self.open_calls = []

    def add_report_listener(self, callback):
        self.report_listeners.append(callback)

    def add_error_listener(self, callback):
        self.error_listeners.append(callback)

    def configure_input_polling(self, report_id, read_buffer_size=64):
        self.polling = (report_id, read_buffer_size)

    def open(self, vid, pid):
        self.open_calls.append((vid, pid))
        if not self.present:
            raise TransportError("No HID interface found")
        self.opened = True

    def close(self):
        self.opened = False

    def is_open(self):
        return self.opened

    def device_exists(self, vid, pid):
        return self.present

    def write_report(self, report):
        if not self.opened:
            raise TransportError("HID device is not open.")
        self.written.append(bytes(report))
        if self.responder is not None:
            payload = self.responder(report)
            for callback in list(self.report_listeners):
                callback(make_in_report(payload, report[2]))


def make_station(tmp_path, transport=None, **changes):
    settings = replace(SnModeSettings.defaults(), **changes)
    if transport is None:
        transport = FakeTransport(responder=device_responder())
    station = SerialStation(transport, settings, tmp_path)
    logs = []
    station.add_log_listener(logs.append)
    return station, transport, logs


def csv_rows(tmp_path):
    files = sorted((tmp_path / "Data" / "csv").glob("mac_sn_*.csv"))
    lines = []
    for path in files:
        lines.extend(path.read_text(encoding="utf-8").splitlines())
    return [line.split(",") for line in lines[1:]]


def test_parse_usb_config_defaults():
    vid, pid, cfg = parse_usb_config("0x0E8D", "0x0809", "0x06", "0x07")
    assert (vid, pid) == (0x0E8D, 0x0809)
    assert cfg == HidReportConfig(out_report_id=0x06, in_report_id=0x07)


@pytest.mark.parametrize(
    "texts",
    [("zz", "0x0809", "6", "7"), ("10000", "0x0809", "6", "7"), ("0x0E8D", "", "6", "7")],
)
def test_parse_usb_config_rejects_bad_input(texts):
    with pytest.raises(StationError, match="Invalid VID/PID/Report ID input."):
        parse_usb_config(*texts)


def test_build_serial_string_with_all_codes(tmp_path):
    station, _, _ = make_station(tmp_path)
    s = station.settings
    expected = "SPK" + s.plant_code + s.manufacturer_code + s.product_code + "00000001"
    expected += s.month_code + s.year_code
    assert station.build_serial_string(1, 8) == expected


def test_build_serial_string_without_codes(tmp_path):
    station, _, _ = make_station(
        tmp_path,
        sn_prefix=" P ",
        use_plant=False,
        use_manufacturer=False,
        use_product=False,
        use_month=False,
        use_year=False,
    )
    assert station.build_serial_string(42, 4) == "P0042"


def test_build_serial_string_overflow(tmp_path):
    station, _, _ = make_station(tmp_path)
    with pytest.raises(StationError, match="Serial width overflow."):
        station.build_serial_string(123, 2)


def test_validate_serial_range(tmp_path):
    station, _, _ = make_station(tmp_path, sn_start="20", sn_width="6")
    station.next_serial = 3
    assert station.validate_serial_range() == (20, 6)
    assert station.next_serial == 20

    station.settings = replace(station.settings, sn_width="0")
    with pytest.raises(StationError, match="Invalid start number or width."):
        station.validate_serial_range()


def test_preview(tmp_path):
    station, _, _ = make_station(tmp_path)
    text, summary = station.preview()
    serial = station.build_serial_string(1, 8)
    cmd = station.serial_service.build_cmd_from_template(DEFAULT_SN_TEMPLATE, serial)
    assert text == to_hex_string(cmd)
    assert summary == f"Next serial string: {serial}"

    station.settings = replace(station.settings, sn_width="x")
    assert station.preview() == ("Invalid start number or width.", "")


def test_read_mac_address(tmp_path):
    station, transport, _ = make_station(tmp_path)
    station.connect()
    assert station.read_mac_address() == MAC_TEXT
    sent = transport.written[-1]
    assert sent[3 : 3 + len(MAC_CMD)] == MAC_CMD


def test_read_mac_address_bad_status(tmp_path):
    station, _, _ = make_station(tmp_path, transport=FakeTransport(device_responder(mac_status=1)))
    station.connect()
    with pytest.raises(StationError, match="MAC read status fail: 0x01"):
        station.read_mac_address()


def test_read_mac_address_timeout(tmp_path):
    station, _, _ = make_station(tmp_path, transport=FakeTransport())
    station.connect()
    with pytest.raises(StationError, match=r"timeout \(1500 ms\)"):
        station.read_mac_address()


def test_write_current_serial_once_success(tmp_path):
    station, transport, logs = make_station(tmp_path)
    station.connect()
    serial = station.build_serial_string(1, 8)
    assert station.write_current_serial_once() is True
    assert station.next_serial == 2
    assert serial.encode() in transport.written[-1]
    rows = csv_rows(tmp_path)
    assert rows[-1][1:] == [MAC_TEXT, serial, "OK", "NOT_RUN"]
    assert station.last_result == f"Last: OK — serial={serial} mac={MAC_TEXT}"
    assert any("[SN] write serial done: " + serial in line for line in logs)


def test_duplicate_is_skipped(tmp_path):
    station, _, logs = make_station(tmp_path)
    station.connect()
    assert station.write_current_serial_once() is True
    assert station.write_current_serial_once() is False
    assert station.next_serial == 2
    assert csv_rows(tmp_path)[-1][3] == "DUPLICATE_SKIP"
    assert station.last_result == "Last: FAIL — duplicate skipped"
    assert any("Duplicate detected" in line for line in logs)


def test_write_failure_is_recorded(tmp_path):
    station, _, _ = make_station(tmp_path, transport=FakeTransport(device_responder(write_status=1)))
    station.connect()
    assert station.write_current_serial_once() is False
    assert csv_rows(tmp_path)[-1][3:] == ["WRITE_FAIL", "NOT_RUN"]
    assert "RACE status fail: 0x01" in station.last_result
    assert station.next_serial == 1


def test_mac_failure_is_recorded(tmp_path):
    station, _, _ = make_station(tmp_path, transport=FakeTransport(device_responder(mac_status=2)))
    station.connect()
    assert station.write_current_serial_once() is False
    row = csv_rows(tmp_path)[-1]
    assert row[1] == "-"
    assert row[3] == "MAC_READ_FAIL"


def test_connect_logs_and_configures_polling(tmp_path):
    station, transport, logs = make_station(tmp_path)
    station.connect()
    assert transport.polling == (0x07, 62)
    assert transport.open_calls == [(0x0E8D, 0x0809)]
    assert any(line.endswith("[INFO] HID CONNECTED VID=0X0E8D PID=0X0809") for line in logs)
    log_files = list((tmp_path / "Log").glob("tool_*.log"))
    assert len(log_files) == 1
    assert "HID CONNECTED" in log_files[0].read_text(encoding="utf-8")


def test_connect_failure(tmp_path):
    station, _, logs = make_station(tmp_path, transport=FakeTransport(present=False))
    with pytest.raises(StationError, match="No HID interface found"):
        station.connect()
    assert any("[ERR] No HID interface found" in line for line in logs)


def test_apply_usb_config(tmp_path):
    station, transport, _ = make_station(tmp_path)
    station.apply_usb_config(0x1234, 0x5678, 0x03, 0x04)
    assert station.race_service.config == HidReportConfig(out_report_id=3, in_report_id=4)
    station.connect()
    assert transport.open_calls == [(0x1234, 0x5678)]
    assert transport.polling == (0x04, 62)


def test_send_single_text(tmp_path):
    station, transport, _ = make_station(tmp_path, transport=FakeTransport())
    station.connect()
    station.send_single_text("05 5A")
    assert transport.written[-1][:5] == bytes([0x06, 0x03, 0x00, 0x05, 0x5A])
    with pytest.raises(StationError, match="Invalid byte: zz"):
        station.send_single_text("zz")


def test_send_sequence_text(tmp_path):
    station, transport, logs = make_station(tmp_path, transport=FakeTransport())
    station.connect()
    station.send_sequence_text("# c\n05 5A\n\n01 02\n")
    assert len(transport.written) == 2
    assert any("Sequence send completed." in line for line in logs)
    with pytest.raises(StationError, match="Line 2 parse failed"):
        station.send_sequence_text("01\nqq")


def test_write_next_serial_opens_device(tmp_path):
    station, transport, _ = make_station(tmp_path)
    assert station.write_next_serial() is True
    assert transport.is_open()
    assert station.next_serial == 2


def test_start_auto_checks(tmp_path):
    station, _, _ = make_station(tmp_path, sn_poll_ms="50")
    with pytest.raises(StationError, match=">= 100 ms"):
        station.start_auto()
    station.connect()
    with pytest.raises(StationError, match="Disconnect manual HID session"):
        station.start_auto()


def test_start_and_stop_auto(tmp_path):
    station, transport, logs = make_station(tmp_path, sn_poll_ms="100000")
    station.start_auto()
    station.stop_auto()
    assert any("Auto SN started, polling every 100000 ms." in line for line in logs)
    assert logs[-1].endswith("[INFO] Auto SN stopped.")
    assert not transport.is_open()


def test_auto_tick_cycle(tmp_path):
    station, transport, logs = make_station(tmp_path)
    station.auto_tick()
    assert station.auto_armed is True
    assert not transport.is_open()
    assert station.next_serial == 2
    writes = len(transport.written)
    station.auto_tick()
    assert len(transport.written) == writes
    transport.present = False
    station.auto_tick()
    assert station.auto_armed is False
    assert any("Device removed, ready for next unit." in line for line in logs)


def test_update_settings_saves_and_moves_start(tmp_path):
    station, _, _ = make_station(tmp_path)
    new = replace(SnModeSettings.defaults(), sn_start="50")
    station.update_settings(new)
    assert station.next_serial == 50
    path = SnModeSettings.storage_file_path(tmp_path / "Data")
    assert SnModeSettings.load(path) == new