import socket
import threading
from dataclasses import replace

import pytest

from racehid.printer import PrintError, build_print_template, print_serial_label
from racehid.settings import SnModeSettings

MAC = "02:00:00:00:00:01"


class _Receiver:
    def __init__(self):
        self.server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server.bind(("127.0.0.1", 0))
        self.server.listen(1)
        self.port = self.server.getsockname()[1]
        self.data = b""
        self.thread = threading.Thread(target=self._run, daemon=True)
        self.thread.start()

    def _run(self):
        self.server.settimeout(5)
        conn, _ = self.server.accept()
        with conn:
            conn.settimeout(5)
            chunks = []
            while True:
                chunk = conn.recv(4096)
                if not chunk:
                    break
                chunks.append(chunk)
            self.data = b"".join(chunks)

    def finish(self):
        self.thread.join(5)
        self.server.close()
        return self.data


@pytest.fixture
def receiver():
    rec = _Receiver()
    yield rec
    rec.server.close()


def _settings(port, template):
    return replace(
        SnModeSettings.defaults(),
        printer_ip="127.0.0.1",
        printer_port=str(port),
        print_template=template,
    )


def test_build_print_template_replaces_placeholders():
    result = build_print_template("^FD{SERIAL}^FS {MAC}", "SPK1", MAC)
    assert result == "^FDSPK1^FS " + MAC


def test_build_default_template_fills_every_placeholder():
    template = SnModeSettings.defaults().print_template
    result = build_print_template(template, "SPK00000001", MAC)
    assert result.count("SPK00000001") == 2
    assert result.count(MAC) == 1
    assert "{" not in result


def test_print_sends_payload_with_newline(receiver):
    print_serial_label(_settings(receiver.port, "S={SERIAL} M={MAC}"), "SPK1", MAC)
    assert receiver.finish() == f"S=SPK1 M={MAC}\n".encode("utf-8")


def test_print_keeps_existing_trailing_newline(receiver):
    print_serial_label(_settings(receiver.port, "{SERIAL}\n"), "SPK2", MAC)
    assert receiver.finish() == b"SPK2\n"


@pytest.mark.parametrize("port", ["0", "abc", "70000", "", "-5"])
def test_invalid_port_rejected(port):
    with pytest.raises(PrintError, match="Invalid printer port."):
        print_serial_label(_settings(port, "{SERIAL}"), "SPK1", MAC)


def test_empty_ip_rejected():
    settings = replace(_settings(9100, "{SERIAL}"), printer_ip="   ")
    with pytest.raises(PrintError, match="Printer IP is empty."):
        print_serial_label(settings, "SPK1", MAC)


def test_connect_failure_reported():
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    with pytest.raises(PrintError, match="Printer connect timeout/fail."):
        print_serial_label(_settings(port, "{SERIAL}"), "SPK1", MAC, timeout=1.0)