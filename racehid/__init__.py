"""RACE command framing over USB HID and a serial-number production station."""

__version__ = "0.1.0"