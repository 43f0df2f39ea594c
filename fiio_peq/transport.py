"""HID transport for PEQ sessions"""

import logging
import queue
import threading
from typing import Optional, Protocol

import hid

from .base import DeviceNotConnectedError, TransportError
from .codec import format_hex

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """What a PeqSession needs from the device access layer

    Inbound reports are pushed onto ``inbound`` as raw bytes, in arrival
    order, without the report id. ``read_error`` holds the exception that
    stopped inbound delivery, if any.
    """

    inbound: "queue.Queue[bytes]"
    product_name: str
    report_id: int
    read_error: Optional[Exception]

    def open(self) -> None:
        ...

    def close(self) -> None:
        ...

    def send_report(self, report_id: int, data: bytes) -> None:
        """Send one output report; raises TransportError on failure"""
        ...


class HidTransport:
    """hidapi-backed transport with a background reader thread"""

    REPORT_SIZE = 64
    READ_TIMEOUT_MS = 100  # Reader wakes at least this often to check for close()

    def __init__(self, device_dict: dict, report_id: int = 0):
        """
        Args:
            device_dict: HID device dict from hid.enumerate()
            report_id: Output report id; 0 for devices without numbered reports
        """
        self.device_dict = device_dict
        self.report_id = report_id
        self.inbound: "queue.Queue[bytes]" = queue.Queue()
        self.hid_device: Optional[hid.device] = None
        self._stop = threading.Event()
        self._reader: Optional[threading.Thread] = None
        self.read_error: Optional[Exception] = None  # Set when the reader died on a failed read

    @property
    def product_name(self) -> str:
        return self.device_dict.get('product_string') or ''

    @property
    def is_open(self) -> bool:
        return self.hid_device is not None

    def open(self) -> None:
        """Open the device and start reading inbound reports"""
        if self.hid_device:
            return

        device = hid.device()
        try:
            device.open_path(self.device_dict['path'])
        except (OSError, IOError) as e:
            raise TransportError(f"Failed to open {self.product_name}: {e}") from e
        device.set_nonblocking(False)
        self.hid_device = device

        self.read_error = None
        self._stop.clear()
        self._reader = threading.Thread(target=self._read_loop, name="hid-reader", daemon=True)
        self._reader.start()
        logger.debug("Connected to %s", self.product_name)

    def close(self) -> None:
        """Stop the reader and close the device"""
        if not self.hid_device:
            return
        self._stop.set()
        if self._reader:
            self._reader.join(timeout=1.0)
            self._reader = None
        self.hid_device.close()
        self.hid_device = None

    def send_report(self, report_id: int, data: bytes) -> None:
        if not self.hid_device:
            raise DeviceNotConnectedError("Device not connected")
        if self.read_error is not None:
            raise TransportError(f"HID read failed, device unusable: {self.read_error}")

        logger.debug("sent: %s", format_hex(data))
        try:
            written = self.hid_device.write([report_id] + list(data))
        except (OSError, IOError, ValueError) as e:
            raise TransportError(f"HID write failed: {e}") from e
        if written is not None and written < 0:
            raise TransportError("HID write failed")

    def _read_loop(self) -> None:
        while not self._stop.is_set():
            try:
                resp = self.hid_device.read(self.REPORT_SIZE, self.READ_TIMEOUT_MS)
            except (OSError, IOError, ValueError) as e:
                if not self._stop.is_set():
                    self.read_error = e
                    logger.warning("HID read failed, reader stopped: %s", e)
                return
            if not resp:
                continue
            # hidapi puts the report id in front of numbered reports
            if self.report_id:
                resp = resp[1:]
            self.inbound.put(bytes(resp))
