from __future__ import annotations

import queue

import pytest

from fiio_peq import codec
from fiio_peq.base import Filter, FilterType

REPORT_SIZE = 64


def pad(frame: bytes) -> bytes:
    """HID input reports arrive zero padded to the report size"""
    return frame + bytes(REPORT_SIZE - len(frame))


class FakeDevice:
    """In-memory transport that answers "get" frames like a FiiO device"""

    def __init__(self, product_name: str = "FIIO KA17", report_id: int = 0) -> None:
        self.product_name = product_name
        self.report_id = report_id
        self.inbound: queue.Queue[bytes] = queue.Queue()
        self.sent: list[tuple[int, bytes]] = []
        self.opened = False
        self.closed = False
        self.read_error: Exception | None = None

        self.filters: list[Filter] = []
        self.filter_count: int | None = None  # Defaults to len(filters)
        self.global_gain = 0.0
        self.preset = 0
        self.answer = True
        self.unanswered_filters: set[int] = set()

    def open(self) -> None:
        self.opened = True

    def close(self) -> None:
        self.closed = True

    def send_report(self, report_id: int, data: bytes) -> None:
        self.sent.append((report_id, bytes(data)))
        frame = codec.decode(data)
        if frame.direction is codec.Direction.GET and self.answer:
            self._reply(frame)

    def _reply(self, frame: codec.Frame) -> None:
        cmd = frame.command_id
        if cmd == codec.Command.FILTER_COUNT:
            count = len(self.filters) if self.filter_count is None else self.filter_count
            payload = bytes([count])
        elif cmd == codec.Command.FILTER_PARAMS:
            index = frame.payload[0]
            if index in self.unanswered_filters or index >= len(self.filters):
                return
            payload = codec.filter_params_payload(index, self.filters[index])
        elif cmd == codec.Command.GLOBAL_GAIN:
            payload = codec.GLOBAL_GAIN.pack(self.global_gain)
        elif cmd == codec.Command.PRESET_SWITCH:
            payload = bytes([self.preset])
        else:
            return
        self.inbound.put(pad(codec.encode_get(cmd, payload)))

    def frames(self, command: int | None = None) -> list[codec.Frame]:
        decoded = [codec.decode(data) for _, data in self.sent]
        if command is None:
            return decoded
        return [f for f in decoded if f.command_id == command]


@pytest.fixture
def device() -> FakeDevice:
    dev = FakeDevice()
    dev.filters = [
        Filter(freq=100, gain=-3.5, q=0.71, type=FilterType.LOW_SHELF),
        Filter(freq=1000, gain=2.0, q=1.41),
        Filter(freq=8000, gain=4.5, q=0.7, type=FilterType.HIGH_SHELF),
    ]
    dev.global_gain = 9.0
    dev.preset = 8
    return dev
