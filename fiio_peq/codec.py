"""Frame and field codec for the FiiO / JadeAudio PEQ protocol

Frame layout (byte offsets):

    0     header 1   (0xAA set, 0xBB get)
    1     header 2   (0x0A set, 0x0B get)
    2-3   reserved, zero
    4     command id
    5     payload length
    6..   payload
    +1    reserved, zero
    last  end marker (0xEE)

Multi-byte fields are 16-bit words. Byte order and scaling belong to each
field (see WordField), not to the frame.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Callable, Union

from .base import (
    BadHeaderError,
    Filter,
    FilterType,
    MissingEndMarkerError,
    TruncatedFrameError,
)

# Frame constants
SET_HEADER = (0xAA, 0x0A)
GET_HEADER = (0xBB, 0x0B)
END_MARKER = 0xEE
HEADER_SIZE = 6
TAIL_SIZE = 2  # reserved byte + end marker


class Command(IntEnum):
    """Command ids carried at offset 4"""
    FIRMWARE_VERSION = 11
    FILTER_PARAMS = 21
    PRESET_SWITCH = 22
    GLOBAL_GAIN = 23
    FILTER_COUNT = 24
    SAVE_TO_DEVICE = 25
    RESET_DEVICE = 27
    RESET_ALL = 28
    NAME_DEVICE = 48


class Direction(Enum):
    SET = "set"
    GET = "get"


_HEADERS = {
    SET_HEADER: Direction.SET,
    GET_HEADER: Direction.GET,
}

# Filter types
FILTER_TYPE_MAP = {FilterType.PEAK: 0, FilterType.LOW_SHELF: 1, FilterType.HIGH_SHELF: 2}
FILTER_TYPE_REVERSE = {0: FilterType.PEAK, 1: FilterType.LOW_SHELF, 2: FilterType.HIGH_SHELF}

FILTER_PARAMS_SIZE = 8  # index, gain(2), freq(2), q(2), type

BytesLike = Union[bytes, bytearray, list]


@dataclass(frozen=True)
class Frame:
    """A decoded report"""
    direction: Direction
    command_id: int
    payload: bytes


def format_hex(data: BytesLike) -> str:
    """Format bytes as space separated hex for debug logging"""
    return ' '.join(f'{b:02X}' for b in data)


# Frames

def _encode(header: tuple, command_id: int, payload: BytesLike) -> bytes:
    payload = bytes(payload)
    if len(payload) > 0xFF:
        raise ValueError(f"Payload too long: {len(payload)} bytes")
    return bytes([header[0], header[1], 0x00, 0x00, int(command_id), len(payload)]) \
        + payload + bytes([0x00, END_MARKER])


def encode_set(command_id: int, payload: BytesLike = b"") -> bytes:
    """Build a "set" frame"""
    return _encode(SET_HEADER, command_id, payload)


def encode_get(command_id: int, payload: BytesLike = b"") -> bytes:
    """Build a "get" frame"""
    return _encode(GET_HEADER, command_id, payload)


def decode(data: BytesLike) -> Frame:
    """Decode one inbound report

    Trailing bytes after the end marker (HID report padding) are ignored.
    Unknown command ids are returned as-is; deciding what to do with them is
    up to the caller.

    Raises:
        BadHeaderError: If the first two bytes are not a known header pair
        TruncatedFrameError: If the declared length exceeds the buffer
        MissingEndMarkerError: If the end marker is absent or wrong
    """
    data = bytes(data)
    if len(data) < 2:
        raise BadHeaderError(f"Report too short for a header: {format_hex(data)}")

    direction = _HEADERS.get((data[0], data[1]))
    if direction is None:
        raise BadHeaderError(f"Unknown header {data[0]:02X} {data[1]:02X}")

    if len(data) < HEADER_SIZE:
        raise TruncatedFrameError(f"Report too short: {len(data)} bytes")

    length = data[5]
    end = HEADER_SIZE + length
    if end > len(data):
        raise TruncatedFrameError(
            f"Declared payload length {length} exceeds available {len(data) - HEADER_SIZE} bytes"
        )

    marker = end + 1
    if marker >= len(data) or data[marker] != END_MARKER:
        raise MissingEndMarkerError(f"No end marker after {length} byte payload")

    return Frame(direction=direction, command_id=data[4], payload=data[HEADER_SIZE:end])


# Scalar fields

def split_u16(value: int, byteorder: str = 'big') -> bytes:
    """Split an unsigned 16-bit value into two bytes"""
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"Value {value} does not fit in 16 bits")
    return value.to_bytes(2, byteorder)


def combine_u16(first: int, second: int, byteorder: str = 'big') -> int:
    """Combine two wire bytes (in wire order) into an unsigned 16-bit value"""
    return int.from_bytes(bytes([first, second]), byteorder)


def encode_gain_db(value: float) -> int:
    """Gain in dB -> 16-bit two's complement, scaled by 10"""
    raw = int(round(value * 10))
    if not -0x8000 <= raw <= 0x7FFF:
        raise ValueError(f"Gain {value}dB out of range")
    return raw & 0xFFFF


def decode_gain_db(raw: int) -> float:
    """16-bit two's complement, scaled by 10 -> gain in dB"""
    if raw & 0x8000:
        raw -= 0x10000
    return raw / 10.0


def encode_frequency_hz(value: float) -> int:
    raw = int(round(value))
    if not 0 <= raw <= 0xFFFF:
        raise ValueError(f"Frequency {value}Hz out of range")
    return raw


def decode_frequency_hz(raw: int) -> int:
    return raw


def encode_q_factor(value: float) -> int:
    """Q -> unsigned 16-bit, scaled by 100"""
    raw = int(round(value * 100))
    if not 0 <= raw <= 0xFFFF:
        raise ValueError(f"Q {value} out of range")
    return raw


def decode_q_factor(raw: int) -> float:
    """Unsigned 16-bit, scaled by 100 -> Q (a zero Q reads back as 1.0)"""
    if raw == 0:
        return 1.0
    return raw / 100.0


def filter_type_to_wire(filter_type: FilterType) -> int:
    return FILTER_TYPE_MAP[FilterType(filter_type)]


def filter_type_from_wire(code: int) -> FilterType:
    return FILTER_TYPE_REVERSE.get(code, FilterType.PEAK)


@dataclass(frozen=True)
class WordField:
    """A 16-bit payload field: scaling plus the byte order it uses on the wire"""
    encode: Callable[[float], int]
    decode: Callable[[int], float]
    byteorder: str = 'big'

    def pack(self, value: float) -> bytes:
        return split_u16(self.encode(value), self.byteorder)

    def unpack(self, payload: bytes, offset: int) -> float:
        return self.decode(combine_u16(payload[offset], payload[offset + 1], self.byteorder))


# Filter-params fields
FILTER_GAIN = WordField(encode_gain_db, decode_gain_db)
FILTER_FREQUENCY = WordField(encode_frequency_hz, decode_frequency_hz)
FILTER_Q = WordField(encode_q_factor, decode_q_factor)

# Global gain: FiiO firmware takes x10, high byte first. Other firmware in this
# protocol family has been seen using x100 little-endian; swap this field to
# support it.
GLOBAL_GAIN = WordField(encode_gain_db, decode_gain_db)


# Payloads

def filter_params_payload(index: int, filter_def: Filter) -> bytes:
    """Payload for a set-filter-params frame"""
    return (bytes([index])
            + FILTER_GAIN.pack(filter_def.gain)
            + FILTER_FREQUENCY.pack(filter_def.freq)
            + FILTER_Q.pack(filter_def.q)
            + bytes([filter_type_to_wire(filter_def.type)]))


def parse_filter_params(payload: bytes) -> Filter:
    """Decode a filter-params reply payload"""
    if len(payload) < FILTER_PARAMS_SIZE:
        raise TruncatedFrameError(f"Filter params payload too short: {len(payload)} bytes")
    return Filter(
        index=payload[0],
        gain=FILTER_GAIN.unpack(payload, 1),
        freq=int(FILTER_FREQUENCY.unpack(payload, 3)),
        q=FILTER_Q.unpack(payload, 5),
        type=filter_type_from_wire(payload[7]),
    )


def parse_byte(payload: bytes) -> int:
    """Decode a single-byte reply payload (filter count, preset id, saved slot)"""
    if not payload:
        raise TruncatedFrameError("Empty payload")
    return payload[0]


def parse_global_gain(payload: bytes) -> float:
    if len(payload) < 2:
        raise TruncatedFrameError(f"Global gain payload too short: {len(payload)} bytes")
    return GLOBAL_GAIN.unpack(payload, 0)


# Outbound commands

def get_preset() -> bytes:
    return encode_get(Command.PRESET_SWITCH)


def get_filter_count() -> bytes:
    return encode_get(Command.FILTER_COUNT)


def get_global_gain() -> bytes:
    return encode_get(Command.GLOBAL_GAIN)


def get_filter_params(index: int) -> bytes:
    return encode_get(Command.FILTER_PARAMS, [index])


def set_preset(preset_id: int) -> bytes:
    return encode_set(Command.PRESET_SWITCH, [preset_id])


def set_filter_count(count: int) -> bytes:
    return encode_set(Command.FILTER_COUNT, [count])


def set_global_gain(gain_db: float) -> bytes:
    return encode_set(Command.GLOBAL_GAIN, GLOBAL_GAIN.pack(gain_db))


def set_filter_params(index: int, filter_def: Filter) -> bytes:
    return encode_set(Command.FILTER_PARAMS, filter_params_payload(index, filter_def))


def save_to_slot(slot_id: int) -> bytes:
    return encode_set(Command.SAVE_TO_DEVICE, [slot_id])


def reset(everything: bool = False) -> bytes:
    return encode_set(Command.RESET_ALL if everything else Command.RESET_DEVICE)
