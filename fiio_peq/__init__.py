"""FiiO / JadeAudio USB HID parametric EQ control

Reads and writes PEQ filters, global gain and presets over the vendor HID
protocol.
"""

from .base import (
    BadHeaderError,
    DeviceError,
    DeviceNotConnectedError,
    DeviceNotFoundError,
    DeviceProfile,
    ExchangeBusyError,
    Filter,
    FilterType,
    MissingEndMarkerError,
    ProfileValidationError,
    ProtocolError,
    PullResult,
    Slot,
    TransportError,
    TruncatedFrameError,
)
from .correlator import ResponseCorrelator
from .discovery import discover_devices, load_registry, open_session, select_device
from .profiles import DeviceCapabilityRegistry
from .session import SLOT_INVALID, SLOT_NO_ANSWER, PeqSession
from .transport import HidTransport, Transport

__all__ = [
    'PeqSession',
    'ResponseCorrelator',
    'DeviceCapabilityRegistry',
    'HidTransport',
    'Transport',
    'discover_devices',
    'select_device',
    'open_session',
    'load_registry',
    'Filter',
    'FilterType',
    'DeviceProfile',
    'PullResult',
    'Slot',
    'SLOT_INVALID',
    'SLOT_NO_ANSWER',
    'DeviceError',
    'DeviceNotConnectedError',
    'DeviceNotFoundError',
    'TransportError',
    'ProtocolError',
    'BadHeaderError',
    'TruncatedFrameError',
    'MissingEndMarkerError',
    'ExchangeBusyError',
    'ProfileValidationError',
]
