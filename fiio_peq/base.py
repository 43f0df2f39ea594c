"""Base data structures and exceptions for FiiO PEQ devices"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


# Custom exception hierarchy

class DeviceError(Exception):
    """Base exception for PEQ device errors"""


class DeviceNotConnectedError(DeviceError):
    """Device is not connected"""


class DeviceNotFoundError(DeviceError):
    """Device not found during discovery"""


class TransportError(DeviceError):
    """HID open or write failed"""


class ProtocolError(DeviceError):
    """Inbound report is not a well-formed frame"""


class BadHeaderError(ProtocolError):
    """First two bytes are not a known header pair"""


class TruncatedFrameError(ProtocolError):
    """Declared payload length exceeds the available bytes"""


class MissingEndMarkerError(ProtocolError):
    """End marker byte is missing or wrong"""


class ExchangeBusyError(DeviceError):
    """Another exchange is already waiting on this device"""


class ProfileValidationError(DeviceError):
    """Filter set is not valid for the device profile"""


class FilterType(str, Enum):
    """PEQ filter types supported by the protocol"""
    PEAK = "PK"
    LOW_SHELF = "LSQ"
    HIGH_SHELF = "HSQ"


@dataclass
class Filter:
    """Represents a single PEQ filter"""
    freq: int  # Frequency in Hz
    gain: float  # Gain in dB
    q: float  # Q factor
    type: FilterType = FilterType.PEAK
    index: Optional[int] = None  # Band index, set on filters read from a device

    def __post_init__(self):
        """Validate filter parameters"""
        if not 0 <= self.freq <= 0xFFFF:
            raise ValueError(f"Frequency must be 0-65535 Hz, got {self.freq}")
        if self.q <= 0:
            raise ValueError(f"Q must be positive, got {self.q}")
        try:
            self.type = FilterType(self.type)
        except ValueError:
            raise ValueError(f"Unknown filter type: {self.type}") from None


@dataclass(frozen=True)
class Slot:
    """A preset slot as shown to the user"""
    id: int
    name: str


@dataclass(frozen=True)
class DeviceProfile:
    """Capabilities and preset layout of one device model"""
    model: str
    min_gain: float = -12.0
    max_gain: float = 12.0
    max_filters: int = 5
    first_writable_slot: int = -1
    max_writable_slots: int = 0
    disconnect_on_save: bool = True
    available_slots: Tuple[Slot, ...] = ()

    @property
    def slot_ids(self) -> Tuple[int, ...]:
        return tuple(slot.id for slot in self.available_slots)

    @property
    def writable_slots(self) -> Tuple[int, ...]:
        """Slot ids the device accepts a save into"""
        if self.first_writable_slot < 0:
            return ()
        return tuple(range(self.first_writable_slot,
                           self.first_writable_slot + self.max_writable_slots))

    @property
    def disabled_slot(self) -> int:
        """Preset id meaning "PEQ off"; always outside the real slot range"""
        return self.max_filters

    def slot_name(self, slot_id: int) -> Optional[str]:
        for slot in self.available_slots:
            if slot.id == slot_id:
                return slot.name
        return None


@dataclass
class PullResult:
    """Everything read back from the device by one pull"""
    profile: DeviceProfile
    filters: List[Filter] = field(default_factory=list)
    global_gain: Optional[float] = None  # Device global gain in dB
    current_slot: Optional[int] = None
    partial: bool = False  # True when the device stopped answering before all filters arrived
