"""Device discovery and session setup"""

import logging
import os
from typing import Any, Dict, List, Optional, Sequence

import hid

from .base import DeviceNotFoundError
from .profiles import DeviceCapabilityRegistry
from .session import PeqSession
from .transport import HidTransport

logger = logging.getLogger(__name__)

FIIO_VENDOR_ID = 0x2972
VENDOR_IDS = (FIIO_VENDOR_ID,)

PROFILES_ENV = 'FIIO_PEQ_PROFILES'


def load_registry(profiles_path: Optional[str] = None) -> DeviceCapabilityRegistry:
    """Builtin registry, extended with a JSON profile file if one is given

    Falls back to the FIIO_PEQ_PROFILES environment variable when no path is
    passed.
    """
    profiles_path = profiles_path or os.environ.get(PROFILES_ENV)
    if profiles_path:
        return DeviceCapabilityRegistry.from_json(profiles_path)
    return DeviceCapabilityRegistry.builtin()


def discover_devices(vendor_ids: Sequence[int] = VENDOR_IDS) -> List[Dict[str, Any]]:
    """Find connected PEQ devices

    Returns:
        List of device info dicts with keys:
            - id: Device index for selection
            - vendor_id: USB vendor ID
            - product_id: USB product ID
            - product_string: Product name (also the profile key)
            - manufacturer_string: Manufacturer name
            - serial_number: Device serial number
            - path: HID device path
            - _device_dict: Original hid.enumerate() dict
    """
    matched = [d for d in hid.enumerate() if d['vendor_id'] in vendor_ids]

    # One USB device exposes several HID interfaces; keep one entry per path
    seen = set()
    unique = []
    for device_dict in matched:
        if device_dict['path'] in seen:
            continue
        seen.add(device_dict['path'])
        unique.append(device_dict)
        logger.debug("Found device: %s", device_dict.get('product_string'))

    # Sort by product string then path for stable ids
    unique.sort(key=lambda d: (d.get('product_string') or '', str(d['path'])))

    return [
        {
            'id': i,
            'vendor_id': d['vendor_id'],
            'product_id': d['product_id'],
            'product_string': d.get('product_string') or '',
            'manufacturer_string': d.get('manufacturer_string') or '',
            'serial_number': d.get('serial_number') or '',
            'path': d['path'],
            '_device_dict': d,
        }
        for i, d in enumerate(unique)
    ]


def select_device(devices: List[Dict[str, Any]], device_id: Optional[int] = None) -> Dict[str, Any]:
    """Select a device from discovered devices

    Args:
        devices: Result of discover_devices()
        device_id: Device index (0-based), or None to auto-select if only one device

    Raises:
        DeviceNotFoundError: If no devices were found
        ValueError: If device_id is invalid or multiple devices found without selection
    """
    if not devices:
        raise DeviceNotFoundError("No PEQ devices found. Connect a device and try again.")

    if device_id is None:
        if len(devices) == 1:
            return devices[0]
        device_list = "\n".join(f"  {d['id']}: {d['product_string']}" for d in devices)
        raise ValueError(f"Multiple devices found. Specify device_id:\n{device_list}")

    if device_id < 0 or device_id >= len(devices):
        raise ValueError(
            f"Invalid device_id {device_id}. "
            f"Valid range: 0-{len(devices) - 1}"
        )

    return devices[device_id]


def open_session(device_id: Optional[int] = None,
                 registry: Optional[DeviceCapabilityRegistry] = None,
                 report_id: int = 0, **session_kwargs) -> PeqSession:
    """Discover, select and connect to a device

    Returns:
        PeqSession: Connected session; call close() when done
    """
    device_info = select_device(discover_devices(), device_id)
    session = PeqSession(HidTransport(device_info['_device_dict'], report_id=report_id),
                         registry=registry, **session_kwargs)
    session.connect()
    return session
