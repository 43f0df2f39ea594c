"""Per-model capability registry"""

import json
import logging
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from .base import DeviceProfile, Slot

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = DeviceProfile(
    model="default",
    min_gain=-12.0,
    max_gain=12.0,
    max_filters=5,
    first_writable_slot=-1,
    max_writable_slots=0,
    disconnect_on_save=True,
    available_slots=(),
)


def _slots(*entries) -> tuple:
    return tuple(Slot(id=slot_id, name=name) for slot_id, name in entries)


_PRESETS_7 = (
    (0, "Jazz"), (1, "Pop"), (2, "Rock"), (3, "Dance"),
    (4, "R&B"), (5, "Classic"), (6, "Hip-hop"),
)

_LEGACY_PRESETS = (
    (0, "Vocal"), (1, "Classic"), (2, "Bass"), (3, "Dance"),
    (4, "R&B"), (5, "Classic"), (6, "Hip-hop"),
)

BUILTIN_PROFILES = (
    DeviceProfile(
        model="FIIO KA17",
        max_filters=10,
        first_writable_slot=7,
        max_writable_slots=3,
        disconnect_on_save=False,
        available_slots=_slots(
            (0, "Jazz"), (1, "Pop"), (2, "Rock"), (3, "Dance"), (5, "R&B"),
            (6, "Classic"), (7, "Hip-hop"), (4, "USER1"), (8, "USER2"), (9, "USER3"),
        ),
    ),
    DeviceProfile(
        model="JadeAudio JA11",
        max_filters=5,
        first_writable_slot=3,
        max_writable_slots=1,
        disconnect_on_save=True,
        available_slots=_slots((0, "Vocal"), (1, "Classic"), (2, "Bass"), (3, "USER1")),
    ),
    DeviceProfile(
        model="FIIO LS-TC2",
        max_filters=5,
        first_writable_slot=3,
        max_writable_slots=1,
        disconnect_on_save=True,
        available_slots=_slots(*_LEGACY_PRESETS, (160, "USER1")),
    ),
    DeviceProfile(
        model="FIIO RETRO NANO",
        max_filters=5,
        first_writable_slot=3,
        max_writable_slots=1,
        disconnect_on_save=True,
        available_slots=_slots(*_LEGACY_PRESETS, (160, "USER1"), (161, "USER2"), (162, "USER3")),
    ),
    DeviceProfile(
        model="FIIO BTR13",
        max_filters=10,
        first_writable_slot=7,
        max_writable_slots=3,
        disconnect_on_save=False,
        available_slots=_slots(*_PRESETS_7, (7, "USER1"), (8, "USER2"), (9, "USER3")),
    ),
    DeviceProfile(
        model="FIIO BTR17",
        max_filters=10,
        first_writable_slot=7,
        max_writable_slots=3,
        disconnect_on_save=False,
        available_slots=_slots(*_PRESETS_7, *((160 + i, f"USER{i + 1}") for i in range(10))),
    ),
    DeviceProfile(
        model="FIIO KA15",
        max_filters=10,
        first_writable_slot=7,
        max_writable_slots=3,
        disconnect_on_save=False,
        available_slots=_slots(*_PRESETS_7, (7, "USER1"), (8, "USER2"), (9, "USER3")),
    ),
)


class DeviceCapabilityRegistry:
    """Immutable lookup table of device profiles keyed by product name"""

    def __init__(self, profiles: Iterable[DeviceProfile], default: DeviceProfile = DEFAULT_PROFILE):
        self._profiles: Mapping[str, DeviceProfile] = MappingProxyType(
            {profile.model: profile for profile in profiles}
        )
        self._default = default

    @classmethod
    def builtin(cls) -> "DeviceCapabilityRegistry":
        """Registry with the models this package ships profiles for"""
        return cls(BUILTIN_PROFILES)

    @classmethod
    def from_json(cls, path: str,
                  base: Optional["DeviceCapabilityRegistry"] = None) -> "DeviceCapabilityRegistry":
        """Load extra model profiles from a JSON file on top of a base registry

        The file maps product names to profile fields::

            {"FIIO K11": {"max_filters": 10, "disconnect_on_save": false,
                          "available_slots": [{"id": 0, "name": "Jazz"}]}}

        Missing fields take the default profile's values. Entries override
        base profiles with the same model name.

        Raises:
            ValueError: If the file content is not a valid profile table
        """
        base = base or cls.builtin()
        with open(path) as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected an object mapping model names to profiles")

        profiles: Dict[str, DeviceProfile] = dict(base._profiles)
        for model, fields in data.items():
            profiles[model] = _profile_from_dict(model, fields)
            logger.debug("Loaded profile for %s from %s", model, path)

        return cls(profiles.values(), default=base.default)

    def lookup(self, model_name: Optional[str]) -> DeviceProfile:
        """Profile for an exact product name, or the default profile"""
        profile = self._profiles.get(model_name or "")
        if profile is None:
            logger.debug("No profile for %r, using default", model_name)
            return self._default
        return profile

    @property
    def default(self) -> DeviceProfile:
        return self._default

    def models(self) -> List[str]:
        return sorted(self._profiles)

    def __contains__(self, model_name: str) -> bool:
        return model_name in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)


def _profile_from_dict(model: str, fields: dict) -> DeviceProfile:
    if not isinstance(fields, dict):
        raise ValueError(f"Profile for {model!r} must be an object")

    unknown = set(fields) - {
        'min_gain', 'max_gain', 'max_filters', 'first_writable_slot',
        'max_writable_slots', 'disconnect_on_save', 'available_slots',
    }
    if unknown:
        raise ValueError(f"Profile for {model!r} has unknown fields: {', '.join(sorted(unknown))}")

    try:
        slots = tuple(
            Slot(id=int(s['id']), name=str(s['name']))
            for s in fields.get('available_slots', [])
        )
        return DeviceProfile(
            model=model,
            min_gain=float(fields.get('min_gain', DEFAULT_PROFILE.min_gain)),
            max_gain=float(fields.get('max_gain', DEFAULT_PROFILE.max_gain)),
            max_filters=int(fields.get('max_filters', DEFAULT_PROFILE.max_filters)),
            first_writable_slot=int(fields.get('first_writable_slot', DEFAULT_PROFILE.first_writable_slot)),
            max_writable_slots=int(fields.get('max_writable_slots', DEFAULT_PROFILE.max_writable_slots)),
            disconnect_on_save=bool(fields.get('disconnect_on_save', DEFAULT_PROFILE.disconnect_on_save)),
            available_slots=slots,
        )
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid profile for {model!r}: {e}") from e
