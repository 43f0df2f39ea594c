"""PEQ operations on one connected FiiO / JadeAudio device"""

import logging
import threading
from typing import List, Optional, Sequence

from . import codec
from .base import DeviceProfile, Filter, ProfileValidationError, PullResult, TransportError
from .correlator import (
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_TIMEOUT_MS,
    PendingExchange,
    ResponseCorrelator,
)
from .profiles import DeviceCapabilityRegistry
from .transport import Transport

logger = logging.getLogger(__name__)

# get_current_slot() results
SLOT_INVALID = -1  # Device answered with a preset id outside the profile's slots (PEQ off)
SLOT_NO_ANSWER = -99  # Device never answered


class PeqSession:
    """Pull, push and preset control for one device

    Operations are serialized: at most one is in flight per session.
    """

    def __init__(self, transport: Transport,
                 registry: Optional[DeviceCapabilityRegistry] = None,
                 timeout_ms: int = DEFAULT_TIMEOUT_MS,
                 poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS):
        self.transport = transport
        self.registry = registry or DeviceCapabilityRegistry.builtin()
        self.timeout_ms = timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self.correlator = ResponseCorrelator(transport.inbound)
        self._lock = threading.Lock()

    @property
    def profile(self) -> DeviceProfile:
        """Profile for the connected model (default profile when unknown)"""
        return self.registry.lookup(self.transport.product_name)

    def connect(self) -> None:
        self.transport.open()
        logger.info("Connected to %s", self.transport.product_name)

    def close(self) -> None:
        self.transport.close()

    def _send(self, frame: bytes) -> None:
        self.transport.send_report(self.transport.report_id, frame)

    def _wait(self, handle: PendingExchange):
        state, completed = self.correlator.wait(handle, self.timeout_ms, self.poll_interval_ms)
        if not completed and self.transport.read_error is not None:
            raise TransportError(f"Device stopped answering: {self.transport.read_error}")
        return state, completed

    def pull_from_device(self, profile: Optional[DeviceProfile] = None) -> PullResult:
        """Read filters, global gain and current slot

        On timeout the result holds whatever arrived, with ``partial`` set.
        """
        profile = profile or self.profile

        def request_filters(exchange: PendingExchange, command_id: int) -> None:
            if command_id == codec.Command.FILTER_COUNT:
                for i in range(exchange.state.filter_count):
                    self._send(codec.get_filter_params(i))

        with self._lock:
            exchange = self.correlator.begin_exchange(
                [codec.Command.FILTER_COUNT, codec.Command.FILTER_PARAMS,
                 codec.Command.GLOBAL_GAIN, codec.Command.PRESET_SWITCH,
                 codec.Command.SAVE_TO_DEVICE],
                lambda state: state.filters_complete(),
                profile,
                on_report=request_filters,
            )
            try:
                self._send(codec.get_preset())
                self._send(codec.get_filter_count())
                self._send(codec.get_global_gain())
            except Exception:
                self.correlator.end_exchange(exchange)
                raise
            state, completed = self._wait(exchange)

        if not completed:
            logger.warning("Pull from %s incomplete: %d of %s filters", profile.model,
                           len(state.filters), state.filter_count)

        current_slot = None
        if state.current_slot is not None:
            current_slot = normalize_slot(profile, state.current_slot)

        return PullResult(
            profile=profile,
            filters=state.filter_list(),
            global_gain=state.global_gain,
            current_slot=current_slot,
            partial=not completed,
        )

    def push_to_device(self, profile: Optional[DeviceProfile], slot: int,
                       preamp_gain_db: float, filters: Sequence[Filter]) -> bool:
        """Write global gain and filters, then save them into a slot

        The device applies ``max_gain - preamp_gain_db`` as its global gain and
        clips values beyond its range itself. Filters beyond the model's
        filter count are dropped.

        Returns:
            bool: True if the device drops the connection after saving

        Raises:
            ProfileValidationError: If a filter gain is outside the model's range
        """
        profile = profile or self.profile
        filters = self._clamp_filters(profile, filters)

        if profile.writable_slots and slot not in profile.writable_slots:
            logger.warning("Slot %d is not a writable slot on %s (writable: %s)",
                           slot, profile.model, list(profile.writable_slots))

        # All frames are encoded before the first send
        frames = [codec.set_global_gain(profile.max_gain - preamp_gain_db),
                  codec.set_filter_count(len(filters))]
        frames += [codec.set_filter_params(i, f) for i, f in enumerate(filters)]
        frames.append(codec.save_to_slot(slot))

        with self._lock:
            for frame in frames:
                self._send(frame)

        logger.info("Pushed %d filters to %s slot %d", len(filters), profile.model, slot)
        return profile.disconnect_on_save

    def enable_peq(self, profile: Optional[DeviceProfile], enable: bool, slot_id: int) -> None:
        """Switch to ``slot_id``, or turn PEQ off by switching to the disabled slot"""
        profile = profile or self.profile
        preset_id = slot_id if enable else profile.disabled_slot
        with self._lock:
            self._send(codec.set_preset(preset_id))

    def get_current_slot(self, profile: Optional[DeviceProfile] = None) -> int:
        """Current preset id

        Returns:
            int: The slot id, SLOT_INVALID (-1) when the device reports a
            preset outside its slots, or SLOT_NO_ANSWER (-99) on timeout
        """
        profile = profile or self.profile
        with self._lock:
            exchange = self.correlator.begin_exchange(
                [codec.Command.PRESET_SWITCH],
                lambda state: state.current_slot is not None,
                profile,
            )
            try:
                self._send(codec.get_preset())
            except Exception:
                self.correlator.end_exchange(exchange)
                raise
            state, completed = self._wait(exchange)

        if not completed:
            return SLOT_NO_ANSWER
        return normalize_slot(profile, state.current_slot)

    def reset(self, profile: Optional[DeviceProfile] = None, everything: bool = False) -> None:
        """Reset PEQ settings (or all device settings) to factory defaults"""
        profile = profile or self.profile
        with self._lock:
            self._send(codec.reset(everything))
        logger.info("Reset %s on %s", "all settings" if everything else "PEQ", profile.model)

    @staticmethod
    def _clamp_filters(profile: DeviceProfile, filters: Sequence[Filter]) -> List[Filter]:
        if len(filters) > profile.max_filters:
            logger.warning("%s supports max %d filters, dropping %d",
                           profile.model, profile.max_filters, len(filters) - profile.max_filters)
        filters = list(filters[:profile.max_filters])

        for i, f in enumerate(filters):
            if not (profile.min_gain <= f.gain <= profile.max_gain):
                raise ProfileValidationError(
                    f"Filter {i}: gain {f.gain}dB out of range "
                    f"{profile.min_gain}dB to {profile.max_gain}dB"
                )
        return filters


def normalize_slot(profile: DeviceProfile, preset_id: int) -> int:
    """Map a reported preset id to a slot id, or SLOT_INVALID if the profile has no such slot"""
    if preset_id in profile.slot_ids:
        return preset_id
    return SLOT_INVALID
