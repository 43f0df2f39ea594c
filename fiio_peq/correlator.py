"""Request/response correlation for unsolicited device reports

The device answers "get" frames with one or more reports that carry no
sequence numbers and may arrive in any order. The transport pushes every raw
report onto a queue; ResponseCorrelator drains that queue, decodes each
report and folds it into the accumulator of the one exchange that is
currently waiting.
"""

import logging
import queue
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from . import codec
from .base import DeviceProfile, ExchangeBusyError, Filter, ProtocolError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 10000
DEFAULT_POLL_INTERVAL_MS = 100


@dataclass
class ExchangeState:
    """Fields collected from the device so far"""
    filter_count: Optional[int] = None
    global_gain: Optional[float] = None
    current_slot: Optional[int] = None  # Raw preset id as reported
    saved_slot: Optional[int] = None
    filters: Dict[int, Filter] = field(default_factory=dict)

    def filter_list(self) -> List[Filter]:
        """Received filters in index order, limited to the reported count"""
        indices = sorted(self.filters)
        if self.filter_count is not None:
            indices = [i for i in indices if i < self.filter_count]
        return [self.filters[i] for i in indices]

    def filters_complete(self) -> bool:
        """True once every index below the reported count has arrived"""
        if self.filter_count is None:
            return False
        return all(i in self.filters for i in range(self.filter_count))


@dataclass
class PendingExchange:
    """One logical operation waiting on the device"""
    expected: FrozenSet[int]
    complete_when: Callable[[ExchangeState], bool]
    profile: DeviceProfile
    on_report: Optional[Callable[["PendingExchange", int], None]] = None
    state: ExchangeState = field(default_factory=ExchangeState)

    def is_complete(self) -> bool:
        return self.complete_when(self.state)


class ResponseCorrelator:
    """Consumer side of a device's inbound report queue

    Only one exchange may be pending at a time.
    """

    def __init__(self, inbound: "queue.Queue[bytes]"):
        self.inbound = inbound
        self.active: Optional[PendingExchange] = None

    def begin_exchange(self, expected_command_ids: Iterable[int],
                       complete_when: Callable[[ExchangeState], bool],
                       profile: DeviceProfile,
                       on_report: Optional[Callable[[PendingExchange, int], None]] = None
                       ) -> PendingExchange:
        """Register interest in a set of reply command ids

        Reports left over from earlier operations are discarded first.

        Args:
            expected_command_ids: Reply command ids this exchange accumulates
            complete_when: Predicate over the accumulated state
            profile: Device profile used to bound decoded values
            on_report: Called after each accumulated report with the command id

        Raises:
            ExchangeBusyError: If another exchange is still pending
        """
        if self.active is not None:
            raise ExchangeBusyError("An exchange is already pending on this device")

        stale = self._drain()
        if stale:
            logger.debug("Discarded %d stale report(s)", len(stale))

        self.active = PendingExchange(
            expected=frozenset(int(c) for c in expected_command_ids),
            complete_when=complete_when,
            profile=profile,
            on_report=on_report,
        )
        return self.active

    def end_exchange(self, handle: PendingExchange) -> None:
        if self.active is handle:
            self.active = None

    def feed(self, handle: PendingExchange, data: bytes) -> None:
        """Decode one raw report and route it to the exchange

        Malformed reports are dropped; the accumulator is left unchanged.
        """
        try:
            frame = codec.decode(data)
        except ProtocolError as e:
            logger.warning("Dropped report: %s", e)
            return

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("recv: %s", codec.format_hex(data[:codec.HEADER_SIZE + len(frame.payload) + codec.TAIL_SIZE]))

        if frame.direction is not codec.Direction.GET:
            logger.debug("Ignoring %s-direction report for command %d", frame.direction.value, frame.command_id)
            return

        self.on_report(handle, frame.command_id, frame.payload)

    def on_report(self, handle: PendingExchange, command_id: int, payload: bytes) -> None:
        """Fold one decoded report into the exchange's accumulator"""
        if command_id not in handle.expected:
            logger.debug("Unhandled command %d", command_id)
            return

        state = handle.state
        profile = handle.profile
        try:
            if command_id == codec.Command.FILTER_PARAMS:
                filter_def = codec.parse_filter_params(payload)
                if filter_def.index >= profile.max_filters:
                    logger.warning("Filter index %d out of range for %s (max %d)",
                                   filter_def.index, profile.model, profile.max_filters)
                    return
                state.filters[filter_def.index] = filter_def
                logger.debug("Filter %d: %dHz, %+.1fdB, Q=%.2f, %s", filter_def.index,
                             filter_def.freq, filter_def.gain, filter_def.q, filter_def.type.value)

            elif command_id == codec.Command.FILTER_COUNT:
                count = codec.parse_byte(payload)
                if count > profile.max_filters:
                    logger.warning("Device reports %d filters, %s supports %d",
                                   count, profile.model, profile.max_filters)
                    count = profile.max_filters
                state.filter_count = count

            elif command_id == codec.Command.GLOBAL_GAIN:
                state.global_gain = codec.parse_global_gain(payload)

            elif command_id == codec.Command.PRESET_SWITCH:
                state.current_slot = codec.parse_byte(payload)

            elif command_id == codec.Command.SAVE_TO_DEVICE:
                state.saved_slot = codec.parse_byte(payload)

            else:
                logger.debug("No decoder for command %d", command_id)
                return

        except (ProtocolError, ValueError) as e:
            logger.warning("Dropped command %d report: %s", command_id, e)
            return

        if handle.on_report is not None:
            handle.on_report(handle, command_id)

    def wait(self, handle: PendingExchange, timeout_ms: int = DEFAULT_TIMEOUT_MS,
             poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS) -> Tuple[ExchangeState, bool]:
        """Wait for the exchange to complete or time out

        Returns:
            (state, completed): the accumulated state, and whether the
            completion predicate was met before the timeout
        """
        deadline = time.monotonic() + timeout_ms / 1000.0
        poll = poll_interval_ms / 1000.0

        try:
            while True:
                for data in self._drain():
                    self.feed(handle, data)

                if handle.is_complete():
                    return handle.state, True

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning("Timeout reached before the device answered")
                    return handle.state, False

                try:
                    data = self.inbound.get(timeout=min(poll, remaining))
                except queue.Empty:
                    continue
                self.feed(handle, data)
        finally:
            self.end_exchange(handle)

    def _drain(self) -> List[bytes]:
        reports = []
        while True:
            try:
                reports.append(self.inbound.get_nowait())
            except queue.Empty:
                return reports
