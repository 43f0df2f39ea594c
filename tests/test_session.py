from __future__ import annotations

import threading

import pytest

from conftest import FakeDevice
from fiio_peq import codec
from fiio_peq.base import Filter, FilterType, ProfileValidationError, TransportError
from fiio_peq.profiles import DeviceCapabilityRegistry
from fiio_peq.session import SLOT_INVALID, SLOT_NO_ANSWER, PeqSession

REGISTRY = DeviceCapabilityRegistry.builtin()


def make_session(device: FakeDevice, timeout_ms: int = 1000) -> PeqSession:
    return PeqSession(device, registry=REGISTRY, timeout_ms=timeout_ms, poll_interval_ms=5)


def test_profile_follows_product_name(device: FakeDevice) -> None:
    assert make_session(device).profile.model == "FIIO KA17"
    device.product_name = "Some Other DAC"
    assert make_session(device).profile.model == "default"


def test_connect_and_close(device: FakeDevice) -> None:
    session = make_session(device)
    session.connect()
    assert device.opened
    session.close()
    assert device.closed


def test_pull_reads_everything(device: FakeDevice) -> None:
    result = make_session(device).pull_from_device()

    assert not result.partial
    assert result.profile.model == "FIIO KA17"
    assert result.global_gain == 9.0
    assert result.current_slot == 8
    assert [f.index for f in result.filters] == [0, 1, 2]
    first = result.filters[0]
    assert (first.freq, first.gain, first.q, first.type) == (100, -3.5, 0.71, FilterType.LOW_SHELF)
    assert result.filters[2].type is FilterType.HIGH_SHELF

    # get-preset, get-count and get-gain first, then one get-params per filter
    sent = device.frames()
    assert [f.command_id for f in sent[:3]] == [
        codec.Command.PRESET_SWITCH, codec.Command.FILTER_COUNT, codec.Command.GLOBAL_GAIN,
    ]
    assert [f.payload for f in device.frames(codec.Command.FILTER_PARAMS)] == [b"\x00", b"\x01", b"\x02"]
    assert all(f.direction is codec.Direction.GET for f in sent)


def test_pull_partial_on_timeout(device: FakeDevice) -> None:
    device.unanswered_filters = {2}

    result = make_session(device, timeout_ms=50).pull_from_device()

    assert result.partial
    assert len(result.filters) == 2
    assert result.global_gain == 9.0


def test_pull_without_any_answer(device: FakeDevice) -> None:
    device.answer = False

    result = make_session(device, timeout_ms=30).pull_from_device()

    assert result.partial
    assert result.filters == []
    assert result.global_gain is None
    assert result.current_slot is None
    assert device.frames(codec.Command.FILTER_PARAMS) == []


def test_pull_with_no_filters(device: FakeDevice) -> None:
    device.filters = []
    result = make_session(device).pull_from_device()
    assert not result.partial
    assert result.filters == []
    assert device.frames(codec.Command.FILTER_PARAMS) == []


def test_pull_normalizes_unknown_preset(device: FakeDevice) -> None:
    device.preset = 10  # KA17 "off"
    result = make_session(device).pull_from_device()
    assert result.current_slot == SLOT_INVALID


def test_pull_ignores_garbage_reports(device: FakeDevice) -> None:
    session = make_session(device)
    original = device.send_report

    def noisy_send(report_id: int, data: bytes) -> None:
        device.inbound.put(b"\xbb\x0b\x00\x00\x18\x05\x01")
        original(report_id, data)

    device.send_report = noisy_send  # type: ignore[method-assign]
    result = session.pull_from_device()
    assert not result.partial
    assert len(result.filters) == 3


def test_push_scenario_clamps_filters() -> None:
    device = FakeDevice("FIIO KA17")
    session = make_session(device)
    profile = session.profile
    filters = [Filter(freq=100 * (i + 1), gain=1.0, q=1.0) for i in range(15)]

    disconnect = session.push_to_device(profile, 2, 3, filters)

    assert disconnect is False
    gain_frames = device.frames(codec.Command.GLOBAL_GAIN)
    assert len(gain_frames) == 1
    assert gain_frames[0].direction is codec.Direction.SET
    assert codec.parse_global_gain(gain_frames[0].payload) == 9.0

    assert device.frames(codec.Command.FILTER_COUNT)[0].payload == b"\x0a"
    params = device.frames(codec.Command.FILTER_PARAMS)
    assert len(params) == 10
    assert [codec.parse_filter_params(f.payload).index for f in params] == list(range(10))
    assert codec.parse_filter_params(params[9].payload).freq == 1000

    assert [f.command_id for f in device.frames()] == (
        [codec.Command.GLOBAL_GAIN, codec.Command.FILTER_COUNT]
        + [codec.Command.FILTER_PARAMS] * 10
        + [codec.Command.SAVE_TO_DEVICE]
    )
    assert device.frames(codec.Command.SAVE_TO_DEVICE)[0].payload == b"\x02"


def test_push_unknown_model_uses_default_limit() -> None:
    device = FakeDevice("Mystery DAC")
    session = make_session(device)
    filters = [Filter(freq=1000, gain=0.0, q=1.0)] * 8

    disconnect = session.push_to_device(session.profile, 0, 0.0, filters)

    assert disconnect is True
    assert len(device.frames(codec.Command.FILTER_PARAMS)) == 5
    assert codec.parse_global_gain(device.frames(codec.Command.GLOBAL_GAIN)[0].payload) == 12.0


def test_push_does_not_clamp_global_gain() -> None:
    device = FakeDevice("JadeAudio JA11")
    session = make_session(device)
    session.push_to_device(None, 3, -5.0, [Filter(freq=1000, gain=0.0, q=1.0)])
    assert codec.parse_global_gain(device.frames(codec.Command.GLOBAL_GAIN)[0].payload) == 17.0


def test_push_rejects_out_of_range_gain_before_sending() -> None:
    device = FakeDevice("FIIO KA17")
    session = make_session(device)
    filters = [Filter(freq=1000, gain=1.0, q=1.0), Filter(freq=2000, gain=15.0, q=1.0)]

    with pytest.raises(ProfileValidationError):
        session.push_to_device(session.profile, 7, 0.0, filters)
    assert device.sent == []


def test_push_uses_transport_report_id() -> None:
    device = FakeDevice("FIIO KA17", report_id=7)
    make_session(device).push_to_device(None, 7, 0.0, [Filter(freq=1000, gain=0.0, q=1.0)])
    assert {report_id for report_id, _ in device.sent} == {7}


def test_enable_and_disable(device: FakeDevice) -> None:
    session = make_session(device)

    session.enable_peq(session.profile, True, 8)
    session.enable_peq(session.profile, False, 8)

    frames = device.frames(codec.Command.PRESET_SWITCH)
    assert [f.direction for f in frames] == [codec.Direction.SET, codec.Direction.SET]
    assert frames[0].payload == b"\x08"
    assert frames[1].payload == bytes([session.profile.max_filters])


def test_current_slot(device: FakeDevice) -> None:
    assert make_session(device).get_current_slot() == 8


def test_current_slot_without_answer(device: FakeDevice) -> None:
    device.answer = False
    assert make_session(device, timeout_ms=30).get_current_slot() == SLOT_NO_ANSWER


def test_current_slot_out_of_range_is_invalid() -> None:
    device = FakeDevice("JadeAudio JA11")
    device.preset = 99
    session = make_session(device)
    assert len(session.profile.available_slots) == 4
    assert session.get_current_slot(session.profile) == SLOT_INVALID

    # The disabled slot id sits just past the real slots
    device.preset = 4
    assert session.get_current_slot() == SLOT_INVALID
    device.preset = 3
    assert session.get_current_slot() == 3


def test_current_slot_accepts_high_user_slot_ids() -> None:
    device = FakeDevice("FIIO RETRO NANO")
    device.preset = 161
    assert make_session(device).get_current_slot() == 161


def test_reset(device: FakeDevice) -> None:
    session = make_session(device)
    session.reset()
    session.reset(everything=True)
    assert [f.command_id for f in device.frames()] == [codec.Command.RESET_DEVICE, codec.Command.RESET_ALL]


def test_operations_can_follow_each_other(device: FakeDevice) -> None:
    session = make_session(device, timeout_ms=200)
    device.answer = False
    assert session.get_current_slot() == SLOT_NO_ANSWER
    device.answer = True
    assert session.pull_from_device().partial is False
    assert session.get_current_slot() == 8


def test_pull_ignores_filter_index_beyond_count(device: FakeDevice) -> None:
    # Index 2 never arrives; a reply for index 5 shows up instead
    device.unanswered_filters = {2}
    original = device.send_report

    def send(report_id: int, data: bytes) -> None:
        original(report_id, data)
        frame = codec.decode(data)
        if frame.command_id == codec.Command.FILTER_PARAMS and frame.payload == b"\x02":
            stray = Filter(freq=5000, gain=1.0, q=1.0)
            device.inbound.put(codec.encode_get(codec.Command.FILTER_PARAMS,
                                                codec.filter_params_payload(5, stray)))

    device.send_report = send  # type: ignore[method-assign]
    result = make_session(device, timeout_ms=50).pull_from_device()

    assert result.partial
    assert [f.index for f in result.filters] == [0, 1]


def test_push_waits_for_outstanding_pull(device: FakeDevice) -> None:
    device.answer = False
    session = make_session(device, timeout_ms=200)
    events: list[str] = []
    pull_sent = threading.Event()

    original_send = device.send_report

    def send(report_id: int, data: bytes) -> None:
        frame = codec.decode(data)
        events.append(frame.direction.value)
        original_send(report_id, data)
        if frame.command_id == codec.Command.GLOBAL_GAIN and frame.direction is codec.Direction.GET:
            pull_sent.set()

    original_wait = session.correlator.wait

    def wait(*args, **kwargs):
        try:
            return original_wait(*args, **kwargs)
        finally:
            events.append("pull finished")

    device.send_report = send  # type: ignore[method-assign]
    session.correlator.wait = wait  # type: ignore[method-assign]

    results = []
    puller = threading.Thread(target=lambda: results.append(session.pull_from_device()))
    puller.start()
    assert pull_sent.wait(timeout=5)

    session.push_to_device(None, 7, 0.0, [Filter(freq=1000, gain=0.0, q=1.0)])
    puller.join(timeout=5)

    assert results[0].partial
    assert events[:3] == ["get", "get", "get"]
    assert events.index("pull finished") < events.index("set")


def test_dead_reader_surfaces_as_transport_error(device: FakeDevice) -> None:
    device.answer = False
    device.read_error = OSError("device unplugged")

    session = make_session(device, timeout_ms=30)
    with pytest.raises(TransportError, match="unplugged"):
        session.pull_from_device()
    with pytest.raises(TransportError):
        session.get_current_slot()
