"""
fiio-peq: Parametric EQ tool for FiiO / JadeAudio USB devices
Reads and writes PEQ filters, global gain and presets over HID

Requires: pip install hidapi
"""
import argparse
import json
import logging
import os
import traceback

from .base import DeviceError, Filter, ProfileValidationError
from .discovery import discover_devices, load_registry, select_device
from .session import SLOT_INVALID, SLOT_NO_ANSWER, PeqSession
from .transport import HidTransport


def parse_autoeq(filepath):
    """Parse AutoEQ txt format

    Returns:
        (filters, pregain): pregain is the Preamp line value in dB (0.0 if absent)
    """
    filters = []
    pregain = 0.0
    with open(filepath) as f:
        for line in f:
            line = line.strip()
            if line.startswith('Preamp:'):
                # Format: Preamp: -6.2 dB
                try:
                    pregain = float(line.split()[1])
                except (ValueError, IndexError):
                    pass
            elif line.startswith('Filter') and ':' in line:
                # Format: Filter 1: ON PK Fc 100 Hz Gain -3.5 dB Q 1.41
                parts = line.split()
                if 'OFF' in parts:
                    continue
                try:
                    fc_idx = parts.index('Fc') + 1
                    gain_idx = parts.index('Gain') + 1
                    q_idx = parts.index('Q') + 1

                    freq = int(float(parts[fc_idx]))
                    gain = float(parts[gain_idx])
                    q = float(parts[q_idx])

                    # Detect filter type
                    ftype = "PK"
                    if "LSC" in line or "LSQ" in line or "LS" in parts:
                        ftype = "LSQ"
                    elif "HSC" in line or "HSQ" in line or "HS" in parts:
                        ftype = "HSQ"

                    filters.append(Filter(freq=freq, gain=gain, q=q, type=ftype))
                except (ValueError, IndexError):
                    continue
    return filters, pregain


def parse_json_profile(filepath):
    """Parse a JSON profile: {"filters": [...], "pregain": dB} or a bare filter list

    Returns:
        (filters, pregain)
    """
    with open(filepath) as f:
        data = json.load(f)

    filter_data = data.get('filters', data) if isinstance(data, dict) else data
    if isinstance(filter_data, dict):
        filter_data = [filter_data]

    filters = [
        Filter(
            freq=int(f['freq']),
            gain=float(f['gain']),
            q=float(f['q']),
            type=f.get('type', 'PK')
        )
        for f in filter_data
    ]
    pregain = float(data.get('pregain', 0.0)) if isinstance(data, dict) else 0.0
    return filters, pregain


def _slot_label(profile, slot_id):
    if slot_id == SLOT_NO_ANSWER:
        return "no answer from device"
    if slot_id == SLOT_INVALID:
        return "PEQ off / unknown preset"
    name = profile.slot_name(slot_id)
    return f"{slot_id} ({name})" if name else str(slot_id)


def _do_read(session):
    """Read and display current PEQ settings from device"""
    print("Reading current PEQ settings...\n")
    result = session.pull_from_device()

    if result.partial:
        print("Warning: device stopped answering, showing partial settings\n")

    gain = "unknown" if result.global_gain is None else f"{result.global_gain} dB"
    print(f"Global gain: {gain}")
    if result.current_slot is not None:
        print(f"Current slot: {_slot_label(result.profile, result.current_slot)}")
    print("\nFilters:")
    for f in result.filters:
        print(f"  {f.index + 1}: {f.freq:5d} Hz, {f.gain:+5.1f} dB, Q={f.q:.2f}, Type={f.type.value}")


def _do_push(session, filters, pregain, slot):
    if not filters:
        print("No valid filters found in file!")
        return

    profile = session.profile
    if slot is None:
        if profile.first_writable_slot < 0:
            raise ValueError(f"No writable slot known for {profile.model}; pass --slot")
        slot = profile.first_writable_slot

    print(f"Found {len(filters)} filters, pregain: {pregain} dB\n")
    print(f"Writing to slot {_slot_label(profile, slot)}...")
    # File pregain is an attenuation (negative dB); the session takes the headroom
    disconnect = session.push_to_device(profile, slot, -pregain, filters)
    print("Success!")
    if disconnect:
        print("The device will disconnect to apply the new settings.")


def _do_write(session, filepath, slot):
    """Write PEQ from AutoEQ txt file to device"""
    if not os.path.isfile(filepath):
        print(f"Error: File not found: {filepath}")
        return
    print(f"Loading PEQ from: {filepath}")
    filters, pregain = parse_autoeq(filepath)
    _do_push(session, filters, pregain, slot)


def _do_json(session, filepath, slot):
    """Write PEQ from JSON file to device"""
    if not os.path.isfile(filepath):
        print(f"Error: File not found: {filepath}")
        return
    print(f"Loading PEQ from JSON: {filepath}")
    filters, pregain = parse_json_profile(filepath)
    _do_push(session, filters, pregain, slot)


def build_parser():
    parser = argparse.ArgumentParser(
        prog='fiio-peq',
        description='fiio-peq: Parametric EQ tool for FiiO / JadeAudio USB devices',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                         Read current PEQ settings (default)
  %(prog)s --json profile.json     Write PEQ from JSON file
  %(prog)s --write eq.txt --slot 8 Write PEQ from AutoEQ txt file into slot 8
  %(prog)s --enable 7              Switch to slot 7
  %(prog)s --disable               Turn PEQ off
  %(prog)s --list                  List available devices

Device Selection:
  If multiple devices are connected, use --device to select one.
  Device IDs are shown in --list output (0-based index).

Profiles:
  Models without a built-in profile use a conservative default (5 filters).
  Add models with --profiles FILE or the FIIO_PEQ_PROFILES environment variable.
        """
    )

    action_group = parser.add_mutually_exclusive_group()
    action_group.add_argument('--read', '-r', action='store_true',
        help='Read current PEQ settings (default action)')
    action_group.add_argument('--write', '-w', type=str, metavar='FILE',
        help='Write PEQ from AutoEQ txt file')
    action_group.add_argument('--json', '-j', type=str, metavar='FILE',
        help='Write PEQ from JSON file')
    action_group.add_argument('--enable', '-e', type=int, metavar='SLOT',
        help='Enable PEQ by switching to a slot')
    action_group.add_argument('--disable', action='store_true',
        help='Disable PEQ')
    action_group.add_argument('--slot-status', action='store_true',
        help='Show the current slot')
    action_group.add_argument('--reset', action='store_true',
        help='Reset PEQ settings to factory defaults')
    action_group.add_argument('--reset-all', action='store_true',
        help='Reset all device settings to factory defaults')
    action_group.add_argument('--list', '-l', action='store_true',
        help='List available devices and exit')

    parser.add_argument('--device', '-d', type=int, metavar='ID',
        help='Device ID to use (0-based index from --list). Auto-selects if only one device.')
    parser.add_argument('--slot', '-s', type=int, metavar='N',
        help='Slot to save into when writing (default: first writable slot)')
    parser.add_argument('--timeout', type=float, default=10.0, metavar='SECONDS',
        help='How long to wait for device replies (default: 10)')
    parser.add_argument('--profiles', type=str, metavar='FILE',
        help='JSON file with extra device profiles')
    parser.add_argument('--report-id', type=int, default=0, metavar='N',
        help='HID output report id (default: 0)')
    parser.add_argument('--debug', action='store_true',
        help='Show debug output including HID packets')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format='[%(levelname)s] %(name)s: %(message)s',
    )

    try:
        registry = load_registry(args.profiles)
        devices = discover_devices()

        if args.list:
            print("Searching for PEQ devices...\n")
            if devices:
                for d in devices:
                    profile = registry.lookup(d['product_string'])
                    print(f"  [{d['id']}] {d['product_string']}")
                    print(f"      VID: 0x{d['vendor_id']:04X}, PID: 0x{d['product_id']:04X}")
                    known = "" if d['product_string'] in registry else " (default profile)"
                    print(f"      Max filters: {profile.max_filters}, "
                          f"Gain: {profile.min_gain} to {profile.max_gain} dB{known}")
                    if profile.available_slots:
                        slots = ', '.join(f"{s.id}={s.name}" for s in profile.available_slots)
                        print(f"      Slots: {slots}")
                    print()
            else:
                print("  No PEQ devices found. Is your device plugged in?")
            return 0

        if not devices:
            print("No PEQ devices found. Connect a device and try again.")
            print("\nTroubleshooting:")
            print("  1. Make sure your device is plugged in")
            print("  2. Try: fiio-peq --list")
            print("  3. You may need permission to access hidraw devices (udev rules)")
            return 1

        session = None
        try:
            device_info = select_device(devices, args.device)
            session = PeqSession(
                HidTransport(device_info['_device_dict'], report_id=args.report_id),
                registry=registry,
                timeout_ms=int(args.timeout * 1000),
            )
            session.connect()

            print(f"Connected: {device_info['product_string']}")
            print()

            if args.write:
                _do_write(session, args.write, args.slot)
            elif args.json:
                _do_json(session, args.json, args.slot)
            elif args.enable is not None:
                session.enable_peq(None, True, args.enable)
                print(f"PEQ enabled, slot {_slot_label(session.profile, args.enable)}")
            elif args.disable:
                session.enable_peq(None, False, 0)
                print("PEQ disabled")
            elif args.slot_status:
                slot = session.get_current_slot()
                print(f"Current slot: {_slot_label(session.profile, slot)}")
            elif args.reset or args.reset_all:
                session.reset(everything=args.reset_all)
                print("Reset sent")
            else:
                _do_read(session)

        except ProfileValidationError as e:
            print(f"\nValidation error: {e}")
            return 1

        except ValueError as e:
            # Device selection error (multiple devices, invalid ID, etc.)
            print(f"\n{e}")
            return 1

        except DeviceError as e:
            print(f"\nDevice error: {e}")
            return 1

        finally:
            if session:
                session.close()

    except Exception as e:
        print(f"\nError: {e}")
        if args.debug:
            traceback.print_exc()
        return 1

    return 0


if __name__ == '__main__':
    raise SystemExit(main())
