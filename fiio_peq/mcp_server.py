#!/usr/bin/env python3
"""
fiio-peq MCP Server: FiiO / JadeAudio Parametric EQ Control

Exposes PEQ control functionality as MCP tools using stdio transport.
"""
import json
from typing import Any, Callable, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .base import DeviceError, Filter, ProfileValidationError
from .discovery import discover_devices, load_registry, open_session, select_device

# Create the MCP server
server = Server("fiio-peq")

_DEVICE_ID = {
    "type": "integer",
    "description": "Optional device ID (0-based index). If not specified, auto-selects if only one device connected."
}


def _profile_dict(profile) -> dict:
    return {
        "model": profile.model,
        "max_filters": profile.max_filters,
        "gain_range": {"min": profile.min_gain, "max": profile.max_gain},
        "writable_slots": list(profile.writable_slots),
        "disconnect_on_save": profile.disconnect_on_save,
        "slots": [{"id": s.id, "name": s.name} for s in profile.available_slots],
    }


def _with_session(device_id: Optional[int], callback: Callable) -> Any:
    """Open a session, run callback(session), close the session"""
    session = open_session(device_id, registry=load_registry())
    try:
        return callback(session)
    finally:
        session.close()


def _read(session) -> dict:
    result = session.pull_from_device()
    return {
        "device": result.profile.model,
        "partial": result.partial,
        "global_gain": result.global_gain,
        "current_slot": result.current_slot,
        "filters": [
            {
                "index": f.index,
                "freq": f.freq,
                "gain": f.gain,
                "q": f.q,
                "type": f.type.value
            }
            for f in result.filters
        ]
    }


def run_tool(name: str, arguments: dict) -> Any:
    """Run a tool and return its JSON-serializable result

    Raises:
        DeviceError, ValueError, KeyError: Reported to the client as error text
    """
    device_id = arguments.get("device_id")

    if name == "list_devices":
        registry = load_registry()
        return {
            "devices": [
                {
                    "id": d['id'],
                    "product": d['product_string'],
                    "vendor_id": f"0x{d['vendor_id']:04X}",
                    "product_id": f"0x{d['product_id']:04X}",
                    "known_model": d['product_string'] in registry,
                    "max_filters": registry.lookup(d['product_string']).max_filters,
                }
                for d in discover_devices()
            ]
        }

    elif name == "get_device_profile":
        device = select_device(discover_devices(), device_id)
        return _profile_dict(load_registry().lookup(device['product_string']))

    elif name == "read_peq":
        return _with_session(device_id, _read)

    elif name == "write_peq":
        filter_data = arguments.get("filters", [])
        if not filter_data:
            raise ValueError("No filters provided")
        filters = [
            Filter(freq=int(f['freq']), gain=float(f['gain']), q=float(f['q']), type=f.get('type', 'PK'))
            for f in filter_data
        ]
        pregain = float(arguments.get("pregain", 0.0))

        def _write(session):
            profile = session.profile
            slot = arguments.get("slot", profile.first_writable_slot)
            if slot is None or slot < 0:
                raise ValueError(f"No writable slot known for {profile.model}; pass slot")
            disconnect = session.push_to_device(profile, slot, -pregain, filters)
            return {
                "device": profile.model,
                "status": "success",
                "slot": slot,
                "filters_written": min(len(filters), profile.max_filters),
                "pregain": pregain,
                "disconnect_expected": disconnect,
            }

        return _with_session(device_id, _write)

    elif name == "enable_peq":
        enable = bool(arguments.get("enable", True))
        slot = arguments.get("slot", 0)

        def _enable(session):
            session.enable_peq(None, enable, slot)
            return {"device": session.profile.model, "enabled": enable, "slot": slot if enable else None}

        return _with_session(device_id, _enable)

    elif name == "get_current_slot":
        def _current(session):
            profile = session.profile
            slot = session.get_current_slot(profile)
            return {"device": profile.model, "slot": slot, "name": profile.slot_name(slot)}

        return _with_session(device_id, _current)

    raise ValueError(f"Unknown tool: {name}")


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools"""
    return [
        Tool(
            name="list_devices",
            description="List connected FiiO / JadeAudio PEQ devices",
            inputSchema={"type": "object", "properties": {}, "required": []}
        ),
        Tool(
            name="get_device_profile",
            description="Get the capability profile of a device (max filters, gain range, slots)",
            inputSchema={"type": "object", "properties": {"device_id": _DEVICE_ID}, "required": []}
        ),
        Tool(
            name="read_peq",
            description="Read current PEQ settings (global gain, current slot and filters) from a device",
            inputSchema={"type": "object", "properties": {"device_id": _DEVICE_ID}, "required": []}
        ),
        Tool(
            name="write_peq",
            description="Write PEQ filters and pregain to a device and save them into a slot",
            inputSchema={
                "type": "object",
                "properties": {
                    "device_id": _DEVICE_ID,
                    "filters": {
                        "type": "array",
                        "description": "Array of filter objects: freq (Hz), gain (dB), q, type (PK/LSQ/HSQ). Extra filters beyond the device maximum are dropped.",
                        "items": {
                            "type": "object",
                            "properties": {
                                "freq": {"type": "number", "description": "Frequency in Hz"},
                                "gain": {"type": "number", "description": "Gain in dB"},
                                "q": {"type": "number", "description": "Q factor"},
                                "type": {"type": "string", "enum": ["PK", "LSQ", "HSQ"], "description": "Filter type"}
                            },
                            "required": ["freq", "gain", "q"]
                        }
                    },
                    "pregain": {"type": "number", "description": "Pregain in dB (usually negative)"},
                    "slot": {"type": "integer", "description": "Slot to save into (default: first writable slot)"}
                },
                "required": ["filters"]
            }
        ),
        Tool(
            name="enable_peq",
            description="Enable PEQ on a slot, or disable it",
            inputSchema={
                "type": "object",
                "properties": {
                    "device_id": _DEVICE_ID,
                    "enable": {"type": "boolean", "description": "True to enable, false to disable"},
                    "slot": {"type": "integer", "description": "Slot to switch to when enabling"}
                },
                "required": ["enable"]
            }
        ),
        Tool(
            name="get_current_slot",
            description="Get the active slot (-1: PEQ off or unknown preset, -99: device did not answer)",
            inputSchema={"type": "object", "properties": {"device_id": _DEVICE_ID}, "required": []}
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls"""
    try:
        result = run_tool(name, arguments or {})
        return [TextContent(type="text", text=json.dumps(result, indent=2))]
    except ProfileValidationError as e:
        return [TextContent(type="text", text=f"Validation error: {str(e)}")]
    except DeviceError as e:
        return [TextContent(type="text", text=f"Device error: {str(e)}")]
    except (KeyError, ValueError) as e:
        return [TextContent(type="text", text=f"Error: {str(e)}")]


async def _serve():
    """Run the MCP server using stdio transport"""
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options()
        )


def main():
    import asyncio
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
