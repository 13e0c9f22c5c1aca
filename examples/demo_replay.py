#!/usr/bin/env python3
"""
Replay Demo
Runs the decode engine over a synthesized trace: an engine speed ramp with
gear changes and a UDS ReadDataByIdentifier exchange over ISO-TP.
"""

import sys
import os
import logging

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from canlog import (CANMessage, DecodeEngine, EngineConfig, MessageDefinition,
                    SignalCatalog, SignalDefinition, TransportPair)
from canlog.utils.message_decoder import MessageDecoder

MS = 1_000_000


def build_catalog() -> SignalCatalog:
    catalog = SignalCatalog()
    catalog.add_message(MessageDefinition(
        name="EngineData",
        frame_id=0x100,
        senders=("ECM",),
        signals=[
            SignalDefinition(name="EngineSpeed", start_bit=0, bit_length=16, factor=0.25, unit="rpm"),
            SignalDefinition(name="Gear", start_bit=16, bit_length=4,
                             choices={0: "Park", 1: "Reverse", 2: "Neutral", 3: "Drive"}),
        ],
    ))
    return catalog


def synthesize_trace():
    """Yield frames lazily, like a log reader would"""
    t = 0
    gears = [0] * 5 + [3] * 20 + [2] * 5
    for i, gear in enumerate(gears):
        raw_speed = int((800 + i * 100) / 0.25)
        yield CANMessage(t * MS, 0x100, bytes([raw_speed & 0xFF, raw_speed >> 8, gear, 0, 0, 0, 0, 0]))
        t += 10

    # Tester asks for the VIN, ECU answers with a segmented response
    vin = b"WVWZZZ1KZAW000001"
    response = bytes([0x62, 0xF1, 0x90]) + vin
    yield CANMessage(t * MS, 0x7E0, bytes([0x03, 0x22, 0xF1, 0x90, 0, 0, 0, 0]))
    yield CANMessage((t + 5) * MS, 0x7E8, bytes([0x10, len(response)]) + response[:6])
    yield CANMessage((t + 6) * MS, 0x7E0, bytes([0x30, 0x00, 0x00, 0, 0, 0, 0, 0]))
    rest = response[6:]
    sequence = 1
    while rest:
        chunk = rest[:7].ljust(7, b"\xAA")
        rest = rest[7:]
        yield CANMessage((t + 6 + sequence) * MS, 0x7E8, bytes([0x20 | sequence]) + chunk)
        sequence += 1


def on_signal(ctx, api):
    value = MessageDecoder.format_value(ctx.current_value, ctx.unit, ctx.value_description)
    if ctx.signal_name == "Gear":
        api.append_to_raw(f"{ctx.timestamp_ns / 1e9:.3f}s gear -> {value}")
        if ctx.value_description == "Drive":
            api.start_event("Driving")
        elif api.get_prev_value("Gear") == 3:
            api.stop_event("Driving")
    elif ctx.signal_name == "EngineSpeed" and ctx.current_value > 3000:
        api.trigger_event_error("Driving", f"over-rev {value}")
    return True


def on_transport(ctx, api):
    api.append_to_raw(f"ISO-TP 0x{ctx.source_addr:X} -> 0x{ctx.target_addr:X}: {ctx.payload.hex(' ')}")
    if ctx.payload[:3] == bytes([0x62, 0xF1, 0x90]):
        api.append_to_raw(f"VIN: {ctx.payload[3:].decode('ascii')}")
    return True


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    config = EngineConfig(transport_pairs=(TransportPair(0x7E0, 0x7E8, "ECM"),))
    engine = DecodeEngine(build_catalog(), on_signal, on_transport, config)
    result = engine.run(synthesize_trace())

    print(result.render_report())


if __name__ == "__main__":
    main()
