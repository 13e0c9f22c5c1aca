"""Shared fixtures for canlog tests."""

import pytest

from canlog.analysis.catalog import (ByteOrder, MessageDefinition, SignalCatalog,
                                     SignalDefinition, ValueType)
from canlog.canbus.messages import CANMessage

NS_PER_MS = 1_000_000


@pytest.fixture
def frame():
    """Factory for CANMessage objects with millisecond timestamps."""

    def _frame(timestamp_ms, arbitration_id, data, channel=0, **kwargs):
        return CANMessage(
            timestamp_ns=int(timestamp_ms * NS_PER_MS),
            arbitration_id=arbitration_id,
            data=bytes(data),
            channel=channel,
            **kwargs,
        )

    return _frame


@pytest.fixture
def engine_message():
    """EngineData (0x100): Speed 0..15 LE, Gear 16..19 with labels, Temp byte 3 signed."""
    return MessageDefinition(
        name="EngineData",
        frame_id=0x100,
        length=8,
        senders=("ECU",),
        signals=[
            SignalDefinition(name="Speed", start_bit=0, bit_length=16, unit="rpm"),
            SignalDefinition(
                name="Gear",
                start_bit=16,
                bit_length=4,
                choices={0: "Park", 1: "Reverse", 2: "Neutral", 3: "Drive"},
            ),
            SignalDefinition(
                name="Temp",
                start_bit=24,
                bit_length=8,
                value_type=ValueType.SIGNED,
                offset=-40.0,
                unit="degC",
            ),
        ],
    )


@pytest.fixture
def mux_message():
    """Diag (0x200): Page selector byte 0, Voltage for page 1, Current (MSB first) for page 2."""
    return MessageDefinition(
        name="Diag",
        frame_id=0x200,
        length=8,
        signals=[
            SignalDefinition(name="Page", start_bit=0, bit_length=8, is_multiplexer=True),
            SignalDefinition(
                name="Voltage", start_bit=8, bit_length=16, factor=0.01, unit="V",
                multiplexer_ids=(1,),
            ),
            SignalDefinition(
                name="Current", start_bit=8, bit_length=16, byte_order=ByteOrder.BIG_ENDIAN,
                value_type=ValueType.SIGNED, unit="A", multiplexer_ids=(2,),
            ),
        ],
    )


@pytest.fixture
def catalog(engine_message, mux_message):
    catalog = SignalCatalog()
    catalog.add_message(engine_message)
    catalog.add_message(mux_message)
    return catalog


@pytest.fixture
def container_message():
    """VehicleContainer (0x300): short-header container with BodyStatus (0x10) and ClimateStatus (0x20)."""
    return MessageDefinition(
        name="VehicleContainer",
        frame_id=0x300,
        length=16,
        senders=("BCM",),
        contained_messages=[
            MessageDefinition(
                name="BodyStatus",
                frame_id=0x300,
                length=2,
                header_id=0x10,
                signals=[
                    SignalDefinition(name="DoorOpen", start_bit=0, bit_length=1),
                    SignalDefinition(name="Lights", start_bit=8, bit_length=8),
                ],
            ),
            MessageDefinition(
                name="ClimateStatus",
                frame_id=0x300,
                length=1,
                header_id=0x20,
                senders=("HVAC",),
                signals=[
                    SignalDefinition(name="CabinTemp", start_bit=0, bit_length=8,
                                     offset=-40.0, unit="degC"),
                ],
            ),
        ],
    )
