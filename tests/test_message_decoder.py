"""Tests for payload bit extraction and signal decoding."""

import math
import struct

import pytest

from canlog.analysis.catalog import ByteOrder, MessageDefinition, SignalDefinition, ValueType
from canlog.exceptions import SignalDecodeError
from canlog.utils.message_decoder import MessageDecoder


class TestExtractBits:
    """Test bit field extraction in both byte orders."""

    def test_little_endian_whole_bytes(self):
        """Intel field spanning two bytes, LSB first."""
        assert MessageDecoder.extract_bits(bytes([0x34, 0x12]), 0, 16) == 0x1234

    def test_little_endian_unaligned(self):
        """Intel field starting mid-byte."""
        data = bytes([0xF0, 0x0F])
        assert MessageDecoder.extract_bits(data, 4, 8, ByteOrder.LITTLE_ENDIAN) == 0xFF
        assert MessageDecoder.extract_bits(data, 0, 4, ByteOrder.LITTLE_ENDIAN) == 0x0

    def test_big_endian_whole_bytes(self):
        """Motorola field spanning two bytes, MSB first."""
        assert MessageDecoder.extract_bits(bytes([0x12, 0x34]), 0, 16, ByteOrder.BIG_ENDIAN) == 0x1234

    def test_big_endian_unaligned(self):
        """Motorola field taking the low nibble of byte 0 and high nibble of byte 1."""
        assert MessageDecoder.extract_bits(bytes([0x12, 0x34]), 4, 8, ByteOrder.BIG_ENDIAN) == 0x23

    def test_single_bit(self):
        """Single bits in both numberings."""
        data = bytes([0x80])
        assert MessageDecoder.extract_bits(data, 7, 1, ByteOrder.LITTLE_ENDIAN) == 1
        assert MessageDecoder.extract_bits(data, 0, 1, ByteOrder.BIG_ENDIAN) == 1

    def test_range_beyond_payload(self):
        """Fields reaching past the payload are rejected."""
        with pytest.raises(SignalDecodeError):
            MessageDecoder.extract_bits(bytes([0x00]), 4, 8)

    def test_non_positive_length(self):
        """Zero length fields are rejected."""
        with pytest.raises(SignalDecodeError):
            MessageDecoder.extract_bits(bytes(8), 0, 0)


class TestSignExtend:
    """Test two's complement interpretation."""

    def test_negative(self):
        assert MessageDecoder.sign_extend(0xFF, 8) == -1
        assert MessageDecoder.sign_extend(0x800, 12) == -2048

    def test_positive(self):
        assert MessageDecoder.sign_extend(0x7F, 8) == 127
        assert MessageDecoder.sign_extend(0, 1) == 0


class TestDecodeRaw:
    """Test raw value interpretation."""

    def test_float32_little_endian(self):
        """IEEE-754 single precision, Intel layout."""
        signal = SignalDefinition(name="F", start_bit=0, bit_length=32, value_type=ValueType.FLOAT)
        assert MessageDecoder.decode_raw(struct.pack('<f', 1.5), signal) == 1.5

    def test_float32_big_endian(self):
        """IEEE-754 single precision, Motorola layout."""
        signal = SignalDefinition(name="F", start_bit=0, bit_length=32,
                                  byte_order=ByteOrder.BIG_ENDIAN, value_type=ValueType.FLOAT)
        assert MessageDecoder.decode_raw(struct.pack('>f', -2.25), signal) == -2.25

    def test_float64(self):
        """IEEE-754 double precision."""
        signal = SignalDefinition(name="D", start_bit=0, bit_length=64, value_type=ValueType.FLOAT)
        assert MessageDecoder.decode_raw(struct.pack('<d', math.pi), signal) == math.pi

    def test_float_bad_length(self):
        """Floats must be 32 or 64 bits."""
        signal = SignalDefinition(name="F", start_bit=0, bit_length=16, value_type=ValueType.FLOAT)
        with pytest.raises(SignalDecodeError):
            MessageDecoder.decode_raw(bytes(8), signal)

    def test_signed(self):
        """Signed fields are sign extended."""
        signal = SignalDefinition(name="S", start_bit=0, bit_length=12, value_type=ValueType.SIGNED)
        assert MessageDecoder.decode_raw(bytes([0x00, 0x08]), signal) == -2048


class TestToPhysical:
    """Test scaling."""

    def test_scale_and_offset(self):
        signal = SignalDefinition(name="T", start_bit=0, bit_length=8, factor=0.5, offset=-10.0)
        assert MessageDecoder.to_physical(100, signal) == pytest.approx(40.0)

    def test_identity_keeps_int(self):
        """No scaling keeps integer values as int."""
        signal = SignalDefinition(name="C", start_bit=0, bit_length=8)
        value = MessageDecoder.to_physical(42, signal)
        assert value == 42
        assert isinstance(value, int)


class TestDecodeMessage:
    """Test whole-message decoding."""

    def test_plain_message(self, engine_message):
        """All signals decoded with scaling and labels."""
        decoded = MessageDecoder.decode_message(bytes([0x40, 0x1F, 0x03, 0x3C, 0, 0, 0, 0]), engine_message)
        values = {d.name: d.value for d in decoded}
        assert values == {"Speed": 8000, "Gear": 3, "Temp": pytest.approx(20.0)}
        gear = next(d for d in decoded if d.name == "Gear")
        assert gear.value_description == "Drive"

    def test_multiplexed_page_one(self, mux_message):
        """Only companions of the active selector value are decoded."""
        decoded = MessageDecoder.decode_message(bytes([0x01, 0xE8, 0x03]), mux_message)
        assert [d.name for d in decoded] == ["Page", "Voltage"]
        assert decoded[1].value == pytest.approx(10.0)

    def test_multiplexed_page_two(self, mux_message):
        """Motorola signed companion on page 2."""
        decoded = MessageDecoder.decode_message(bytes([0x02, 0xFF, 0x38]), mux_message)
        assert [d.name for d in decoded] == ["Page", "Current"]
        assert decoded[1].value == -200

    def test_unknown_selector(self, mux_message):
        """A selector value no companion uses decodes only the selector."""
        decoded = MessageDecoder.decode_message(bytes([0x07, 0x00, 0x00]), mux_message)
        assert [d.name for d in decoded] == ["Page"]

    def test_selector_not_decodable(self, mux_message):
        """Companions are skipped when the selector cannot be decoded."""
        assert MessageDecoder.decode_message(b"", mux_message) == []

    def test_short_payload_skips_field(self):
        """A field beyond the payload is skipped, siblings still decode."""
        message = MessageDefinition(
            name="Short",
            frame_id=0x300,
            signals=[
                SignalDefinition(name="First", start_bit=0, bit_length=8),
                SignalDefinition(name="Last", start_bit=56, bit_length=8),
            ],
        )
        decoded = MessageDecoder.decode_message(bytes([0x05, 0x06]), message)
        assert [(d.name, d.value) for d in decoded] == [("First", 5)]


class TestUnpackContainer:
    """Test splitting container payloads at their PDU headers."""

    def test_short_headers_until_padding(self, container_message):
        data = bytes([0x00, 0x00, 0x10, 0x02, 0x01, 0x05,
                      0x00, 0x00, 0x20, 0x01, 0x55,
                      0x00, 0x00, 0x00, 0x00, 0x00])
        assert MessageDecoder.unpack_container(data, container_message) == [
            (0x10, b"\x01\x05"), (0x20, b"\x55")]

    def test_truncated_pdu_stops(self, container_message, caplog):
        data = bytes([0x00, 0x00, 0x10, 0x02, 0x01, 0x05,
                      0x00, 0x00, 0x20, 0x04, 0x55])
        assert MessageDecoder.unpack_container(data, container_message) == [(0x10, b"\x01\x05")]
        assert "needs 4 bytes" in caplog.text

    def test_long_headers(self, container_message):
        container_message.container_header_size = 8
        data = bytes([0x00, 0x00, 0x00, 0x20, 0x00, 0x00, 0x00, 0x01, 0x7F])
        assert MessageDecoder.unpack_container(data, container_message) == [(0x20, b"\x7F")]

    def test_little_endian_header(self, container_message):
        container_message.header_byte_order = ByteOrder.LITTLE_ENDIAN
        data = bytes([0x20, 0x00, 0x00, 0x01, 0x33, 0x00, 0x00, 0x00])
        assert MessageDecoder.unpack_container(data, container_message) == [(0x20, b"\x33")]


class TestFormatValue:
    """Test display formatting."""

    def test_formats(self):
        assert MessageDecoder.format_value(None) == "n/a"
        assert MessageDecoder.format_value(3, description="Drive") == "Drive"
        assert MessageDecoder.format_value(12.0, "V") == "12 V"
        assert MessageDecoder.format_value(1.23456, "A") == "1.235 A"
