"""
Signal extraction from raw CAN payloads
Bit extraction in both byte orders, sign extension, IEEE-754 reinterpretation,
physical value scaling and container PDU splitting. Everything here is free
of state.
"""

import math
import struct
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from ..analysis.catalog import (CONTAINER_SHORT_HEADER, ByteOrder, MessageDefinition,
                                SignalDefinition, ValueType)
from ..exceptions import SignalDecodeError

logger = logging.getLogger(__name__)

Number = Union[int, float]


@dataclass(frozen=True)
class DecodedSignal:
    """One decoded signal value"""
    definition: SignalDefinition
    raw_value: Number
    value: Number
    value_description: Optional[str] = None

    @property
    def name(self) -> str:
        return self.definition.name


class MessageDecoder:
    """Shared utility for decoding CAN payloads using signal definitions"""

    @staticmethod
    def extract_bits(data: bytes, start_bit: int, bit_length: int,
                     byte_order: ByteOrder = ByteOrder.LITTLE_ENDIAN) -> int:
        """Extract an unsigned bit field from a payload"""
        if bit_length <= 0:
            raise SignalDecodeError(f"Invalid bit length {bit_length}")
        if start_bit < 0:
            raise SignalDecodeError(f"Invalid start bit {start_bit}")

        required_bytes = (start_bit + bit_length + 7) // 8
        if required_bytes > len(data):
            raise SignalDecodeError(
                f"Bits {start_bit}..{start_bit + bit_length - 1} need {required_bytes} bytes, "
                f"payload has {len(data)}"
            )

        if byte_order == ByteOrder.BIG_ENDIAN:
            return MessageDecoder._extract_big_endian(data, start_bit, bit_length)
        return MessageDecoder._extract_little_endian(data, start_bit, bit_length)

    @staticmethod
    def _extract_little_endian(data: bytes, start_bit: int, bit_length: int) -> int:
        # Intel: start bit is the LSB, bit 0 is the LSB of byte 0
        value = 0
        for i in range(bit_length):
            bit_pos = start_bit + i
            bit_value = (data[bit_pos // 8] >> (bit_pos % 8)) & 1
            value |= bit_value << i
        return value

    @staticmethod
    def _extract_big_endian(data: bytes, start_bit: int, bit_length: int) -> int:
        # Motorola, sequential numbering: bit 0 is the MSB of byte 0,
        # bit 7 is LSB of byte 0, bit 8 is MSB of byte 1, etc.
        value = 0
        for i in range(bit_length):
            bit_pos = start_bit + i
            bit_index = 7 - (bit_pos % 8)
            bit_value = (data[bit_pos // 8] >> bit_index) & 1
            value |= bit_value << (bit_length - 1 - i)
        return value

    @staticmethod
    def sign_extend(value: int, bit_length: int) -> int:
        """Interpret an unsigned bit field as two's complement"""
        sign_bit = 1 << (bit_length - 1)
        if value & sign_bit:
            return value - (1 << bit_length)
        return value

    @staticmethod
    def decode_raw(data: bytes, signal: SignalDefinition) -> Number:
        """Extract the raw value of a signal per its declared encoding"""
        raw = MessageDecoder.extract_bits(data, signal.start_bit, signal.bit_length, signal.byte_order)

        if signal.value_type == ValueType.SIGNED:
            return MessageDecoder.sign_extend(raw, signal.bit_length)
        if signal.value_type == ValueType.FLOAT:
            if signal.bit_length == 32:
                return struct.unpack('>f', struct.pack('>I', raw))[0]
            if signal.bit_length == 64:
                return struct.unpack('>d', struct.pack('>Q', raw))[0]
            raise SignalDecodeError(
                f"Float signal '{signal.name}' must be 32 or 64 bits, got {signal.bit_length}"
            )
        return raw

    @staticmethod
    def to_physical(raw: Number, signal: SignalDefinition) -> Number:
        """Apply scale and offset"""
        if isinstance(raw, int) and signal.factor == 1 and signal.offset == 0:
            return raw
        return raw * signal.factor + signal.offset

    @staticmethod
    def decode_signal(data: bytes, signal: SignalDefinition) -> DecodedSignal:
        raw = MessageDecoder.decode_raw(data, signal)
        description = None
        if signal.choices and isinstance(raw, int):
            description = signal.choices.get(raw)
        return DecodedSignal(
            definition=signal,
            raw_value=raw,
            value=MessageDecoder.to_physical(raw, signal),
            value_description=description,
        )

    @staticmethod
    def decode_message(data: bytes, message: MessageDefinition) -> List[DecodedSignal]:
        """Decode all active signals of a message.

        The multiplexer is decoded first; multiplexed signals are only decoded
        when the selector value is one of their multiplexer ids. Fields that do
        not fit the payload are skipped.
        """
        selector = None
        multiplexer = message.multiplexer
        if multiplexer is not None:
            try:
                selector = int(MessageDecoder.decode_raw(data, multiplexer))
            except (SignalDecodeError, ValueError, OverflowError) as e:
                logger.debug("Multiplexer %s of %s not decodable: %s", multiplexer.name, message.name, e)

        decoded = []
        for signal in message.signals:
            if signal.is_multiplexed and (selector is None or selector not in signal.multiplexer_ids):
                continue
            try:
                decoded.append(MessageDecoder.decode_signal(data, signal))
            except SignalDecodeError as e:
                logger.debug("Skipping %s.%s: %s", message.name, signal.name, e)

        return decoded

    @staticmethod
    def unpack_container(data: bytes, message: MessageDefinition) -> List[Tuple[int, bytes]]:
        """Split a container payload into (header id, PDU payload) pairs.

        Headers are read back to back until the payload runs out or an
        all-zero header marks padding. A PDU longer than the remaining payload
        ends the walk with a warning.
        """
        header_size = message.container_header_size
        id_size = 3 if header_size == CONTAINER_SHORT_HEADER else 4
        byteorder = 'big' if message.header_byte_order == ByteOrder.BIG_ENDIAN else 'little'

        pdus = []
        offset = 0
        while offset + header_size <= len(data):
            header = data[offset:offset + header_size]
            if not any(header):
                break
            header_id = int.from_bytes(header[:id_size], byteorder)
            pdu_length = int.from_bytes(header[id_size:], byteorder)
            offset += header_size
            if offset + pdu_length > len(data):
                logger.warning("Container %s: PDU 0x%X needs %d bytes, %d left",
                               message.name, header_id, pdu_length, len(data) - offset)
                break
            pdus.append((header_id, bytes(data[offset:offset + pdu_length])))
            offset += pdu_length

        return pdus

    @staticmethod
    def format_value(value: Optional[Number], unit: str = "", description: Optional[str] = None) -> str:
        """Format a physical value for display"""
        if value is None:
            return "n/a"
        if description:
            return description
        unit_str = f" {unit}" if unit else ""
        if isinstance(value, float) and not math.isfinite(value):
            return f"{value}{unit_str}"
        # Format based on whether it's a whole number or has decimals
        if value == int(value):
            return f"{int(value)}{unit_str}"
        return f"{value:.3f}{unit_str}"
