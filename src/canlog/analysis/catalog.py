"""
Signal Catalog
Static lookup from (channel, message identifier) to signal definitions
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from ..exceptions import CatalogError

logger = logging.getLogger(__name__)

# Container PDU header sizes: 3-byte id + 1-byte length, or 4-byte id + 4-byte length
CONTAINER_SHORT_HEADER = 4
CONTAINER_LONG_HEADER = 8
CONTAINER_HEADER_SIZES = (CONTAINER_SHORT_HEADER, CONTAINER_LONG_HEADER)


class ByteOrder(Enum):
    """Signal byte order"""
    LITTLE_ENDIAN = "little_endian"  # Intel
    BIG_ENDIAN = "big_endian"        # Motorola


class ValueType(Enum):
    """Raw value interpretation"""
    UNSIGNED = "unsigned"
    SIGNED = "signed"
    FLOAT = "float"


@dataclass(frozen=True)
class SignalDefinition:
    """A named bit field inside a message payload"""
    name: str
    start_bit: int
    bit_length: int
    byte_order: ByteOrder = ByteOrder.LITTLE_ENDIAN
    value_type: ValueType = ValueType.UNSIGNED
    factor: float = 1.0
    offset: float = 0.0
    unit: str = ""
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    choices: Optional[Dict[int, str]] = field(default=None, hash=False, compare=False)
    is_multiplexer: bool = False
    multiplexer_ids: Tuple[int, ...] = ()
    receivers: Tuple[str, ...] = ()
    comment: str = ""

    @property
    def is_multiplexed(self) -> bool:
        return bool(self.multiplexer_ids)

    def payload_bits(self) -> Set[Tuple[int, int]]:
        """(byte index, bit in byte) pairs covered by this signal, LSB = bit 0"""
        bits = set()
        for i in range(self.bit_length):
            pos = self.start_bit + i
            if self.byte_order == ByteOrder.LITTLE_ENDIAN:
                bits.add((pos // 8, pos % 8))
            else:
                bits.add((pos // 8, 7 - (pos % 8)))
        return bits


@dataclass
class MessageDefinition:
    """A CAN message definition.

    A container message carries other PDUs behind per-PDU headers instead of
    (or next to) its own signals. Each contained PDU is a MessageDefinition
    with a header_id.
    """
    name: str
    frame_id: int
    length: int = 8
    is_extended_id: bool = False
    senders: Tuple[str, ...] = ()
    signals: List[SignalDefinition] = field(default_factory=list)
    cycle_time: Optional[int] = None
    comment: str = ""
    source: str = ""
    header_id: Optional[int] = None
    contained_messages: List['MessageDefinition'] = field(default_factory=list)
    container_header_size: int = CONTAINER_SHORT_HEADER
    header_byte_order: ByteOrder = ByteOrder.BIG_ENDIAN

    @property
    def sender(self) -> str:
        return self.senders[0] if self.senders else ""

    @property
    def is_container(self) -> bool:
        return bool(self.contained_messages)

    @property
    def multiplexer(self) -> Optional[SignalDefinition]:
        for signal in self.signals:
            if signal.is_multiplexer:
                return signal
        return None

    def get_signal(self, name: str) -> Optional[SignalDefinition]:
        for signal in self.signals:
            if signal.name == name:
                return signal
        return None

    def get_contained_message(self, header_id: int) -> Optional['MessageDefinition']:
        for contained in self.contained_messages:
            if contained.header_id == header_id:
                return contained
        return None

    def validate(self):
        """Check signal names, multiplexer layout, bit overlaps and contained PDUs"""
        names = set()
        for signal in self.signals:
            if signal.name in names:
                raise CatalogError(f"Duplicate signal '{signal.name}' in message {self.name}")
            names.add(signal.name)
            if signal.bit_length <= 0:
                raise CatalogError(f"Signal '{signal.name}' in message {self.name} has no bits")

        multiplexers = [s for s in self.signals if s.is_multiplexer]
        if len(multiplexers) > 1:
            raise CatalogError(f"Message {self.name} declares more than one multiplexer")
        if not multiplexers and any(s.is_multiplexed for s in self.signals):
            raise CatalogError(f"Message {self.name} has multiplexed signals but no multiplexer")

        covered = [(s, s.payload_bits()) for s in self.signals]
        for i, (first, first_bits) in enumerate(covered):
            for second, second_bits in covered[i + 1:]:
                if not first_bits & second_bits:
                    continue
                if (first.is_multiplexed and second.is_multiplexed
                        and not set(first.multiplexer_ids) & set(second.multiplexer_ids)):
                    continue
                raise CatalogError(
                    f"Signals '{first.name}' and '{second.name}' overlap in message "
                    f"{self.name} (0x{self.frame_id:X})"
                )

        if self.contained_messages:
            self._validate_contained()

    def _validate_contained(self):
        if self.container_header_size not in CONTAINER_HEADER_SIZES:
            raise CatalogError(
                f"Container {self.name} has unsupported header size {self.container_header_size}"
            )
        header_ids = set()
        for contained in self.contained_messages:
            if contained.header_id is None:
                raise CatalogError(f"Contained PDU {contained.name} in {self.name} has no header id")
            if contained.header_id in header_ids:
                raise CatalogError(
                    f"Header id 0x{contained.header_id:X} used twice in container {self.name}"
                )
            header_ids.add(contained.header_id)
            if contained.contained_messages:
                raise CatalogError(f"Contained PDU {contained.name} in {self.name} is a container")
            contained.validate()


@dataclass(frozen=True)
class CatalogStats:
    """Statistics about the loaded catalog"""
    messages: int
    signals: int
    channels: int


class SignalCatalog:
    """Lookup structure for message and signal definitions.

    Messages are keyed by channel, identifier and identifier format, so a
    standard 0x100 and an extended 0x100 are different messages.
    """

    def __init__(self):
        self._messages: Dict[Tuple[int, int, bool], MessageDefinition] = {}

    def add_message(self, message: MessageDefinition, channels: Iterable[int] = (0,)):
        """Register a message definition on one or more channels"""
        message.validate()
        for channel in channels:
            key = (channel, message.frame_id, message.is_extended_id)
            existing = self._messages.get(key)
            if existing is not None:
                logger.warning(
                    "Message 0x%X on channel %d: %s replaces %s",
                    message.frame_id, channel, message.name, existing.name
                )
            self._messages[key] = message

    def message_for(self, channel: int, message_id: int,
                    is_extended_id: Optional[bool] = None) -> Optional[MessageDefinition]:
        """Look up a message; with is_extended_id None either identifier format matches"""
        if is_extended_id is not None:
            return self._messages.get((channel, message_id, is_extended_id))
        message = self._messages.get((channel, message_id, False))
        if message is None:
            message = self._messages.get((channel, message_id, True))
        return message

    def signals_for(self, channel: int, message_id: int,
                    is_extended_id: Optional[bool] = None) -> Tuple[SignalDefinition, ...]:
        """Ordered signal definitions for an exact (channel, id) pair"""
        message = self.message_for(channel, message_id, is_extended_id)
        if message is None:
            return ()
        return tuple(message.signals)

    def find_signal(self, name: str) -> List[Tuple[int, int, SignalDefinition]]:
        """Every (channel, frame id, signal) carrying `name`, contained PDUs included"""
        found = []
        for channel, message in self:
            for candidate in [message] + message.contained_messages:
                signal = candidate.get_signal(name)
                if signal is not None:
                    found.append((channel, message.frame_id, signal))
        return found

    def stats(self) -> CatalogStats:
        return CatalogStats(
            messages=len(self._messages),
            signals=sum(len(m.signals) + sum(len(c.signals) for c in m.contained_messages)
                        for m in self._messages.values()),
            channels=len({channel for channel, _, _ in self._messages}),
        )

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Tuple[int, MessageDefinition]]:
        for key in sorted(self._messages):
            yield key[0], self._messages[key]
