"""
Database loading through cantools (DBC, ARXML, KCD, SYM)
"""

import logging
from typing import Iterable, List

import cantools

from ..analysis.catalog import (ByteOrder, MessageDefinition, SignalCatalog,
                                SignalDefinition, ValueType)
from ..exceptions import CatalogError

logger = logging.getLogger(__name__)


def motorola_to_sequential(start_bit: int) -> int:
    """Convert a DBC Motorola start bit (MSB, sawtooth numbering) to MSB-first sequential numbering"""
    return (start_bit // 8) * 8 + (7 - start_bit % 8)


def convert_signal(signal) -> SignalDefinition:
    """Convert a cantools signal"""
    if signal.byte_order == 'big_endian':
        byte_order = ByteOrder.BIG_ENDIAN
        start_bit = motorola_to_sequential(signal.start)
    else:
        byte_order = ByteOrder.LITTLE_ENDIAN
        start_bit = signal.start

    if signal.is_float:
        value_type = ValueType.FLOAT
    elif signal.is_signed:
        value_type = ValueType.SIGNED
    else:
        value_type = ValueType.UNSIGNED

    choices = None
    if signal.choices:
        choices = {int(raw): str(label) for raw, label in signal.choices.items()}

    return SignalDefinition(
        name=signal.name,
        start_bit=start_bit,
        bit_length=signal.length,
        byte_order=byte_order,
        value_type=value_type,
        factor=signal.scale,
        offset=signal.offset,
        unit=signal.unit or "",
        minimum=signal.minimum,
        maximum=signal.maximum,
        choices=choices,
        is_multiplexer=signal.is_multiplexer,
        multiplexer_ids=tuple(signal.multiplexer_ids or ()),
        receivers=tuple(signal.receivers or ()),
        comment=signal.comment or "",
    )


def convert_message(message, source: str = "") -> MessageDefinition:
    """Convert a cantools message, container PDUs together with their contained PDUs"""
    contained = [convert_message(c, source) for c in (message.contained_messages or [])]
    if contained:
        logger.debug("Container %s carries %d PDUs", message.name, len(contained))

    if message.header_byte_order == 'little_endian':
        header_byte_order = ByteOrder.LITTLE_ENDIAN
    else:
        header_byte_order = ByteOrder.BIG_ENDIAN

    return MessageDefinition(
        name=message.name,
        frame_id=message.frame_id,
        length=message.length,
        is_extended_id=message.is_extended_frame,
        senders=tuple(message.senders or ()),
        signals=[convert_signal(s) for s in message.signals],
        cycle_time=message.cycle_time,
        comment=message.comment or "",
        source=source,
        header_id=message.header_id,
        contained_messages=contained,
        header_byte_order=header_byte_order,
    )


def load_database(path: str) -> List[MessageDefinition]:
    """Load a database file and convert all of its messages"""
    logger.info("Loading database: %s", path)
    try:
        db = cantools.database.load_file(path, strict=False)
    except FileNotFoundError as e:
        raise CatalogError(f"Database file not found: {path}") from e
    except Exception as e:
        raise CatalogError(f"Failed to parse database {path}: {e}") from e

    messages = [convert_message(m, source=str(path)) for m in db.messages]
    logger.info("Parsed %d messages from %s", len(messages), path)
    return messages


def load_into(catalog: SignalCatalog, path: str, channels: Iterable[int] = (0,)) -> int:
    """Load a database into a catalog.

    Messages that violate the catalog invariants are skipped with a warning
    so one bad definition does not reject the whole database.
    """
    channels = tuple(channels)
    count = 0
    for message in load_database(path):
        try:
            catalog.add_message(message, channels)
        except CatalogError as e:
            logger.warning("Skipping message %s from %s: %s", message.name, path, e)
            continue
        count += 1
    return count
