"""
Raw frame sources
Turns recorded bus logs into an ordered, single-pass sequence of CANMessage
"""

import os
import csv
import json
import logging
from typing import Iterable, Iterator

import can

from .messages import CANMessage, NS_PER_SECOND, normalize_channel
from ..exceptions import FrameSourceError

logger = logging.getLogger(__name__)

# Formats read through python-can's LogReader
CAN_LOG_SUFFIXES = ('.asc', '.blf', '.csv', '.db', '.log', '.mf4', '.trc')
# QCAN Explorer export formats
QCAN_SUFFIXES = ('.json',)

QCAN_CSV_HEADER = ['Timestamp', 'ID', 'DLC', 'Data', 'Direction', 'Extended', 'Remote', 'Error']


def _parse_bool(value: str) -> bool:
    return str(value).strip().lower() in ('true', '1', 'yes')


def _parse_id(value: str) -> int:
    value = value.strip()
    return int(value, 16) if value.lower().startswith('0x') else int(value)


def read_qcan_json(filename: str) -> Iterator[CANMessage]:
    """Read messages from the QCAN JSON export format.

    The document is parsed on the call, frames are built as they are consumed.
    """
    try:
        with open(filename, 'r') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise FrameSourceError(f"Cannot read QCAN JSON log {filename}: {e}") from e

    if not isinstance(data, dict):
        raise FrameSourceError(f"Not a QCAN JSON log: {filename}")
    return _iter_qcan_json(data.get('messages', []))


def _iter_qcan_json(messages) -> Iterator[CANMessage]:
    for msg_data in messages:
        yield CANMessage(
            timestamp_ns=int(round(float(msg_data['timestamp']) * NS_PER_SECOND)),
            arbitration_id=int(msg_data['id']),
            data=bytes(msg_data['data']),
            is_extended_id=msg_data.get('extended_id', False),
            is_remote_frame=msg_data.get('remote_frame', False),
            is_error_frame=msg_data.get('error_frame', False),
            is_fd=msg_data.get('fd', len(msg_data['data']) > 8),
            channel=normalize_channel(msg_data.get('channel')),
        )


def read_qcan_csv(filename: str) -> Iterator[CANMessage]:
    """Read messages from the QCAN CSV export format"""
    try:
        f = open(filename, 'r', newline='')
    except OSError as e:
        raise FrameSourceError(f"Cannot open QCAN CSV log {filename}: {e}") from e
    return _iter_qcan_csv(f)


def _iter_qcan_csv(f) -> Iterator[CANMessage]:
    with f:
        for row in csv.DictReader(f):
            data_bytes = bytes.fromhex(row['Data'].replace(' ', ''))
            yield CANMessage(
                timestamp_ns=int(round(float(row['Timestamp']) * NS_PER_SECOND)),
                arbitration_id=_parse_id(row['ID']),
                data=data_bytes,
                is_extended_id=_parse_bool(row['Extended']),
                is_remote_frame=_parse_bool(row['Remote']),
                is_error_frame=_parse_bool(row['Error']),
                is_fd=len(data_bytes) > 8,
                channel=normalize_channel(row.get('Channel')),
            )


def _is_qcan_csv(filename: str) -> bool:
    with open(filename, 'r', newline='') as f:
        header = f.readline().strip().split(',')
    return header[:len(QCAN_CSV_HEADER)] == QCAN_CSV_HEADER


def read_can_log(filename: str) -> Iterator[CANMessage]:
    """Read any format python-can knows about, opening the reader on the call"""
    try:
        reader = can.LogReader(filename)
    except (OSError, ValueError) as e:
        raise FrameSourceError(f"Cannot open log {filename}: {e}") from e
    return _iter_log_reader(reader)


def _iter_log_reader(reader) -> Iterator[CANMessage]:
    try:
        for msg in reader:
            yield CANMessage.from_can_message(msg)
    finally:
        reader.stop()


def open_frame_source(filename: str) -> Iterator[CANMessage]:
    """Open a log file and return a lazy frame iterator.

    The file is checked up front so that a missing or unsupported input is
    reported before the run starts rather than on the first read.
    """
    if not filename or not os.path.isfile(filename):
        raise FrameSourceError(f"Log file not found: {filename}")

    suffix = os.path.splitext(filename)[1].lower()
    if suffix == '.gz':
        suffix = os.path.splitext(filename[:-3])[1].lower()

    if suffix in QCAN_SUFFIXES:
        logger.info("Reading QCAN JSON log: %s", filename)
        return read_qcan_json(filename)

    if suffix == '.csv' and _is_qcan_csv(filename):
        logger.info("Reading QCAN CSV log: %s", filename)
        return read_qcan_csv(filename)

    if suffix in CAN_LOG_SUFFIXES:
        logger.info("Reading %s log through python-can: %s", suffix, filename)
        return read_can_log(filename)

    raise FrameSourceError(f"Unsupported log format: {suffix or filename}")


def iter_frames(messages: Iterable) -> Iterator[CANMessage]:
    """Normalize an iterable of CANMessage or python-can Message objects"""
    if messages is None:
        raise FrameSourceError("No frame source given")

    for msg in messages:
        if isinstance(msg, CANMessage):
            yield msg
        elif isinstance(msg, can.Message):
            yield CANMessage.from_can_message(msg)
        else:
            raise FrameSourceError(f"Unsupported frame object: {type(msg).__name__}")
