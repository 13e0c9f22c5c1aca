"""
CAN Message Data Structures
"""

import re
from dataclasses import dataclass

NS_PER_SECOND = 1_000_000_000

_CHANNEL_NUMBER = re.compile(r'(\d+)$')


def normalize_channel(channel) -> int:
    """Map a python-can channel value onto a 0-based integer channel"""
    if channel is None:
        return 0
    if isinstance(channel, int):
        return channel
    match = _CHANNEL_NUMBER.search(str(channel))
    if match:
        return int(match.group(1))
    return 0


@dataclass(frozen=True)
class CANMessage:
    """Raw CAN frame as read from a log"""
    timestamp_ns: int
    arbitration_id: int
    data: bytes
    is_extended_id: bool = False
    is_remote_frame: bool = False
    is_error_frame: bool = False
    is_fd: bool = False
    channel: int = 0

    @property
    def timestamp(self) -> float:
        """Timestamp in seconds"""
        return self.timestamp_ns / NS_PER_SECOND

    @property
    def dlc(self) -> int:
        return len(self.data)

    @classmethod
    def from_can_message(cls, msg) -> 'CANMessage':
        """Convert a python-can Message"""
        return cls(
            timestamp_ns=int(round(msg.timestamp * NS_PER_SECOND)),
            arbitration_id=msg.arbitration_id,
            data=bytes(msg.data),
            is_extended_id=msg.is_extended_id,
            is_remote_frame=msg.is_remote_frame,
            is_error_frame=msg.is_error_frame,
            is_fd=getattr(msg, 'is_fd', False),
            channel=normalize_channel(getattr(msg, 'channel', None)),
        )

    def __str__(self) -> str:
        id_str = f'{self.arbitration_id:08X}' if self.is_extended_id else f'{self.arbitration_id:03X}'
        data_hex = ' '.join(f'{b:02X}' for b in self.data)
        return f'{self.timestamp:.6f} ch{self.channel} {id_str} [{self.dlc}] {data_hex}'
