"""
ISO 15765-2 (CAN-TP / ISO-TP) reassembly
Reconstructs segmented diagnostic payloads from the recorded frame stream.

Timeouts are evaluated against frame timestamps, so replaying the same log
always produces the same messages.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum, auto
from typing import Dict, Iterable, List, Optional, Tuple

from .messages import CANMessage
from ..exceptions import TransportError

logger = logging.getLogger(__name__)

NS_PER_MS = 1_000_000
CLASSIC_CAN_DL = 8

SessionKey = Tuple[int, int, int]  # channel, source address, target address


class FrameType(IntEnum):
    """PCI frame type, high nibble of the first byte"""
    SINGLE = 0
    FIRST = 1
    CONSECUTIVE = 2
    FLOW_CONTROL = 3


class FlowStatus(IntEnum):
    """Flow control status, low nibble of an FC frame"""
    CONTINUE_TO_SEND = 0
    WAIT = 1
    OVERFLOW = 2


class SessionState(Enum):
    """Reassembly state of one session"""
    IDLE = auto()
    RECEIVING = auto()
    COMPLETE = auto()
    ERRORED = auto()
    TIMED_OUT = auto()


@dataclass(frozen=True)
class TransportPair:
    """Request/response identifier pair carrying ISO-TP traffic"""
    source: int
    target: int
    name: Optional[str] = None


@dataclass
class TransportSession:
    """In-progress reassembly of one segmented message"""
    channel: int
    source_addr: int
    target_addr: int
    total_length: int
    first_timestamp_ns: int
    last_activity_ns: int
    deadline_ns: int
    buffer: bytearray = field(default_factory=bytearray)
    next_sequence: int = 1
    block_size: int = 0
    st_min_us: int = 0
    frames_since_flow_control: int = 0
    wait_count: int = 0
    state: SessionState = SessionState.RECEIVING

    @property
    def key(self) -> SessionKey:
        return (self.channel, self.source_addr, self.target_addr)


@dataclass(frozen=True)
class TransportMessage:
    """A fully reassembled ISO-TP payload"""
    channel: int
    source_addr: int
    target_addr: int
    payload: bytes
    timestamp_ns: int
    first_timestamp_ns: int
    is_single_frame: bool = False

    @property
    def length(self) -> int:
        return len(self.payload)


@dataclass
class TransportStats:
    """Counters for one run"""
    completed: int = 0
    single_frames: int = 0
    errored: int = 0
    timed_out: int = 0
    ignored: int = 0
    discarded: int = 0

    def to_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


def decode_st_min(raw: int) -> int:
    """STmin byte to microseconds; reserved values map to the 127 ms maximum"""
    if raw <= 0x7F:
        return raw * 1000
    if 0xF1 <= raw <= 0xF9:
        return (raw - 0xF0) * 100
    return 127 * 1000


class TransportReassembler:
    """ISO-TP receive state machine for all configured identifier pairs"""

    def __init__(self, pairs: Iterable[TransportPair] = (), auto_detect: bool = False,
                 timeout_ms: int = 1000, max_wait_frames: int = 10):
        self.auto_detect = auto_detect
        self.timeout_ns = timeout_ms * NS_PER_MS
        self.max_wait_frames = max_wait_frames
        self.stats = TransportStats()
        self._routes: Dict[int, int] = {}
        self._sessions: Dict[SessionKey, TransportSession] = {}

        for pair in pairs:
            self._routes[pair.source] = pair.target
            self._routes[pair.target] = pair.source

    @property
    def active_sessions(self) -> List[TransportSession]:
        return list(self._sessions.values())

    def peer_of(self, arbitration_id: int, is_extended_id: bool = False) -> Optional[int]:
        """Identifier used by the other side of a conversation, None if not ISO-TP traffic"""
        peer = self._routes.get(arbitration_id)
        if peer is not None or not self.auto_detect:
            return peer

        if not is_extended_id:
            # OBD-II physical request/response identifiers
            if 0x7E0 <= arbitration_id <= 0x7E7:
                return arbitration_id + 8
            if 0x7E8 <= arbitration_id <= 0x7EF:
                return arbitration_id - 8
            if arbitration_id == 0x7DF:
                # Functional request, no single responder
                return arbitration_id
            return None

        # Normal fixed addressing, 0x18DA<TA><SA>
        if (arbitration_id >> 16) & 0xFF == 0xDA:
            target = (arbitration_id >> 8) & 0xFF
            source = arbitration_id & 0xFF
            return (arbitration_id & 0xFFFF0000) | (source << 8) | target
        return None

    def feed(self, frame: CANMessage) -> Optional[TransportMessage]:
        """Process one frame, returns a message when one completes"""
        self.expire(frame.timestamp_ns)

        if frame.is_error_frame or frame.is_remote_frame or not frame.data:
            return None

        peer = self.peer_of(frame.arbitration_id, frame.is_extended_id)
        if peer is None:
            return None

        frame_type = frame.data[0] >> 4
        key = (frame.channel, frame.arbitration_id, peer)

        try:
            if frame_type == FrameType.SINGLE:
                return self._single_frame(frame, key)
            if frame_type == FrameType.FIRST:
                self._first_frame(frame, key)
            elif frame_type == FrameType.CONSECUTIVE:
                return self._consecutive_frame(frame, key)
            elif frame_type == FrameType.FLOW_CONTROL:
                # Flow control travels opposite to the data it paces
                self._flow_control(frame, (frame.channel, peer, frame.arbitration_id))
            else:
                self.stats.ignored += 1
                logger.debug("Unknown PCI type %d on 0x%X", frame_type, frame.arbitration_id)
        except TransportError as e:
            self.stats.errored += 1
            logger.warning("ISO-TP 0x%X -> 0x%X on channel %d: %s",
                           key[1], key[2], frame.channel, e)
        return None

    def expire(self, now_ns: int) -> int:
        """Drop sessions whose deadline passed before `now_ns`"""
        expired = [key for key, s in self._sessions.items() if now_ns > s.deadline_ns]
        for key in expired:
            session = self._sessions.pop(key)
            session.state = SessionState.TIMED_OUT
            self.stats.timed_out += 1
            logger.debug("ISO-TP session 0x%X -> 0x%X timed out with %d/%d bytes",
                         session.source_addr, session.target_addr,
                         len(session.buffer), session.total_length)
        return len(expired)

    def finish(self) -> int:
        """Discard every session still receiving"""
        count = len(self._sessions)
        for session in self._sessions.values():
            session.state = SessionState.IDLE
            logger.debug("Discarding incomplete ISO-TP session 0x%X -> 0x%X",
                         session.source_addr, session.target_addr)
        self._sessions.clear()
        self.stats.discarded += count
        return count

    def _fail(self, key: SessionKey, reason: str):
        session = self._sessions.pop(key, None)
        if session is not None:
            session.state = SessionState.ERRORED
        raise TransportError(reason)

    def _touch(self, session: TransportSession, timestamp_ns: int):
        session.last_activity_ns = timestamp_ns
        session.deadline_ns = timestamp_ns + self.timeout_ns

    def _single_frame(self, frame: CANMessage, key: SessionKey) -> TransportMessage:
        data = frame.data
        length = data[0] & 0x0F
        start = 1
        if length == 0 and len(data) > CLASSIC_CAN_DL:
            # CAN FD escape: length in the second byte
            length = data[1]
            start = 2

        if key in self._sessions:
            self._sessions.pop(key).state = SessionState.ERRORED
            self.stats.errored += 1
            logger.warning("ISO-TP 0x%X: single frame interrupted a segmented reception", key[1])

        if length == 0 or start + length > len(data):
            raise TransportError(f"invalid single frame length {length}")

        self.stats.single_frames += 1
        return TransportMessage(
            channel=frame.channel,
            source_addr=key[1],
            target_addr=key[2],
            payload=bytes(data[start:start + length]),
            timestamp_ns=frame.timestamp_ns,
            first_timestamp_ns=frame.timestamp_ns,
            is_single_frame=True,
        )

    def _first_frame(self, frame: CANMessage, key: SessionKey):
        data = frame.data
        if len(data) < 2:
            self._fail(key, "truncated first frame")

        total_length = ((data[0] & 0x0F) << 8) | data[1]
        start = 2
        if total_length == 0:
            # Escape sequence for payloads above 4095 bytes
            if len(data) < 6:
                self._fail(key, "truncated first frame length escape")
            total_length = int.from_bytes(data[2:6], 'big')
            start = 6

        # Anything a single frame of this size could carry must not be segmented
        single_frame_capacity = 7 if len(data) <= 8 else len(data) - 2
        if total_length <= single_frame_capacity:
            self._fail(key, f"first frame length {total_length} fits in a single frame")

        if key in self._sessions:
            self._sessions.pop(key).state = SessionState.ERRORED
            self.stats.errored += 1
            logger.warning("ISO-TP 0x%X: new first frame replaced an unfinished session", key[1])

        session = TransportSession(
            channel=frame.channel,
            source_addr=key[1],
            target_addr=key[2],
            total_length=total_length,
            first_timestamp_ns=frame.timestamp_ns,
            last_activity_ns=frame.timestamp_ns,
            deadline_ns=frame.timestamp_ns + self.timeout_ns,
            buffer=bytearray(data[start:]),
        )
        self._sessions[key] = session
        logger.debug("ISO-TP 0x%X -> 0x%X: first frame, %d bytes announced",
                     key[1], key[2], total_length)

    def _consecutive_frame(self, frame: CANMessage, key: SessionKey) -> Optional[TransportMessage]:
        session = self._sessions.get(key)
        if session is None:
            self.stats.ignored += 1
            logger.debug("ISO-TP 0x%X: consecutive frame without session", key[1])
            return None

        sequence = frame.data[0] & 0x0F
        if sequence != session.next_sequence:
            self._fail(key, f"expected sequence {session.next_sequence}, got {sequence}")

        session.buffer.extend(frame.data[1:])
        session.next_sequence = (sequence + 1) % 16
        session.frames_since_flow_control += 1
        if session.block_size and session.frames_since_flow_control > session.block_size:
            logger.debug("ISO-TP 0x%X: block size %d exceeded without flow control",
                         key[1], session.block_size)
        self._touch(session, frame.timestamp_ns)

        if len(session.buffer) < session.total_length:
            return None

        del self._sessions[key]
        session.state = SessionState.COMPLETE
        self.stats.completed += 1
        return TransportMessage(
            channel=session.channel,
            source_addr=session.source_addr,
            target_addr=session.target_addr,
            payload=bytes(session.buffer[:session.total_length]),
            timestamp_ns=frame.timestamp_ns,
            first_timestamp_ns=session.first_timestamp_ns,
        )

    def _flow_control(self, frame: CANMessage, key: SessionKey):
        session = self._sessions.get(key)
        if session is None:
            self.stats.ignored += 1
            return

        data = frame.data
        status = data[0] & 0x0F
        if status == FlowStatus.CONTINUE_TO_SEND:
            session.block_size = data[1] if len(data) > 1 else 0
            session.st_min_us = decode_st_min(data[2]) if len(data) > 2 else 0
            session.wait_count = 0
            session.frames_since_flow_control = 0
        elif status == FlowStatus.WAIT:
            session.wait_count += 1
            if session.wait_count > self.max_wait_frames:
                self._fail(key, f"more than {self.max_wait_frames} flow control wait frames")
        elif status == FlowStatus.OVERFLOW:
            self._fail(key, "receiver reported buffer overflow")
        else:
            self._fail(key, f"invalid flow status {status}")

        self._touch(session, frame.timestamp_ns)
