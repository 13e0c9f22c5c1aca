"""
Decode & Dispatch Engine
Drives one pass over a frame sequence: signal decoding, change tracking,
ISO-TP reassembly and callback dispatch.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Optional, Tuple, Union

from .catalog import MessageDefinition, SignalCatalog
from .ledger import EventLedger
from .report import Report
from .tracker import ChangeEvent, Number, SignalTracker
from ..canbus.log_source import iter_frames, open_frame_source
from ..canbus.messages import CANMessage
from ..canbus.transport import TransportMessage, TransportPair, TransportReassembler, TransportStats
from ..exceptions import FrameSourceError
from ..utils.message_decoder import DecodedSignal, MessageDecoder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalChangeContext:
    """Handed to the signal callback for every change of a tracked signal"""
    signal_name: str
    message_name: str
    can_id: int
    channel: int
    sender: str
    current_value: Number
    previous_value: Optional[Number]
    unit: str
    value_description: Optional[str]
    timestamp_ns: int
    delta_from_start_ns: int
    delta_from_prev_ns: int


@dataclass(frozen=True)
class TransportContext:
    """Handed to the transport callback for every reassembled message"""
    source_addr: int
    target_addr: int
    channel: int
    payload: bytes
    payload_length: int
    timestamp_ns: int


class CallbackApi:
    """Operations available to callbacks during a run.

    Ledger operations are stamped with the timestamp of the frame being
    processed.
    """

    def __init__(self, tracker: SignalTracker, ledger: EventLedger, report: Report):
        self._tracker = tracker
        self._ledger = ledger
        self._report = report
        self.timestamp_ns = 0

    def append_to_raw(self, text: str):
        self._report.append_raw(text)

    def start_event(self, name: str):
        self._ledger.start_event(name, self.timestamp_ns)

    def stop_event(self, name: str):
        self._ledger.stop_event(name, self.timestamp_ns)

    def trigger_event_error(self, name: str, reason: str):
        self._ledger.trigger_error(name, reason, self.timestamp_ns)

    def get_prev_value(self, name: str) -> Optional[Number]:
        """Previous value of the signal being dispatched, latest value of any other"""
        return self._tracker.get_value(name)


SignalCallback = Callable[[SignalChangeContext, CallbackApi], Optional[bool]]
TransportCallback = Callable[[TransportContext, CallbackApi], Optional[bool]]


@dataclass
class EngineConfig:
    """Per-run engine options; None filters accept everything"""
    channels: Optional[Tuple[int, ...]] = None
    message_ids: Optional[Tuple[int, ...]] = None
    tracked_signals: Optional[Tuple[str, ...]] = None
    decode_signals: bool = True
    transport_pairs: Tuple[TransportPair, ...] = ()
    transport_auto_detect: bool = False
    transport_timeout_ms: int = 1000
    transport_max_wait_frames: int = 10

    def accepts(self, frame: CANMessage) -> bool:
        if self.channels is not None and frame.channel not in self.channels:
            return False
        if self.message_ids is not None and frame.arbitration_id not in self.message_ids:
            return False
        return True

    def is_tracked(self, name: str) -> bool:
        return self.tracked_signals is None or name in self.tracked_signals


@dataclass
class RunResult:
    """Everything that outlives a run"""
    frames_read: int = 0
    frames_decoded: int = 0
    signal_changes: int = 0
    transport_messages: int = 0
    cancelled: bool = False
    cancelled_at_ns: Optional[int] = None
    first_timestamp_ns: Optional[int] = None
    last_timestamp_ns: Optional[int] = None
    report: Report = field(default_factory=Report)
    ledger: EventLedger = field(default_factory=EventLedger)
    tracker: SignalTracker = field(default_factory=SignalTracker)
    transport_stats: TransportStats = field(default_factory=TransportStats)

    def summary(self) -> Dict[str, object]:
        """Basic run information for the report header"""
        return {
            'Frames read': self.frames_read,
            'Frames decoded': self.frames_decoded,
            'Signal changes': self.signal_changes,
            'Transport messages': self.transport_messages,
            'Signals tracked': len(self.tracker),
            'Cancelled': 'yes' if self.cancelled else 'no',
        }

    def render_report(self, include_basic_info: bool = True) -> str:
        return self.report.render_text(self.ledger, self.summary() if include_basic_info else None)

    def write_report(self, filename: str, include_basic_info: bool = True):
        self.report.write_text(filename, self.ledger,
                               self.summary() if include_basic_info else None)


class DecodeEngine:
    """Runs decode and dispatch passes over frame sequences"""

    def __init__(self, catalog: SignalCatalog,
                 signal_callback: Optional[SignalCallback] = None,
                 transport_callback: Optional[TransportCallback] = None,
                 config: Optional[EngineConfig] = None):
        self.catalog = catalog
        self.signal_callback = signal_callback
        self.transport_callback = transport_callback
        self.config = config or EngineConfig()

    def _new_reassembler(self) -> TransportReassembler:
        return TransportReassembler(
            pairs=self.config.transport_pairs,
            auto_detect=self.config.transport_auto_detect,
            timeout_ms=self.config.transport_timeout_ms,
            max_wait_frames=self.config.transport_max_wait_frames,
        )

    def run(self, frames: Union[Iterable, str, os.PathLike, None]) -> RunResult:
        """Process frames in order until they run out or a callback returns False"""
        if frames is None:
            raise FrameSourceError("No frame source given")
        if isinstance(frames, (str, os.PathLike)):
            frames = open_frame_source(os.fspath(frames))

        result = RunResult()
        reassembler = self._new_reassembler()
        result.transport_stats = reassembler.stats
        api = CallbackApi(result.tracker, result.ledger, result.report)

        source = iter_frames(frames)
        warned_backwards = False

        while True:
            try:
                frame = next(source)
            except StopIteration:
                break
            except FrameSourceError:
                raise
            except Exception as e:
                raise FrameSourceError(f"Failed to read frame {result.frames_read + 1}: {e}") from e

            result.frames_read += 1
            if result.first_timestamp_ns is None:
                result.first_timestamp_ns = frame.timestamp_ns
                result.tracker.start_run(frame.timestamp_ns)
            elif frame.timestamp_ns < result.last_timestamp_ns and not warned_backwards:
                logger.warning("Timestamps go backwards at frame %d (%d < %d)",
                               result.frames_read, frame.timestamp_ns, result.last_timestamp_ns)
                warned_backwards = True
            result.last_timestamp_ns = frame.timestamp_ns

            if not self.config.accepts(frame):
                continue

            api.timestamp_ns = frame.timestamp_ns
            if not self._process_frame(frame, reassembler, api, result):
                result.cancelled = True
                result.cancelled_at_ns = frame.timestamp_ns
                logger.info("Run cancelled by callback at frame %d", result.frames_read)
                break

        reassembler.finish()
        logger.info("Run finished: %d frames read, %d decoded, %d signal changes, %d transport messages",
                    result.frames_read, result.frames_decoded,
                    result.signal_changes, result.transport_messages)
        return result

    def _process_frame(self, frame: CANMessage, reassembler: TransportReassembler,
                       api: CallbackApi, result: RunResult) -> bool:
        """Handle one frame, returns False when a callback cancelled the run"""
        if self.config.decode_signals and not (frame.is_remote_frame or frame.is_error_frame):
            message = self.catalog.message_for(frame.channel, frame.arbitration_id,
                                               frame.is_extended_id)
            if message is not None:
                pdus = [(message, frame.data)]
                if message.is_container:
                    pdus += self._contained_pdus(frame, message)
                counted = False
                for pdu, payload in pdus:
                    decoded = MessageDecoder.decode_message(payload, pdu)
                    if decoded and not counted:
                        result.frames_decoded += 1
                        counted = True
                    if not self._dispatch_signals(frame, pdu.name, pdu.sender or message.sender,
                                                  decoded, api, result):
                        return False

        completed = reassembler.feed(frame)
        if completed is not None:
            result.transport_messages += 1
            if self.transport_callback is not None:
                if self.transport_callback(self._transport_context(completed), api) is False:
                    return False

        return True

    @staticmethod
    def _contained_pdus(frame: CANMessage, container: MessageDefinition):
        """Contained PDU definitions and payloads present in a container frame"""
        pdus = []
        for header_id, payload in MessageDecoder.unpack_container(frame.data, container):
            contained = container.get_contained_message(header_id)
            if contained is None:
                logger.debug("Container %s: no PDU with header id 0x%X", container.name, header_id)
                continue
            pdus.append((contained, payload))
        return pdus

    def _dispatch_signals(self, frame: CANMessage, message_name: str, sender: str,
                          decoded, api: CallbackApi, result: RunResult) -> bool:
        """Track decoded values and dispatch the changes, returns False on cancel"""
        for signal in decoded:
            change = result.tracker.record_value(
                signal.name, signal.value, frame.timestamp_ns,
                channel=frame.channel, message_id=frame.arbitration_id,
            )
            if change is None or not self.config.is_tracked(signal.name):
                continue
            result.signal_changes += 1
            if self.signal_callback is None:
                continue
            ctx = self._signal_context(frame, message_name, sender, signal, change)
            with result.tracker.dispatching(signal.name):
                if self.signal_callback(ctx, api) is False:
                    return False
        return True

    @staticmethod
    def _signal_context(frame: CANMessage, message_name: str, sender: str,
                        signal: DecodedSignal, change: ChangeEvent) -> SignalChangeContext:
        return SignalChangeContext(
            signal_name=signal.name,
            message_name=message_name,
            can_id=frame.arbitration_id,
            channel=frame.channel,
            sender=sender,
            current_value=change.value,
            previous_value=change.previous_value,
            unit=signal.definition.unit,
            value_description=signal.value_description,
            timestamp_ns=change.timestamp_ns,
            delta_from_start_ns=change.delta_from_start_ns,
            delta_from_prev_ns=change.delta_from_previous_ns,
        )

    @staticmethod
    def _transport_context(message: TransportMessage) -> TransportContext:
        return TransportContext(
            source_addr=message.source_addr,
            target_addr=message.target_addr,
            channel=message.channel,
            payload=message.payload,
            payload_length=message.length,
            timestamp_ns=message.timestamp_ns,
        )
