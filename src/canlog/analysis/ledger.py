"""
Event Ledger
Named, explicitly started and stopped intervals with error annotations
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

DOUBLE_START = "double_start"
STOP_WITHOUT_START = "stop_without_start"


@dataclass
class EventRecord:
    """State of one named event"""
    name: str
    is_open: bool = False
    start_timestamp_ns: Optional[int] = None
    stop_timestamp_ns: Optional[int] = None
    errored: bool = False
    error_reason: Optional[str] = None
    error_timestamp_ns: Optional[int] = None

    @property
    def state(self) -> str:
        if self.errored:
            return "ERROR"
        if self.is_open:
            return "ACTIVE"
        if self.stop_timestamp_ns is not None:
            return "COMPLETED"
        return "NOT_STARTED"

    @property
    def duration_ns(self) -> Optional[int]:
        if self.start_timestamp_ns is None or self.stop_timestamp_ns is None:
            return None
        return self.stop_timestamp_ns - self.start_timestamp_ns


@dataclass(frozen=True)
class LedgerDiagnostic:
    """A non-fatal misuse of the ledger"""
    kind: str
    event_name: str
    timestamp_ns: int
    message: str


class EventLedger:
    """Keeps event records for one run"""

    def __init__(self):
        self._records: Dict[str, EventRecord] = {}
        self.diagnostics: List[LedgerDiagnostic] = []

    def _report(self, kind: str, name: str, timestamp_ns: int, message: str):
        logger.warning("Event %s: %s", name, message)
        self.diagnostics.append(LedgerDiagnostic(kind, name, timestamp_ns, message))

    def start_event(self, name: str, timestamp_ns: int):
        record = self._records.get(name)
        if record is None:
            record = self._records[name] = EventRecord(name=name)

        if record.is_open:
            self._report(DOUBLE_START, name, timestamp_ns,
                         f"already started at {record.start_timestamp_ns}, start ignored")
            return

        if record.stop_timestamp_ns is not None:
            logger.debug("Reopening event %s", name)
        record.is_open = True
        record.start_timestamp_ns = timestamp_ns
        record.stop_timestamp_ns = None

    def stop_event(self, name: str, timestamp_ns: int):
        record = self._records.get(name)
        if record is None or not record.is_open:
            self._report(STOP_WITHOUT_START, name, timestamp_ns, "stopped while not started, stop ignored")
            return

        record.is_open = False
        record.stop_timestamp_ns = timestamp_ns

    def trigger_error(self, name: str, reason: str, timestamp_ns: int):
        """Mark an event errored without opening or closing it"""
        record = self._records.get(name)
        if record is None:
            record = self._records[name] = EventRecord(name=name)

        record.errored = True
        record.error_reason = reason
        record.error_timestamp_ns = timestamp_ns
        logger.info("Event %s error: %s", name, reason)

    def get(self, name: str) -> Optional[EventRecord]:
        return self._records.get(name)

    def records(self) -> List[EventRecord]:
        return list(self._records.values())

    def open_events(self) -> List[EventRecord]:
        return [r for r in self._records.values() if r.is_open]

    def __len__(self) -> int:
        return len(self._records)
