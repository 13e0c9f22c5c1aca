"""
Run Report
Append-only raw text plus a rendered event table
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from .ledger import EventLedger
from ..canbus.messages import NS_PER_SECOND

logger = logging.getLogger(__name__)

SEPARATOR = "-" * 79


def format_timestamp(timestamp_ns: Optional[int]) -> str:
    """Nanoseconds to seconds with microsecond precision"""
    if timestamp_ns is None:
        return "-"
    return f"{timestamp_ns / NS_PER_SECOND:.6f}"


class Report:
    """Collects raw lines appended by callbacks during a run"""

    def __init__(self):
        self.raw_lines: List[str] = []

    def append_raw(self, text: str):
        self.raw_lines.append(str(text))

    def render_text(self, ledger: Optional[EventLedger] = None,
                    summary: Optional[Dict[str, object]] = None) -> str:
        """Render the report as plain text"""
        lines = []

        if summary:
            lines.append("SUMMARY")
            lines.append(SEPARATOR)
            width = max(len(str(key)) for key in summary)
            for key, value in summary.items():
                lines.append(f"{str(key).ljust(width)} : {value}")
            lines.append("")

        if ledger is not None:
            lines.append("EVENTS")
            lines.append(SEPARATOR)
            records = ledger.records()
            if records:
                lines.append(f"{'Name':<24} {'State':<12} {'Start [s]':>16} {'Stop [s]':>16}  Error")
                for record in records:
                    lines.append(
                        f"{record.name:<24} {record.state:<12} "
                        f"{format_timestamp(record.start_timestamp_ns):>16} "
                        f"{format_timestamp(record.stop_timestamp_ns):>16}  "
                        f"{record.error_reason or ''}"
                    )
            else:
                lines.append("(no events)")
            lines.append("")

        lines.append("RAW")
        lines.append(SEPARATOR)
        lines.extend(self.raw_lines)
        return "\n".join(lines) + "\n"

    def write_text(self, filename: str, ledger: Optional[EventLedger] = None,
                   summary: Optional[Dict[str, object]] = None, include_header: bool = True):
        """Write the rendered report to a file"""
        with open(filename, 'w') as f:
            if include_header:
                f.write(f"CAN log report generated {datetime.now().isoformat(timespec='seconds')}\n\n")
            f.write(self.render_text(ledger, summary))
        logger.info("Report written to %s (%d raw lines)", filename, len(self.raw_lines))

    def __len__(self) -> int:
        return len(self.raw_lines)
