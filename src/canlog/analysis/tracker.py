"""
Signal Tracker
Previous/current value and timing state per signal name
"""

import math
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Union

logger = logging.getLogger(__name__)

Number = Union[int, float]


def _same_value(a: Number, b: Number) -> bool:
    if a == b:
        return True
    return (isinstance(a, float) and isinstance(b, float)
            and math.isnan(a) and math.isnan(b))


@dataclass
class SignalState:
    """Value history for one signal"""
    name: str
    current_value: Number
    current_timestamp_ns: int
    previous_value: Optional[Number] = None
    previous_timestamp_ns: Optional[int] = None
    change_count: int = 1
    bound_channel: Optional[int] = None
    bound_message_id: Optional[int] = None


@dataclass(frozen=True)
class ChangeEvent:
    """Emitted when a signal's decoded value changes"""
    signal_name: str
    value: Number
    previous_value: Optional[Number]
    timestamp_ns: int
    delta_from_start_ns: int
    delta_from_previous_ns: int
    is_first: bool


class SignalTracker:
    """Tracks signal values for a single run"""

    def __init__(self):
        self.run_start_ns: Optional[int] = None
        self.binding_conflicts = 0
        self._states: Dict[str, SignalState] = {}
        self._dispatching: Optional[str] = None

    def start_run(self, timestamp_ns: int):
        """Set the run-start baseline, the timestamp of the first frame"""
        if self.run_start_ns is None:
            self.run_start_ns = timestamp_ns

    def record_value(self, name: str, value: Number, timestamp_ns: int,
                     channel: Optional[int] = None,
                     message_id: Optional[int] = None) -> Optional[ChangeEvent]:
        """Store a decoded value, returns a ChangeEvent if the value changed"""
        self.start_run(timestamp_ns)
        state = self._states.get(name)

        if state is None:
            self._states[name] = SignalState(
                name=name,
                current_value=value,
                current_timestamp_ns=timestamp_ns,
                bound_channel=channel,
                bound_message_id=message_id,
            )
            return ChangeEvent(
                signal_name=name,
                value=value,
                previous_value=None,
                timestamp_ns=timestamp_ns,
                delta_from_start_ns=timestamp_ns - self.run_start_ns,
                delta_from_previous_ns=timestamp_ns - self.run_start_ns,
                is_first=True,
            )

        # First message ID that produced a signal name owns it, on any channel
        if (message_id is not None and state.bound_message_id is not None
                and state.bound_message_id != message_id):
            self.binding_conflicts += 1
            logger.debug("Ignoring %s from 0x%X, bound to 0x%X",
                         name, message_id, state.bound_message_id)
            return None

        if _same_value(state.current_value, value):
            return None

        delta = timestamp_ns - state.current_timestamp_ns
        state.previous_value = state.current_value
        state.previous_timestamp_ns = state.current_timestamp_ns
        state.current_value = value
        state.current_timestamp_ns = timestamp_ns
        state.change_count += 1

        return ChangeEvent(
            signal_name=name,
            value=value,
            previous_value=state.previous_value,
            timestamp_ns=timestamp_ns,
            delta_from_start_ns=timestamp_ns - self.run_start_ns,
            delta_from_previous_ns=delta,
            is_first=False,
        )

    @contextmanager
    def dispatching(self, name: str) -> Iterator[None]:
        """Mark a change of `name` as being dispatched to a callback"""
        outer = self._dispatching
        self._dispatching = name
        try:
            yield
        finally:
            self._dispatching = outer

    def get_value(self, name: str) -> Optional[Number]:
        """Latest value, or the pre-change value while that signal's change is dispatched.

        Returns None for a signal that has never been observed.
        """
        state = self._states.get(name)
        if state is None:
            return None
        if name == self._dispatching:
            return state.previous_value
        return state.current_value

    def state(self, name: str) -> Optional[SignalState]:
        return self._states.get(name)

    def names(self) -> List[str]:
        return list(self._states)

    def snapshot(self) -> Dict[str, Number]:
        return {name: state.current_value for name, state in self._states.items()}

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, name: str) -> bool:
        return name in self._states
