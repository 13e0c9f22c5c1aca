"""Tests for signal value tracking."""

import math

from canlog.analysis.tracker import SignalTracker

MS = 1_000_000


class TestChangeDetection:
    """Test when changes are emitted."""

    def test_first_observation(self):
        """First value always emits, with no previous value."""
        tracker = SignalTracker()
        tracker.start_run(100 * MS)
        change = tracker.record_value("Speed", 10, 150 * MS)
        assert change.is_first
        assert change.previous_value is None
        assert change.delta_from_start_ns == 50 * MS
        assert change.delta_from_previous_ns == 50 * MS

    def test_constant_value(self):
        """Repeating a value emits nothing after the first observation."""
        tracker = SignalTracker()
        changes = [tracker.record_value("Speed", 10, t * MS) for t in range(5)]
        assert changes[0] is not None
        assert changes[1:] == [None] * 4
        assert tracker.state("Speed").change_count == 1

    def test_deltas(self):
        """Delta from previous is measured between changes."""
        tracker = SignalTracker()
        tracker.start_run(0)
        tracker.record_value("Speed", 1, 10 * MS)
        tracker.record_value("Speed", 1, 20 * MS)
        second = tracker.record_value("Speed", 2, 35 * MS)
        third = tracker.record_value("Speed", 3, 50 * MS)
        assert second.previous_value == 1
        assert second.delta_from_previous_ns == 25 * MS
        assert third.delta_from_previous_ns == 15 * MS
        assert third.delta_from_start_ns == 50 * MS

    def test_nan_equals_nan(self):
        tracker = SignalTracker()
        tracker.record_value("F", math.nan, 0)
        assert tracker.record_value("F", math.nan, 1) is None
        assert tracker.record_value("F", 1.0, 2) is not None

    def test_run_start_defaults_to_first_value(self):
        tracker = SignalTracker()
        change = tracker.record_value("Speed", 1, 500)
        assert tracker.run_start_ns == 500
        assert change.delta_from_start_ns == 0


class TestBinding:
    """Test that a signal name belongs to the first message producing it."""

    def test_other_message_ignored(self):
        tracker = SignalTracker()
        tracker.record_value("Speed", 1, 0, channel=0, message_id=0x100)
        assert tracker.record_value("Speed", 2, 1, channel=0, message_id=0x101) is None
        assert tracker.binding_conflicts == 1
        assert tracker.get_value("Speed") == 1

    def test_same_message_accepted(self):
        tracker = SignalTracker()
        tracker.record_value("Speed", 1, 0, channel=0, message_id=0x100)
        assert tracker.record_value("Speed", 2, 1, channel=0, message_id=0x100) is not None

    def test_same_message_on_other_channel(self):
        """The binding is on the message ID, so every channel carrying it feeds the signal."""
        tracker = SignalTracker()
        tracker.record_value("Speed", 1, 0, channel=0, message_id=0x100)
        change = tracker.record_value("Speed", 2, 1, channel=1, message_id=0x100)
        assert change is not None and change.previous_value == 1
        assert tracker.record_value("Speed", 3, 2, channel=1, message_id=0x100) is not None
        assert tracker.binding_conflicts == 0
        assert tracker.state("Speed").bound_channel == 0


class TestPreviousValue:
    """Test value queries during and outside dispatch."""

    def test_unseen_signal(self):
        assert SignalTracker().get_value("Nope") is None

    def test_previous_during_dispatch(self):
        """The pre-change value is visible only while that change is dispatched."""
        tracker = SignalTracker()
        tracker.record_value("Speed", 1, 0)
        assert tracker.get_value("Speed") == 1
        tracker.record_value("Speed", 2, 1)
        with tracker.dispatching("Speed"):
            assert tracker.get_value("Speed") == 1
        assert tracker.get_value("Speed") == 2

    def test_first_dispatch_has_no_previous(self):
        tracker = SignalTracker()
        tracker.record_value("Speed", 1, 0)
        with tracker.dispatching("Speed"):
            assert tracker.get_value("Speed") is None

    def test_other_signal_during_dispatch(self):
        """Signals not being dispatched return their latest value."""
        tracker = SignalTracker()
        tracker.record_value("Gear", 3, 0)
        tracker.record_value("Speed", 1, 0)
        with tracker.dispatching("Speed"):
            assert tracker.get_value("Gear") == 3

    def test_snapshot(self):
        tracker = SignalTracker()
        tracker.record_value("A", 1, 0)
        tracker.record_value("B", 2.5, 0)
        assert tracker.snapshot() == {"A": 1, "B": 2.5}
        assert tracker.names() == ["A", "B"]
        assert "A" in tracker
        assert len(tracker) == 2
