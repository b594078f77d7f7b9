"""Tests for run events and sinks."""

from harvest.execution.events import (
    CompositeEventSink,
    EventSink,
    EventType,
    InMemoryEventSink,
    LoggingEventSink,
    RunEvent,
)


class TestRunEvent:
    def test_to_dict(self):
        event = RunEvent(run_id="r1", event_type=EventType.PHASE_STARTED.value, data={"phase": "fetch"})
        d = event.to_dict()
        assert d["event_type"] == "phase.started"
        assert d["data"] == {"phase": "fetch"}
        assert d["event_id"]

    def test_unique_ids(self):
        assert RunEvent("r1", "run.pending").event_id != RunEvent("r1", "run.pending").event_id


class TestSinks:
    def test_in_memory_filters_by_run(self):
        sink = InMemoryEventSink()
        sink.emit(RunEvent("r1", EventType.RUN_PENDING.value))
        sink.emit(RunEvent("r2", EventType.RUN_PENDING.value))
        sink.emit(RunEvent("r1", EventType.RUN_RUNNING.value))
        assert sink.types("r1") == ["run.pending", "run.running"]

    def test_composite_fans_out(self):
        a, b = InMemoryEventSink(), InMemoryEventSink()
        CompositeEventSink(a, b, LoggingEventSink()).emit(RunEvent("r1", EventType.RUN_FAILED.value, data={"x": 1}))
        assert a.types() == b.types() == ["run.failed"]

    def test_protocol(self):
        assert isinstance(InMemoryEventSink(), EventSink)
        assert isinstance(LoggingEventSink(), EventSink)
