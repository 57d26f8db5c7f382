"""
Tests for upkeep_kernel.db and the event recorder.

Covers atomic() rollback semantics on SQLite SAVEPOINTs and event log
ordering.
"""

import pytest
from sqlalchemy import select

from upkeep_kernel.db.engine import atomic
from upkeep_kernel.models.access import AccessGrantModel
from upkeep_kernel.services.event_recorder import EventRecorder


class TestAtomic:
    def test_success_keeps_changes(self, session):
        with atomic(session):
            session.add(AccessGrantModel(scope="s", role="r", address="a"))
        assert session.execute(select(AccessGrantModel)).scalars().all()

    def test_exception_rolls_back_only_the_unit(self, session):
        session.add(AccessGrantModel(scope="s", role="r", address="kept"))
        session.flush()

        with pytest.raises(RuntimeError):
            with atomic(session):
                session.add(AccessGrantModel(scope="s", role="r", address="dropped"))
                session.flush()
                raise RuntimeError("boom")

        addresses = session.execute(select(AccessGrantModel.address)).scalars().all()
        assert addresses == ["kept"]

    def test_nested_units(self, session):
        with atomic(session):
            session.add(AccessGrantModel(scope="s", role="r", address="outer"))
            with pytest.raises(ValueError):
                with atomic(session):
                    session.add(AccessGrantModel(scope="s", role="r", address="inner"))
                    session.flush()
                    raise ValueError
        addresses = session.execute(select(AccessGrantModel.address)).scalars().all()
        assert addresses == ["outer"]


class TestEventRecorder:
    def test_sequence_is_monotonic(self, session, clock):
        recorder = EventRecorder(session, clock)
        first = recorder.emit("manager:g", "job_registered", job_id=1)
        second = recorder.emit("manager:g", "job_cancelled", job_id=1)
        assert (first.seq, second.seq) == (1, 2)
        assert recorder.last_seq() == 2

    def test_filters(self, session, clock):
        recorder = EventRecorder(session, clock)
        recorder.emit("manager:a", "x")
        recorder.emit("manager:b", "x")
        recorder.emit("manager:a", "y")

        assert [e.name for e in recorder.events(scope="manager:a")] == ["x", "y"]
        assert len(recorder.events(name="x")) == 2
        assert [e.scope for e in recorder.events(since_seq=2)] == ["manager:a"]

    def test_decimal_payload_is_stored_as_text(self, session, clock):
        from decimal import Decimal

        recorder = EventRecorder(session, clock)
        event = recorder.emit("watchdog:main", "top_up_succeeded", amount=Decimal("0.2"))
        assert event.payload == {"amount": "0.2"}
        assert recorder.events()[0].emitted_ts == clock.timestamp()

    def test_events_are_logged(self, session, clock, captured_logs):
        EventRecorder(session, clock).emit("manager:g", "cycle_completed", job_id=3)
        records = [r for r in captured_logs() if r["message"] == "cycle_completed"]
        assert records
        assert records[0]["scope"] == "manager:g"
        assert records[0]["payload"] == {"job_id": 3}
