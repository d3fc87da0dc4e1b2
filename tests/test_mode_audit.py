"""Tests for the bounded audit log."""

import pytest

from modeos.modes import AuditEvent, AuditLog, Confidence, Mode, Trigger
from tests.fixtures import T0


def audit(trigger=Trigger.MEETING_BOUNDARY_CHANGE, new_mode=Mode.NEUTRAL, previous=None):
    return AuditEvent(
        trigger=trigger,
        previous_mode=previous,
        new_mode=new_mode,
        confidence=Confidence.LOW,
        reason="r",
        evaluation_id="eval-test",
        occurred_at=T0,
    )


class TestAuditLog:
    def test_history_is_oldest_first(self):
        log = AuditLog()
        log.record(audit(Trigger.APP_OPEN))
        log.record(audit(Trigger.FORCE))
        assert [e.trigger for e in log.history()] == [Trigger.APP_OPEN, Trigger.FORCE]

    def test_limit_keeps_most_recent(self):
        log = AuditLog()
        for mode in (Mode.NEUTRAL, Mode.PREP, Mode.CAPTURE):
            log.record(audit(new_mode=mode))
        assert [e.new_mode for e in log.history(limit=2)] == [Mode.PREP, Mode.CAPTURE]
        assert log.history(limit=0) == []

    def test_bounded(self):
        log = AuditLog(max_history=3)
        for _ in range(5):
            log.record(audit())
        assert len(log) == 3

    def test_invalid_bound(self):
        with pytest.raises(ValueError):
            AuditLog(max_history=0)

    def test_clear(self):
        log = AuditLog()
        log.record(audit())
        log.clear()
        assert len(log) == 0
        assert log.override_rate() == 0.0

    def test_override_rate(self):
        log = AuditLog()
        log.record(audit(Trigger.APP_OPEN))
        log.record(audit(Trigger.FORCE, Mode.PREP))
        log.record(audit(Trigger.UNPIN))
        log.record(audit(Trigger.FORCE, Mode.CAPTURE))
        assert log.override_rate() == 0.5

    def test_mode_counts_cover_every_mode(self):
        log = AuditLog()
        log.record(audit(new_mode=Mode.PREP))
        log.record(audit(new_mode=Mode.PREP))
        assert log.mode_counts() == {
            Mode.CAPTURE: 0,
            Mode.PREP: 2,
            Mode.SYNTHESIS: 0,
            Mode.NEUTRAL: 0,
        }

    def test_event_to_dict(self):
        data = audit(Trigger.FORCE, Mode.PREP, previous=Mode.CAPTURE).to_dict()
        assert data == {
            "trigger": "force",
            "previous_mode": "capture",
            "new_mode": "prep",
            "confidence": "LOW",
            "reason": "r",
            "evaluation_id": "eval-test",
            "occurred_at": T0.isoformat(),
        }
