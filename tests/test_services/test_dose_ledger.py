"""
Tests for Dose Ledger
Tests dose status transitions, their exclusivity and the listener fan-out
"""

import pytest
from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError
from sqlalchemy.sql.dml import Update

from models import AdherenceLog, Dose, DoseStatus
from services.dose_ledger import DoseLedger, compute_delay_minutes, dose_ledger
from services.exceptions import InvalidStateTransition, NotFound, TransientStorageError, ValidationError


# =============================================================================
# Delay computation
# =============================================================================

class TestComputeDelay:
    """Tests for whole-minute lateness"""

    @pytest.mark.unit
    def test_on_time(self):
        at = datetime(2024, 3, 10, 8, 0)
        assert compute_delay_minutes(at, at) == 0

    @pytest.mark.unit
    def test_early_is_zero(self):
        scheduled = datetime(2024, 3, 10, 8, 0)
        assert compute_delay_minutes(scheduled, scheduled - timedelta(minutes=7)) == 0

    @pytest.mark.unit
    def test_partial_minutes_truncate(self):
        scheduled = datetime(2024, 3, 10, 8, 0)
        assert compute_delay_minutes(scheduled, scheduled + timedelta(minutes=10, seconds=59)) == 10


# =============================================================================
# Transitions
# =============================================================================

class TestMarkTaken:
    """Tests for confirming a dose"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_mark_taken_records_confirmation(self, db_session, test_dose, base_day):
        """Taken doses carry time, actor and delay"""
        taken_at = datetime.combine(base_day, datetime.min.time()) + timedelta(hours=8, minutes=12)

        dose = await dose_ledger.mark_taken(test_dose.id, notes="with breakfast", taken_at=taken_at, db=db_session)

        assert dose.status == DoseStatus.TAKEN.value
        assert dose.taken_at == taken_at
        assert dose.taken_by == "manual"
        assert dose.delay_minutes == 12
        assert dose.notes == "with breakfast"
        assert dose.device_verified is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_device_actor_is_verified(self, db_session, test_dose):
        """Device confirmations are flagged as device-verified"""
        dose = await dose_ledger.mark_taken(
            test_dose.id, actor="device", taken_at=test_dose.scheduled_time, db=db_session
        )
        assert dose.taken_by == "device"
        assert dose.device_verified is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_actor_rejected(self, db_session, test_dose):
        with pytest.raises(ValidationError):
            await dose_ledger.mark_taken(test_dose.id, actor="robot", db=db_session)

        db_session.refresh(test_dose)
        assert test_dose.status == DoseStatus.PENDING.value

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_second_confirmation_rejected(self, db_session, test_dose):
        """Only the first terminal transition succeeds"""
        await dose_ledger.mark_taken(test_dose.id, taken_at=test_dose.scheduled_time, db=db_session)

        with pytest.raises(InvalidStateTransition) as exc_info:
            await dose_ledger.mark_taken(test_dose.id, db=db_session)
        assert exc_info.value.current_status == DoseStatus.TAKEN.value

        with pytest.raises(InvalidStateTransition):
            await dose_ledger.mark_missed(test_dose.id, db=db_session)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stale_object_loses_compare_and_set(self, db_session, test_dose):
        """A transition applied from a stale read still sees the committed status"""
        stale = db_session.get(Dose, test_dose.id)
        await dose_ledger.mark_missed(test_dose.id, db=db_session)

        with pytest.raises(InvalidStateTransition):
            dose_ledger.apply_transition(db_session, stale, DoseStatus.TAKEN)
        db_session.rollback()

        db_session.refresh(test_dose)
        assert test_dose.status == DoseStatus.MISSED.value


class TestMissedAndCancel:
    """Tests for the other terminal states"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_mark_missed(self, db_session, test_dose):
        dose = await dose_ledger.mark_missed(test_dose.id, db=db_session)
        assert dose.status == DoseStatus.MISSED.value
        assert dose.missed_at is not None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancelled_dose_cannot_be_taken(self, db_session, test_dose):
        dose = await dose_ledger.cancel(test_dose.id, db=db_session)
        assert dose.status == DoseStatus.CANCELLED.value
        assert dose.cancelled_at is not None

        with pytest.raises(InvalidStateTransition):
            await dose_ledger.mark_taken(test_dose.id, db=db_session)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pending_is_not_a_target(self, db_session, test_dose):
        with pytest.raises(ValidationError):
            dose_ledger.apply_transition(db_session, test_dose, DoseStatus.PENDING)


# =============================================================================
# Visibility
# =============================================================================

class TestOwnership:
    """Foreign doses look exactly like missing ones"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_dose(self, db_session):
        with pytest.raises(NotFound):
            await dose_ledger.mark_taken(9999, db=db_session)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_other_caregiver_cannot_touch_dose(self, db_session, test_dose, other_caregiver):
        with pytest.raises(NotFound):
            await dose_ledger.mark_missed(test_dose.id, caregiver_id=other_caregiver.id, db=db_session)

        db_session.refresh(test_dose)
        assert test_dose.status == DoseStatus.PENDING.value

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_owner_can_cancel(self, db_session, test_dose, test_caregiver):
        dose = await dose_ledger.cancel(test_dose.id, caregiver_id=test_caregiver.id, db=db_session)
        assert dose.status == DoseStatus.CANCELLED.value


# =============================================================================
# Listeners
# =============================================================================

class TestListeners:
    """Transition events reach listeners inside the same transaction"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_listener_receives_event(self, db_session, test_dose):
        received = []
        ledger = DoseLedger(listeners=[lambda event, session: received.append(event)])

        await ledger.mark_taken(
            test_dose.id, taken_at=test_dose.scheduled_time + timedelta(minutes=3), db=db_session
        )

        assert len(received) == 1
        event = received[0]
        assert event.dose_id == test_dose.id
        assert event.new_status == DoseStatus.TAKEN.value
        assert event.actor == "manual"
        assert event.delay_minutes == 3
        assert event.day == test_dose.scheduled_date

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failing_listener_rolls_back_transition(self, db_session, test_dose):
        """Nothing applies when a listener fails"""
        def broken(event, session):
            raise ValidationError("listener rejected the event")

        ledger = DoseLedger(listeners=[broken])

        with pytest.raises(ValidationError):
            await ledger.mark_missed(test_dose.id, db=db_session)

        db_session.refresh(test_dose)
        assert test_dose.status == DoseStatus.PENDING.value

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_subscribe(self, db_session, test_dose):
        calls = []
        ledger = DoseLedger()
        ledger.subscribe(lambda event, session: calls.append(event.new_status))

        await ledger.cancel(test_dose.id, db=db_session)
        assert calls == [DoseStatus.CANCELLED.value]


# =============================================================================
# Storage failures
# =============================================================================

class TestStorageFailure:
    """Tests for storage errors during a transition"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_update_leaves_dose_pending(self, db_session, test_dose, monkeypatch):
        """A driver error surfaces as TransientStorageError and nothing is applied"""
        execute = db_session.execute

        def _failing_execute(statement, *args, **kwargs):
            if isinstance(statement, Update):
                raise OperationalError("UPDATE doses", {}, Exception("database is locked"))
            return execute(statement, *args, **kwargs)

        monkeypatch.setattr(db_session, "execute", _failing_execute)

        with pytest.raises(TransientStorageError):
            await dose_ledger.mark_taken(test_dose.id, db=db_session)

        monkeypatch.undo()
        db_session.expire_all()
        dose = db_session.get(Dose, test_dose.id)
        assert dose.status == DoseStatus.PENDING.value
        assert dose.taken_at is None
        assert db_session.query(AdherenceLog).count() == 0


# =============================================================================
# Queries
# =============================================================================

class TestQueries:
    """Tests for dose listings"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_today_excludes_cancelled(self, db_session, week_of_doses, test_patient, base_day):
        await dose_ledger.cancel(week_of_doses[1].id, db=db_session)

        today = await dose_ledger.get_today_doses(test_patient.id, day=base_day, db=db_session)
        assert [d.id for d in today] == [week_of_doses[0].id]

        cancelled_day = await dose_ledger.get_today_doses(
            test_patient.id, day=base_day + timedelta(days=1), db=db_session
        )
        assert cancelled_day == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_history_filters(self, db_session, week_of_doses, test_patient, base_day):
        await dose_ledger.mark_missed(week_of_doses[0].id, db=db_session)

        history = await dose_ledger.get_dose_history(
            test_patient.id,
            start_date=base_day,
            end_date=base_day + timedelta(days=2),
            db=db_session
        )
        assert [d.scheduled_date for d in history] == [
            base_day + timedelta(days=2), base_day + timedelta(days=1), base_day
        ]

        missed = await dose_ledger.get_dose_history(test_patient.id, status="missed", db=db_session)
        assert [d.id for d in missed] == [week_of_doses[0].id]
