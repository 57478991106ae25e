"""
Tests for Event Reconciler
Tests matching dispenser events to pending doses
"""

import pytest
from datetime import datetime, time, timedelta
from types import SimpleNamespace

from models import Alert, AlertType, DeviceCompartment, DeviceEvent, Dose, DoseStatus, Reminder
from services.dose_ledger import dose_ledger
from services.exceptions import NotFound
from services.reconciler import EventReconciler, event_reconciler, select_closest_dose
from tests.conftest import make_dose


SERIAL = "DK-TEST-0001"


def _at(day, hour, minute):
    return datetime.combine(day, time(hour, minute))


@pytest.fixture
def second_reminder(db_session, test_medication):
    """Same medication, 08:20"""
    reminder = Reminder(medication_id=test_medication.id, time_slot="mid-morning", exact_time=time(8, 20), is_active=True)
    db_session.add(reminder)
    db_session.commit()
    db_session.refresh(reminder)
    return reminder


def _stock(db_session, compartment_id):
    db_session.expire_all()
    return db_session.get(DeviceCompartment, compartment_id).current_stock


# =============================================================================
# Candidate selection
# =============================================================================

class TestSelectClosestDose:
    """Tie-break rules on plain candidates"""

    @pytest.mark.unit
    def test_empty(self):
        assert select_closest_dose([], datetime(2024, 3, 10, 8, 0)) is None

    @pytest.mark.unit
    def test_closest_wins(self):
        observed = datetime(2024, 3, 10, 8, 15)
        early = SimpleNamespace(id=1, scheduled_time=datetime(2024, 3, 10, 8, 0))
        late = SimpleNamespace(id=2, scheduled_time=datetime(2024, 3, 10, 8, 20))
        assert select_closest_dose([early, late], observed) is late

    @pytest.mark.unit
    def test_equal_distance_goes_to_lowest_id(self):
        observed = datetime(2024, 3, 10, 8, 10)
        a = SimpleNamespace(id=7, scheduled_time=datetime(2024, 3, 10, 8, 20))
        b = SimpleNamespace(id=3, scheduled_time=datetime(2024, 3, 10, 8, 0))
        assert select_closest_dose([a, b], observed) is b


# =============================================================================
# Reconciliation window
# =============================================================================

class TestReconcileWindow:
    """Tests for the tolerance window"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ten_minutes_late_matches(self, db_session, test_dose, test_compartment, base_day):
        result = await event_reconciler.reconcile(SERIAL, 1, observed_at=_at(base_day, 8, 10), db=db_session)

        assert result.matched
        assert result.dose_id == test_dose.id
        assert result.delay_minutes == 10
        assert result.remaining_stock == 9

        db_session.refresh(test_dose)
        assert test_dose.status == DoseStatus.TAKEN.value
        assert test_dose.taken_by == "device"
        assert test_dose.device_verified is True
        assert test_dose.taken_at == _at(base_day, 8, 10)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_twenty_minutes_late_does_not_match(self, db_session, test_dose, test_compartment, base_day):
        result = await event_reconciler.reconcile(SERIAL, 1, observed_at=_at(base_day, 8, 20), db=db_session)

        assert not result.matched
        assert result.remaining_stock is None
        assert _stock(db_session, test_compartment.id) == 10

        db_session.refresh(test_dose)
        assert test_dose.status == DoseStatus.PENDING.value

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_window_edge_is_inclusive(self, db_session, test_dose, test_compartment, base_day):
        result = await event_reconciler.reconcile(SERIAL, 1, observed_at=_at(base_day, 8, 15), db=db_session)
        assert result.dose_id == test_dose.id
        assert result.delay_minutes == 15

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_early_dispense_matches_with_no_delay(self, db_session, test_dose, test_compartment, base_day):
        result = await event_reconciler.reconcile(SERIAL, 1, observed_at=_at(base_day, 7, 50), db=db_session)
        assert result.dose_id == test_dose.id
        assert result.delay_minutes == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_custom_window(self, db_session, test_dose, test_compartment, base_day):
        narrow = EventReconciler(window_minutes=5)
        result = await narrow.reconcile(SERIAL, 1, observed_at=_at(base_day, 8, 10), db=db_session)
        assert not result.matched

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_resolved_doses_are_not_candidates(self, db_session, test_dose, test_compartment, base_day):
        await dose_ledger.mark_taken(test_dose.id, taken_at=_at(base_day, 8, 1), db=db_session)

        result = await event_reconciler.reconcile(SERIAL, 1, observed_at=_at(base_day, 8, 5), db=db_session)

        assert not result.matched
        assert _stock(db_session, test_compartment.id) == 10


class TestTieBreak:
    """Tests for choosing between several candidates"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_closest_dose_is_taken(
        self, db_session, test_reminder, second_reminder, test_compartment, base_day
    ):
        first = make_dose(db_session, test_reminder, base_day)
        second = make_dose(db_session, second_reminder, base_day)

        result = await event_reconciler.reconcile(SERIAL, 1, observed_at=_at(base_day, 8, 15), db=db_session)

        assert result.dose_id == second.id
        db_session.refresh(first)
        assert first.status == DoseStatus.PENDING.value

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_equal_distance_takes_lowest_id(
        self, db_session, test_reminder, second_reminder, test_compartment, base_day
    ):
        first = make_dose(db_session, test_reminder, base_day)
        second = make_dose(db_session, second_reminder, base_day)

        result = await event_reconciler.reconcile(SERIAL, 1, observed_at=_at(base_day, 8, 10), db=db_session)

        assert result.dose_id == min(first.id, second.id)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_one_event_confirms_one_dose(
        self, db_session, test_reminder, second_reminder, test_compartment, base_day
    ):
        make_dose(db_session, test_reminder, base_day)
        make_dose(db_session, second_reminder, base_day)

        await event_reconciler.reconcile(SERIAL, 1, observed_at=_at(base_day, 8, 10), db=db_session)

        taken = db_session.query(Dose).filter(Dose.status == DoseStatus.TAKEN.value).count()
        assert taken == 1
        assert _stock(db_session, test_compartment.id) == 9


# =============================================================================
# Stock and alerts
# =============================================================================

class TestStock:
    """Tests for compartment stock bookkeeping"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stock_never_negative(self, db_session, test_dose, test_compartment, base_day):
        test_compartment.current_stock = 0
        db_session.commit()

        result = await event_reconciler.reconcile(SERIAL, 1, observed_at=_at(base_day, 8, 0), db=db_session)

        assert result.matched
        assert result.remaining_stock == 0
        assert _stock(db_session, test_compartment.id) == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_low_stock_alert_at_threshold(self, db_session, test_dose, test_compartment, test_caregiver, base_day):
        test_compartment.current_stock = 6
        db_session.commit()

        result = await event_reconciler.reconcile(SERIAL, 1, observed_at=_at(base_day, 8, 0), db=db_session)

        assert result.remaining_stock == 5
        assert result.low_stock_alert_id is not None

        alert = db_session.get(Alert, result.low_stock_alert_id)
        assert alert.alert_type == AlertType.LOW_STOCK.value
        assert alert.caregiver_id == test_caregiver.id
        assert alert.payload["current_stock"] == 5
        assert alert.payload["compartment_number"] == 1
        assert alert.payload["device_id"] == SERIAL

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_alert_above_threshold(self, db_session, test_dose, test_compartment, base_day):
        result = await event_reconciler.reconcile(SERIAL, 1, observed_at=_at(base_day, 8, 0), db=db_session)

        assert result.remaining_stock == 9
        assert result.low_stock_alert_id is None
        assert db_session.query(Alert).count() == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_low_stock_alert_deduplicated_while_unread(
        self, db_session, week_of_doses, test_compartment, base_day
    ):
        test_compartment.current_stock = 5
        db_session.commit()

        for offset in range(2):
            day = base_day + timedelta(days=offset)
            await event_reconciler.reconcile(SERIAL, 1, observed_at=_at(day, 8, 0), db=db_session)

        alerts = db_session.query(Alert).filter(Alert.alert_type == AlertType.LOW_STOCK.value).all()
        assert len(alerts) == 1
        assert _stock(db_session, test_compartment.id) == 3


# =============================================================================
# Device events
# =============================================================================

class TestRecordDeviceEvent:
    """Tests for the raw event entry point"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_lid_opened_is_reconciled(self, db_session, test_dose, test_compartment, base_day):
        outcome = await event_reconciler.record_device_event(
            SERIAL, "lid_opened", compartment_number=1,
            event_data={"source": "button"}, observed_at=_at(base_day, 8, 4), db=db_session
        )

        assert outcome["matched"] is True
        assert outcome["dose_id"] == test_dose.id

        event = db_session.get(DeviceEvent, outcome["event_id"])
        assert event.matched_dose_id == test_dose.id
        assert event.event_data == {"source": "button"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_other_events_are_only_stored(self, db_session, test_dose, test_compartment, base_day):
        outcome = await event_reconciler.record_device_event(
            SERIAL, "refilled", compartment_number=1, observed_at=_at(base_day, 8, 0), db=db_session
        )

        assert outcome["matched"] is False
        assert db_session.get(DeviceEvent, outcome["event_id"]).matched_dose_id is None
        db_session.refresh(test_dose)
        assert test_dose.status == DoseStatus.PENDING.value

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unassigned_compartment_keeps_audit_row(self, db_session, test_dose, test_compartment, base_day):
        outcome = await event_reconciler.record_device_event(
            SERIAL, "lid_opened", compartment_number=4, observed_at=_at(base_day, 8, 0), db=db_session
        )

        assert outcome["matched"] is False
        assert db_session.query(DeviceEvent).count() == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_device(self, db_session):
        with pytest.raises(NotFound):
            await event_reconciler.record_device_event("NOPE", "lid_opened", compartment_number=1, db=db_session)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reconcile_unknown_compartment(self, db_session, test_device):
        with pytest.raises(NotFound):
            await event_reconciler.reconcile(SERIAL, 2, db=db_session)
