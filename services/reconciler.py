"""
Event Reconciler
Matches dispenser events to the pending dose they confirm
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta

from sqlalchemy import case, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from config import settings
from database import get_db_context
import models
from models import DeviceEventType, DoseActor, DoseStatus
from actions.alert_engine import alert_engine
from services.clock import to_local
from services.device_service import CompartmentAssignment, device_service
from services.dose_ledger import dose_ledger
from services.exceptions import InvalidStateTransition, NotFound, SchedulingError, TransientStorageError


logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """Outcome of one dispense event"""
    dose_id: Optional[int] = None
    delay_minutes: Optional[int] = None
    remaining_stock: Optional[int] = None
    low_stock_alert_id: Optional[int] = None

    @property
    def matched(self) -> bool:
        return self.dose_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": self.matched,
            "dose_id": self.dose_id,
            "delay_minutes": self.delay_minutes,
            "remaining_stock": self.remaining_stock,
            "low_stock_alert_id": self.low_stock_alert_id,
        }


def select_closest_dose(candidates: List[models.Dose], observed_at: datetime) -> Optional[models.Dose]:
    """Closest scheduled time wins; equal distance goes to the lowest id"""
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda dose: (abs((dose.scheduled_time - observed_at).total_seconds()), dose.id),
    )


class EventReconciler:
    """
    Resolves a dispense signal to at most one pending dose

    Match, transition, stock decrement and low-stock check run in a single
    transaction per event.
    """

    def __init__(self, window_minutes: Optional[int] = None):
        self.window_minutes = (
            settings.RECONCILE_WINDOW_MINUTES if window_minutes is None else window_minutes
        )

    def find_candidates(
        self,
        session: Session,
        patient_id: int,
        medication_id: int,
        observed_at: datetime,
    ) -> List[models.Dose]:
        """Pending doses within the tolerance window of observed_at"""
        window = timedelta(minutes=self.window_minutes)
        return list(session.execute(
            select(models.Dose).where(
                models.Dose.patient_id == patient_id,
                models.Dose.medication_id == medication_id,
                models.Dose.status == DoseStatus.PENDING.value,
                models.Dose.scheduled_time >= observed_at - window,
                models.Dose.scheduled_time <= observed_at + window,
            ).order_by(models.Dose.id)
        ).scalars().all())

    def _decrement_stock(self, session: Session, compartment_id: int) -> tuple:
        """Remove one unit, floored at zero; returns (stock, threshold)"""
        stock = models.DeviceCompartment.current_stock
        session.execute(
            update(models.DeviceCompartment)
            .where(models.DeviceCompartment.id == compartment_id)
            .values(
                current_stock=case((stock > 0, stock - 1), else_=0),
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return session.execute(
            select(
                models.DeviceCompartment.current_stock,
                models.DeviceCompartment.low_stock_threshold,
            ).where(models.DeviceCompartment.id == compartment_id)
        ).one()

    def reconcile_in_session(
        self,
        session: Session,
        assignment: CompartmentAssignment,
        observed_at: datetime,
    ) -> ReconciliationResult:
        """Run the match-and-apply sequence inside the caller's transaction"""
        result = ReconciliationResult()

        candidates = self.find_candidates(
            session, assignment.patient_id, assignment.medication_id, observed_at
        )
        dose = select_closest_dose(candidates, observed_at)
        if dose is None:
            logger.info(
                f"No pending dose within {self.window_minutes} minutes for device "
                f"{assignment.device_serial} compartment {assignment.compartment_number}"
            )
            return result

        try:
            event = dose_ledger.apply_transition(
                session,
                dose,
                DoseStatus.TAKEN,
                actor=DoseActor.DEVICE,
                at=observed_at,
                device_verified=True,
            )
        except InvalidStateTransition as e:
            # Lost the race to another confirmation; the event stays unmatched
            logger.warning(f"Dispense event could not claim dose {dose.id}: {e.message}")
            return result

        result.dose_id = event.dose_id
        result.delay_minutes = event.delay_minutes

        stock, threshold = self._decrement_stock(session, assignment.compartment_id)
        result.remaining_stock = stock

        if stock <= threshold:
            alert = alert_engine.create_low_stock_alert(
                session,
                patient_id=assignment.patient_id,
                device_id=assignment.device_serial,
                compartment_number=assignment.compartment_number,
                medication_id=assignment.medication_id,
                current_stock=stock,
                threshold=threshold,
            )
            result.low_stock_alert_id = alert.id if alert else None

        return result

    def _commit_or_rollback(self, session: Session) -> None:
        try:
            session.commit()
        except DBAPIError as e:
            session.rollback()
            raise TransientStorageError("Reconciliation failed, retry later") from e

    async def reconcile(
        self,
        device_serial: str,
        compartment_number: int,
        observed_at: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> ReconciliationResult:
        """
        Resolve a dispense action to a pending dose

        Args:
            device_serial: Hardware serial of the dispenser
            compartment_number: Compartment that was opened
            observed_at: When the dispense happened (defaults to now)
            db: Database session

        Returns:
            ReconciliationResult (dose_id is None when nothing matched)

        Raises:
            NotFound: device or compartment assignment is unknown
        """
        observed_at = to_local(observed_at)

        def _reconcile(session: Session) -> ReconciliationResult:
            try:
                assignment = device_service.resolve_compartment(session, device_serial, compartment_number)
                result = self.reconcile_in_session(session, assignment, observed_at)
            except SchedulingError:
                session.rollback()
                raise
            except DBAPIError as e:
                session.rollback()
                logger.error(f"Storage failure while reconciling device {device_serial}: {e}")
                raise TransientStorageError("Reconciliation failed, retry later") from e
            self._commit_or_rollback(session)
            return result

        if db:
            return _reconcile(db)

        with get_db_context() as session:
            return _reconcile(session)

    async def record_device_event(
        self,
        device_serial: str,
        event_type: str,
        compartment_number: Optional[int] = None,
        event_data: Optional[Dict[str, Any]] = None,
        observed_at: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Store a raw device event and reconcile it when it is a lid opening

        The audit row is committed before reconciliation, so it survives a
        failed match.
        """
        observed_at = to_local(observed_at)

        def _record(session: Session) -> Dict[str, Any]:
            device = device_service.find_device(session, device_serial)
            device_event = models.DeviceEvent(
                device_id=device.id,
                event_type=event_type,
                compartment_number=compartment_number,
                event_data=event_data or {},
                timestamp=observed_at,
            )
            session.add(device_event)
            self._commit_or_rollback(session)
            logger.info(f"Recorded {event_type} event {device_event.id} from device {device_serial}")

            outcome = ReconciliationResult()
            if event_type == DeviceEventType.LID_OPENED.value and compartment_number:
                try:
                    assignment = device_service.resolve_compartment(session, device_serial, compartment_number)
                    outcome = self.reconcile_in_session(session, assignment, observed_at)
                    if outcome.dose_id is not None:
                        device_event.matched_dose_id = outcome.dose_id
                except NotFound as e:
                    logger.info(f"Event {device_event.id} not reconciled: {e.message}")
                except SchedulingError:
                    session.rollback()
                    raise
                except DBAPIError as e:
                    session.rollback()
                    logger.error(f"Storage failure while reconciling event {device_event.id}: {e}")
                    raise TransientStorageError("Reconciliation failed, retry later") from e
                self._commit_or_rollback(session)

            return {"event_id": device_event.id, **outcome.to_dict()}

        if db:
            return _record(db)

        with get_db_context() as session:
            return _record(session)


# Singleton instance
event_reconciler = EventReconciler()
