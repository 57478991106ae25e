"""
Dose Ledger
Authoritative store of dose instances and their status transitions
"""

import logging
from typing import Callable, Dict, List, Optional, Any, TypeVar
from datetime import date, datetime, timedelta

from sqlalchemy import and_, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from database import Base, get_db_context
import models
from models import DoseActor, DoseStatus
from actions.alert_engine import alert_engine
from services.adherence_aggregator import adherence_aggregator
from services.clock import local_now, local_today, to_local
from services.drift_shifter import drift_shifter
from services.events import DoseTransition, TransitionListener
from services.exceptions import (
    InvalidStateTransition,
    NotFound,
    SchedulingError,
    TransientStorageError,
    ValidationError,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_delay_minutes(scheduled_time: datetime, taken_at: datetime) -> int:
    """Whole minutes late, never negative"""
    return max(0, int((taken_at - scheduled_time).total_seconds() // 60))


class DoseLedger:
    """
    Owns dose state transitions

    A transition is one compare-and-set UPDATE guarded by
    ``status = 'pending'``; of two concurrent confirmations exactly one
    wins and the other sees InvalidStateTransition. Listeners run inside
    the same transaction as the transition.
    """

    def __init__(self, listeners: Optional[List[TransitionListener]] = None):
        self._listeners: List[TransitionListener] = list(listeners or [])

    def subscribe(self, listener: TransitionListener) -> None:
        """Register a transition listener"""
        self._listeners.append(listener)

    # ==================== LOOKUPS ====================

    def load_dose(
        self,
        session: Session,
        dose_id: int,
        caregiver_id: Optional[int] = None,
        patient_id: Optional[int] = None,
    ) -> models.Dose:
        """
        Fetch a dose visible to the caller.
        Missing and foreign doses both raise NotFound.
        """
        query = select(models.Dose).where(models.Dose.id == dose_id)
        if caregiver_id is not None:
            query = query.join(models.Patient, models.Patient.id == models.Dose.patient_id).where(
                models.Patient.caregiver_id == caregiver_id
            )
        if patient_id is not None:
            query = query.where(models.Dose.patient_id == patient_id)

        dose = session.execute(query.execution_options(populate_existing=True)).scalar_one_or_none()
        if dose is None:
            raise NotFound(f"Dose {dose_id} not found")
        return dose

    # ==================== TRANSITIONS ====================

    def apply_transition(
        self,
        session: Session,
        dose: models.Dose,
        new_status: DoseStatus,
        actor: Optional[DoseActor] = None,
        notes: Optional[str] = None,
        at: Optional[datetime] = None,
        device_verified: bool = False,
    ) -> DoseTransition:
        """
        Apply a pending -> new_status transition inside the caller's
        transaction and notify listeners. Does not commit.
        """
        at = at or local_now()
        values: Dict[str, Any] = {"status": new_status.value, "updated_at": datetime.utcnow()}
        delay = 0

        if new_status == DoseStatus.TAKEN:
            delay = compute_delay_minutes(dose.scheduled_time, at)
            values.update(
                taken_at=at,
                taken_by=(actor or DoseActor.MANUAL).value,
                delay_minutes=delay,
                device_verified=device_verified,
            )
            if notes is not None:
                values["notes"] = notes
        elif new_status == DoseStatus.MISSED:
            values["missed_at"] = at
        elif new_status == DoseStatus.CANCELLED:
            values["cancelled_at"] = at
        else:
            raise ValidationError(f"Cannot transition a dose to {new_status.value}")

        result = session.execute(
            update(models.Dose)
            .where(
                models.Dose.id == dose.id,
                models.Dose.status == DoseStatus.PENDING.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = session.execute(
                select(models.Dose.status).where(models.Dose.id == dose.id)
            ).scalar_one_or_none()
            if current is None:
                raise NotFound(f"Dose {dose.id} not found")
            raise InvalidStateTransition(dose.id, current)

        event = DoseTransition(
            dose_id=dose.id,
            patient_id=dose.patient_id,
            medication_id=dose.medication_id,
            reminder_id=dose.reminder_id,
            scheduled_time=dose.scheduled_time,
            scheduled_date=dose.scheduled_date,
            new_status=new_status.value,
            actor=values.get("taken_by"),
            delay_minutes=delay,
            occurred_at=at,
        )
        logger.info(f"Dose {dose.id} -> {new_status.value} (actor={event.actor}, delay={delay}m)")

        for listener in self._listeners:
            listener(event, session)
        return event

    def _run(self, fn: Callable[[Session], T], db: Optional[Session]) -> T:
        """Run a mutation as one unit of work; nothing applies on failure"""
        def _execute(session: Session) -> T:
            try:
                result = fn(session)
                session.commit()
                if isinstance(result, Base):
                    session.refresh(result)
                return result
            except SchedulingError:
                session.rollback()
                raise
            except DBAPIError as e:
                session.rollback()
                logger.error(f"Storage failure during dose transition: {e}")
                raise TransientStorageError("Dose transition failed, retry later") from e

        if db:
            return _execute(db)

        with get_db_context() as session:
            result = _execute(session)
            if isinstance(result, Base):
                session.expunge(result)
            return result

    def _transition(
        self,
        dose_id: int,
        new_status: DoseStatus,
        db: Optional[Session],
        caregiver_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        **kwargs,
    ) -> models.Dose:
        def _apply(session: Session) -> models.Dose:
            dose = self.load_dose(session, dose_id, caregiver_id=caregiver_id, patient_id=patient_id)
            self.apply_transition(session, dose, new_status, **kwargs)
            return dose

        return self._run(_apply, db)

    async def mark_taken(
        self,
        dose_id: int,
        actor: str = DoseActor.MANUAL.value,
        notes: Optional[str] = None,
        caregiver_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        taken_at: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.Dose:
        """
        Mark a pending dose as taken

        Args:
            dose_id: Dose ID
            actor: Confirmation channel (manual, device)
            notes: Optional free-text notes
            caregiver_id: Restrict to doses of this caregiver's patients
            patient_id: Restrict to this patient's doses
            taken_at: Confirmation time (defaults to now)
            db: Database session

        Returns:
            The updated dose

        Raises:
            NotFound, InvalidStateTransition, ValidationError, TransientStorageError
        """
        try:
            actor_value = DoseActor(actor)
        except ValueError:
            raise ValidationError(f"Unknown dose actor: {actor!r}")

        return self._transition(
            dose_id,
            DoseStatus.TAKEN,
            db,
            caregiver_id=caregiver_id,
            patient_id=patient_id,
            actor=actor_value,
            notes=notes,
            at=to_local(taken_at),
            device_verified=actor_value == DoseActor.DEVICE,
        )

    async def mark_missed(
        self,
        dose_id: int,
        caregiver_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> models.Dose:
        """Mark a pending dose as missed"""
        return self._transition(
            dose_id,
            DoseStatus.MISSED,
            db,
            caregiver_id=caregiver_id,
            patient_id=patient_id,
        )

    async def cancel(
        self,
        dose_id: int,
        caregiver_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> models.Dose:
        """Cancel a pending dose"""
        return self._transition(dose_id, DoseStatus.CANCELLED, db, caregiver_id=caregiver_id)

    # ==================== QUERIES ====================

    async def get_today_doses(
        self,
        patient_id: int,
        day: Optional[date] = None,
        db: Optional[Session] = None
    ) -> List[models.Dose]:
        """Non-cancelled doses scheduled on a civil day (default today)"""
        day = day or local_today()

        def _get(session: Session) -> List[models.Dose]:
            start = datetime.combine(day, datetime.min.time())
            return session.query(models.Dose).filter(
                and_(
                    models.Dose.patient_id == patient_id,
                    models.Dose.scheduled_time >= start,
                    models.Dose.scheduled_time < start + timedelta(days=1),
                    models.Dose.status != DoseStatus.CANCELLED.value
                )
            ).order_by(models.Dose.scheduled_time).all()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_dose_history(
        self,
        patient_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        status: Optional[str] = None,
        limit: int = 100,
        db: Optional[Session] = None
    ) -> List[models.Dose]:
        """Dose history for a patient, newest first"""
        def _get(session: Session) -> List[models.Dose]:
            query = session.query(models.Dose).filter(models.Dose.patient_id == patient_id)
            if start_date:
                query = query.filter(models.Dose.scheduled_time >= datetime.combine(start_date, datetime.min.time()))
            if end_date:
                query = query.filter(
                    models.Dose.scheduled_time < datetime.combine(end_date + timedelta(days=1), datetime.min.time())
                )
            if status:
                query = query.filter(models.Dose.status == status)
            return query.order_by(models.Dose.scheduled_time.desc()).limit(limit).all()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)


# Singleton instance wired to the rollup, drift and alert listeners
dose_ledger = DoseLedger(listeners=[
    adherence_aggregator.on_transition,
    drift_shifter.on_transition,
    alert_engine.on_transition,
])
