"""
Schedule Expander
Materializes a reminder into one dose row per calendar day
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from database import get_db_context
import models
from models import DoseStatus
from services.clock import local_today
from services.exceptions import NotFound


logger = logging.getLogger(__name__)


@dataclass
class ExpansionResult:
    """Outcome of expanding one reminder"""
    reminder_id: int
    created: List[date] = field(default_factory=list)
    skipped: List[date] = field(default_factory=list)
    failed: List[date] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reminder_id": self.reminder_id,
            "created": len(self.created),
            "skipped": len(self.skipped),
            "failed": [d.isoformat() for d in self.failed],
        }


class ScheduleExpander:
    """
    Expands reminders over a rolling horizon

    Expansion is idempotent: a (reminder, day) pair that already has a dose
    is skipped, and a lost insert race on the unique key counts as skipped.
    Each day is inserted in its own SAVEPOINT so one failing day does not
    abort the rest.
    """

    def __init__(self, horizon_days: Optional[int] = None):
        self.horizon_days = settings.DOSE_HORIZON_DAYS if horizon_days is None else horizon_days

    def _dose_exists(self, session: Session, reminder_id: int, day: date) -> bool:
        return session.execute(
            select(models.Dose.id).where(
                models.Dose.reminder_id == reminder_id,
                models.Dose.scheduled_date == day,
            )
        ).first() is not None

    def expand_in_session(
        self,
        session: Session,
        reminder: models.Reminder,
        horizon_days: Optional[int] = None,
        start_date: Optional[date] = None,
    ) -> ExpansionResult:
        """Expand inside the caller's transaction. Does not commit."""
        horizon = self.horizon_days if horizon_days is None else horizon_days
        start = start_date or local_today()
        medication = reminder.medication
        result = ExpansionResult(reminder_id=reminder.id)

        logger.info(
            f"Scheduling doses for patient {medication.patient_id}, medication {medication.id}, "
            f"reminder {reminder.id} at {reminder.exact_time.strftime('%H:%M')}"
        )

        for offset in range(horizon):
            day = start + timedelta(days=offset)
            try:
                if self._dose_exists(session, reminder.id, day):
                    result.skipped.append(day)
                    continue

                with session.begin_nested():
                    session.add(models.Dose(
                        reminder_id=reminder.id,
                        medication_id=medication.id,
                        patient_id=medication.patient_id,
                        scheduled_date=day,
                        scheduled_time=datetime.combine(day, reminder.exact_time),
                        status=DoseStatus.PENDING.value,
                    ))
                result.created.append(day)
            except IntegrityError:
                # Another worker materialized the same day first
                result.skipped.append(day)
            except SQLAlchemyError as e:
                logger.error(f"Error inserting dose for reminder {reminder.id} on {day}: {e}")
                result.failed.append(day)

        logger.info(
            f"Finished scheduling reminder {reminder.id}: {len(result.created)} created, "
            f"{len(result.skipped)} existing, {len(result.failed)} failed"
        )
        return result

    async def expand(
        self,
        reminder_id: int,
        horizon_days: Optional[int] = None,
        start_date: Optional[date] = None,
        db: Optional[Session] = None
    ) -> ExpansionResult:
        """
        Materialize doses for a reminder

        Args:
            reminder_id: Reminder to expand
            horizon_days: Number of days starting at start_date
            start_date: First civil day (defaults to local today)
            db: Database session

        Returns:
            ExpansionResult listing created, skipped and failed days
        """
        def _expand(session: Session) -> ExpansionResult:
            reminder = session.get(models.Reminder, reminder_id)
            if reminder is None:
                raise NotFound(f"Reminder {reminder_id} not found")
            result = self.expand_in_session(session, reminder, horizon_days, start_date)
            session.commit()
            return result

        if db:
            return _expand(db)

        with get_db_context() as session:
            return _expand(session)

    async def extend_active_reminders(
        self,
        horizon_days: Optional[int] = None,
        start_date: Optional[date] = None,
        db: Optional[Session] = None
    ) -> List[ExpansionResult]:
        """
        Top up the horizon for every active reminder of an active medication.
        Safe to run repeatedly.
        """
        def _extend(session: Session) -> List[ExpansionResult]:
            reminders = session.query(models.Reminder).join(
                models.Medication, models.Medication.id == models.Reminder.medication_id
            ).filter(
                models.Reminder.is_active == True,  # noqa: E712
                models.Medication.active == True,  # noqa: E712
            ).order_by(models.Reminder.id).all()

            results = [
                self.expand_in_session(session, reminder, horizon_days, start_date)
                for reminder in reminders
            ]
            session.commit()
            return results

        if db:
            return _extend(db)

        with get_db_context() as session:
            return _extend(session)


# Singleton instance
schedule_expander = ScheduleExpander()
