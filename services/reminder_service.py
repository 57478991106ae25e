"""
Reminder Service
Defines reminder sets for a medication and expands them into doses
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union
from datetime import date, datetime

from pydantic import BaseModel
from sqlalchemy.orm import Session
from sqlalchemy import and_

from database import get_db_context
import models
from services.clock import parse_hhmm
from services.exceptions import ValidationError
from services.medication_service import medication_service
from services.schedule_expander import ExpansionResult, schedule_expander


logger = logging.getLogger(__name__)


ReminderInput = Union[Mapping[str, Any], BaseModel]


def _parse_definition(raw: ReminderInput) -> Dict[str, Any]:
    """Normalize one reminder definition; raises ValidationError"""
    data = raw.model_dump() if isinstance(raw, BaseModel) else dict(raw)

    time_slot = data.get("time_slot")
    if not time_slot or not str(time_slot).strip():
        raise ValidationError("time_slot is required")
    if not data.get("exact_time"):
        raise ValidationError("exact_time is required")

    exact_time = parse_hhmm(data["exact_time"])
    window_start = parse_hhmm(data.get("time_window_start"))
    window_end = parse_hhmm(data.get("time_window_end"))
    if window_start and window_end and window_start > window_end:
        raise ValidationError("time_window_start must not be after time_window_end")

    return {
        "time_slot": str(time_slot).strip(),
        "exact_time": exact_time,
        "time_window_start": window_start,
        "time_window_end": window_end,
        "food_rule": data.get("food_rule"),
        "delay_on_meal_missed": bool(data.get("delay_on_meal_missed") or False),
        "notify_device": data.get("notify_device") is not False,
        "notify_mobile": data.get("notify_mobile") is not False,
    }


class ReminderService:
    """
    Reminder sets are superseded, never edited

    Redefining reminders deactivates every earlier reminder of the
    medication, then creates and expands the new ones. Historical doses keep
    their original reminder.
    """

    async def define_reminders(
        self,
        medication_id: int,
        reminders: List[ReminderInput],
        caregiver_id: Optional[int] = None,
        horizon_days: Optional[int] = None,
        start_date: Optional[date] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Replace a medication's reminder set

        Args:
            medication_id: Medication ID
            reminders: Reminder definitions (time_slot, exact_time "HH:MM", ...)
            caregiver_id: Owning caregiver (ownership check)
            horizon_days: Expansion horizon (defaults to configured horizon)
            start_date: First civil day to expand (defaults to today)
            db: Database session

        Returns:
            {"reminders": [...], "expansion": [ExpansionResult, ...]}
        """
        # Validate everything before touching storage
        definitions = [_parse_definition(r) for r in reminders]

        def _define(session: Session) -> Dict[str, Any]:
            medication = medication_service.find_medication(session, medication_id, caregiver_id)

            superseded = session.query(models.Reminder).filter(
                and_(
                    models.Reminder.medication_id == medication.id,
                    models.Reminder.is_active == True  # noqa: E712
                )
            ).update(
                {"is_active": False, "updated_at": datetime.utcnow()},
                synchronize_session=False
            )

            created = []
            for definition in definitions:
                reminder = models.Reminder(medication_id=medication.id, is_active=True, **definition)
                session.add(reminder)
                session.flush()
                created.append(reminder)
            session.commit()

            logger.info(
                f"Defined {len(created)} reminders for medication {medication.id} "
                f"({superseded} superseded)"
            )

            expansion: List[ExpansionResult] = []
            for reminder in created:
                expansion.append(
                    schedule_expander.expand_in_session(session, reminder, horizon_days, start_date)
                )
            session.commit()

            for reminder in created:
                session.refresh(reminder)
            return {"reminders": created, "expansion": expansion}

        if db:
            return _define(db)

        with get_db_context() as session:
            return _define(session)

    async def get_active_reminders(
        self,
        medication_id: int,
        caregiver_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> List[models.Reminder]:
        """Active reminders of a medication ordered by time"""
        def _get(session: Session) -> List[models.Reminder]:
            medication_service.find_medication(session, medication_id, caregiver_id)
            return session.query(models.Reminder).filter(
                and_(
                    models.Reminder.medication_id == medication_id,
                    models.Reminder.is_active == True  # noqa: E712
                )
            ).order_by(models.Reminder.exact_time).all()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)


# Singleton instance
reminder_service = ReminderService()
