"""
Drift Shifter
Moves a reminder's future pending doses later after a late confirmation
"""

import logging
from typing import List, Optional
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from config import settings
from database import get_db_context
import models
from models import DoseStatus
from services.clock import local_now
from services.events import DoseTransition


logger = logging.getLogger(__name__)


class DriftShifter:
    """
    Self-correcting schedule adjustment

    Only pending doses strictly in the future move, and only forward.
    """

    def __init__(self, threshold_minutes: Optional[int] = None):
        self.threshold_minutes = (
            settings.DRIFT_THRESHOLD_MINUTES if threshold_minutes is None else threshold_minutes
        )

    def apply(
        self,
        session: Session,
        reminder_id: int,
        delay_minutes: int,
        now: Optional[datetime] = None,
    ) -> List[int]:
        """
        Shift inside the caller's transaction. Returns the shifted dose ids.
        """
        if delay_minutes <= self.threshold_minutes:
            return []

        now = now or local_now()
        offset = timedelta(minutes=delay_minutes)

        candidates = session.execute(
            select(models.Dose.id, models.Dose.scheduled_time).where(
                models.Dose.reminder_id == reminder_id,
                models.Dose.status == DoseStatus.PENDING.value,
                models.Dose.scheduled_time > now,
            ).order_by(models.Dose.scheduled_time)
        ).all()

        shifted = []
        for dose_id, scheduled_time in candidates:
            # Compare-and-set on status and the time we read
            result = session.execute(
                update(models.Dose)
                .where(
                    models.Dose.id == dose_id,
                    models.Dose.status == DoseStatus.PENDING.value,
                    models.Dose.scheduled_time == scheduled_time,
                )
                .values(scheduled_time=scheduled_time + offset, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                shifted.append(dose_id)

        if shifted:
            logger.info(
                f"Shifted {len(shifted)} pending doses of reminder {reminder_id} "
                f"by {delay_minutes} minutes"
            )
        return shifted

    async def shift_if_late(
        self,
        reminder_id: int,
        delay_minutes: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> List[int]:
        """
        Shift future pending doses of a reminder when the delay exceeds
        the drift threshold

        Args:
            reminder_id: Reminder whose doses move
            delay_minutes: Observed confirmation delay
            now: Reference time (defaults to local now)
            db: Database session

        Returns:
            IDs of the doses that were moved
        """
        def _shift(session: Session) -> List[int]:
            shifted = self.apply(session, reminder_id, delay_minutes, now=now)
            session.commit()
            return shifted

        if db:
            return _shift(db)

        with get_db_context() as session:
            return _shift(session)

    def on_transition(self, event: DoseTransition, session: Session) -> None:
        """Dose ledger listener: late confirmations shift the schedule"""
        if event.new_status != DoseStatus.TAKEN.value:
            return
        self.apply(session, event.reminder_id, event.delay_minutes, now=event.occurred_at)


# Singleton instance
drift_shifter = DriftShifter()
