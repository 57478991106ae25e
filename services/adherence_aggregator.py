"""
Adherence Aggregator
Maintains the daily per-patient, per-medication adherence rollup
"""

import logging
from typing import Dict, List, Optional, Any
from datetime import date, datetime

from sqlalchemy import and_, update, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from config import settings
from database import get_db_context
import models
from models import AdherenceOutcome, DoseStatus
from services.events import DoseTransition
from services.exceptions import UnsupportedBackend, ValidationError


logger = logging.getLogger(__name__)


# Backends with a native INSERT ... ON CONFLICT. Others are rejected
_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class AdherenceAggregator:
    """
    Incremental daily adherence rollup

    Each record is a single INSERT ... ON CONFLICT DO UPDATE, so concurrent
    callers for the same key never lose an increment.
    """

    def _upsert(
        self,
        session: Session,
        patient_id: int,
        medication_id: int,
        day: date,
        outcome: AdherenceOutcome,
        late: bool = False,
    ) -> None:
        dialect = session.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)
        if insert is None:
            raise UnsupportedBackend(f"Adherence upsert is not supported on {dialect}")

        taken = 1 if outcome == AdherenceOutcome.TAKEN else 0
        missed = 1 if outcome == AdherenceOutcome.MISSED else 0
        late_count = 1 if (late and taken) else 0
        now = datetime.utcnow()

        table = models.AdherenceLog.__table__
        stmt = insert(table).values(
            patient_id=patient_id,
            medication_id=medication_id,
            date=day,
            total_doses=1,
            taken_doses=taken,
            missed_doses=missed,
            late_doses=late_count,
            adherence_percentage=100.0 * taken,
            created_at=now,
            updated_at=now,
        )
        # Percentage is computed from the post-increment counters
        stmt = stmt.on_conflict_do_update(
            index_elements=["patient_id", "medication_id", "date"],
            set_={
                "total_doses": table.c.total_doses + 1,
                "taken_doses": table.c.taken_doses + stmt.excluded.taken_doses,
                "missed_doses": table.c.missed_doses + stmt.excluded.missed_doses,
                "late_doses": table.c.late_doses + stmt.excluded.late_doses,
                "adherence_percentage": (
                    (table.c.taken_doses + stmt.excluded.taken_doses) * 100.0
                    / (table.c.total_doses + 1)
                ),
                "updated_at": now,
            },
        )
        session.execute(stmt)

    def _claim_dose(self, session: Session, dose_id: int) -> bool:
        """Mark a dose as counted; False when it was already counted"""
        result = session.execute(
            update(models.Dose)
            .where(
                models.Dose.id == dose_id,
                models.Dose.adherence_recorded == False,  # noqa: E712
            )
            .values(adherence_recorded=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def apply(
        self,
        session: Session,
        patient_id: int,
        medication_id: int,
        day: date,
        outcome: AdherenceOutcome,
        dose_id: Optional[int] = None,
        late: bool = False,
    ) -> bool:
        """
        Apply one outcome inside the caller's transaction.

        With a dose_id the dose is claimed first, so replaying the same
        transition is a no-op. Returns True when the rollup changed.
        """
        if dose_id is not None and not self._claim_dose(session, dose_id):
            logger.info(f"Dose {dose_id} already counted in adherence rollup; skipping")
            return False

        self._upsert(session, patient_id, medication_id, day, outcome, late=late)
        logger.debug(
            f"Adherence rollup updated: patient {patient_id}, medication {medication_id}, "
            f"{day.isoformat()} +{outcome.value}"
        )
        return True

    def _get_log(self, session: Session, patient_id: int, medication_id: int, day: date) -> Optional[models.AdherenceLog]:
        return session.execute(
            select(models.AdherenceLog)
            .where(
                models.AdherenceLog.patient_id == patient_id,
                models.AdherenceLog.medication_id == medication_id,
                models.AdherenceLog.date == day,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    async def record(
        self,
        patient_id: int,
        medication_id: int,
        day: date,
        outcome: AdherenceOutcome,
        dose_id: Optional[int] = None,
        late: bool = False,
        db: Optional[Session] = None
    ) -> models.AdherenceLog:
        """
        Record a taken or missed outcome for a day

        Args:
            patient_id: Patient ID
            medication_id: Medication ID
            day: Civil date of the dose
            outcome: taken or missed
            dose_id: Optional dose being counted (makes replays idempotent)
            late: Whether a taken dose was late
            db: Database session

        Returns:
            The updated rollup row
        """
        try:
            outcome = AdherenceOutcome(outcome)
        except ValueError:
            raise ValidationError(f"Unsupported adherence outcome: {outcome!r}")

        def _record(session: Session) -> models.AdherenceLog:
            self.apply(session, patient_id, medication_id, day, outcome, dose_id=dose_id, late=late)
            session.commit()
            return self._get_log(session, patient_id, medication_id, day)

        if db:
            return _record(db)

        with get_db_context() as session:
            return _record(session)

    def on_transition(self, event: DoseTransition, session: Session) -> None:
        """Dose ledger listener: count taken and missed doses"""
        if event.new_status == DoseStatus.TAKEN.value:
            outcome = AdherenceOutcome.TAKEN
        elif event.new_status == DoseStatus.MISSED.value:
            outcome = AdherenceOutcome.MISSED
        else:
            return

        self.apply(
            session,
            patient_id=event.patient_id,
            medication_id=event.medication_id,
            day=event.day,
            outcome=outcome,
            dose_id=event.dose_id,
            late=event.delay_minutes > settings.LATE_DOSE_THRESHOLD_MINUTES,
        )

    async def get_daily_logs(
        self,
        patient_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        medication_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> List[models.AdherenceLog]:
        """Daily rollups for a patient, newest first"""
        def _get(session: Session) -> List[models.AdherenceLog]:
            filters = [models.AdherenceLog.patient_id == patient_id]
            if start_date:
                filters.append(models.AdherenceLog.date >= start_date)
            if end_date:
                filters.append(models.AdherenceLog.date <= end_date)
            if medication_id:
                filters.append(models.AdherenceLog.medication_id == medication_id)

            return session.query(models.AdherenceLog).filter(
                and_(*filters)
            ).order_by(
                models.AdherenceLog.date.desc(),
                models.AdherenceLog.medication_id
            ).all()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_summary(
        self,
        patient_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        medication_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """Totals across the daily rollups in a date range"""
        logs = await self.get_daily_logs(
            patient_id,
            start_date=start_date,
            end_date=end_date,
            medication_id=medication_id,
            db=db
        )

        total = sum(log.total_doses for log in logs)
        taken = sum(log.taken_doses for log in logs)
        missed = sum(log.missed_doses for log in logs)
        late = sum(log.late_doses for log in logs)

        return {
            "total_doses": total,
            "taken_doses": taken,
            "missed_doses": missed,
            "late_doses": late,
            "overall_adherence": round(taken / total * 100, 2) if total else 0.0,
            "days": len({log.date for log in logs}),
        }


# Singleton instance
adherence_aggregator = AdherenceAggregator()
