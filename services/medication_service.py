"""
Medication Service
Medication directory and soft deletion
"""

import logging
from typing import List, Optional
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy import and_

from database import get_db_context
import models
from services.exceptions import NotFound
from services.patient_service import patient_service


logger = logging.getLogger(__name__)


class MedicationService:
    """
    Service for medication lookups

    Medications are never hard-deleted while doses reference them; removal
    flips the active flag and deactivates the reminders.
    """

    def find_medication(
        self,
        session: Session,
        medication_id: int,
        caregiver_id: Optional[int] = None
    ) -> models.Medication:
        """
        Load a medication, optionally scoped to a caregiver.
        Absent and foreign medications both raise NotFound.
        """
        query = session.query(models.Medication).filter(models.Medication.id == medication_id)
        if caregiver_id is not None:
            query = query.join(
                models.Patient, models.Patient.id == models.Medication.patient_id
            ).filter(models.Patient.caregiver_id == caregiver_id)

        medication = query.first()
        if not medication:
            raise NotFound(f"Medication {medication_id} not found")
        return medication

    async def get_medication(
        self,
        medication_id: int,
        caregiver_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> models.Medication:
        """Get a medication visible to the caregiver"""
        if db:
            return self.find_medication(db, medication_id, caregiver_id)

        with get_db_context() as session:
            return self.find_medication(session, medication_id, caregiver_id)

    async def add_medication(
        self,
        patient_id: int,
        name: str,
        strength: Optional[str] = None,
        dose_per_intake: Optional[str] = None,
        frequency: Optional[str] = None,
        food_rule: Optional[str] = None,
        instructions: Optional[str] = None,
        caregiver_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> models.Medication:
        """Add a medication for a patient"""
        def _add(session: Session) -> models.Medication:
            patient_service.find_patient(session, patient_id, caregiver_id)

            medication = models.Medication(
                patient_id=patient_id,
                name=name,
                strength=strength,
                dose_per_intake=dose_per_intake,
                frequency=frequency,
                food_rule=food_rule,
                instructions=instructions,
                active=True
            )
            session.add(medication)
            session.commit()
            session.refresh(medication)

            logger.info(f"Added medication {medication.id} for patient {patient_id}")
            return medication

        if db:
            return _add(db)

        with get_db_context() as session:
            return _add(session)

    async def get_patient_medications(
        self,
        patient_id: int,
        active_only: bool = True,
        db: Optional[Session] = None
    ) -> List[models.Medication]:
        """List a patient's medications"""
        def _get(session: Session) -> List[models.Medication]:
            filters = [models.Medication.patient_id == patient_id]
            if active_only:
                filters.append(models.Medication.active == True)  # noqa: E712
            return session.query(models.Medication).filter(and_(*filters)).order_by(
                models.Medication.name
            ).all()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def deactivate_medication(
        self,
        medication_id: int,
        caregiver_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> models.Medication:
        """Soft-delete a medication and stop its reminders"""
        def _deactivate(session: Session) -> models.Medication:
            medication = self.find_medication(session, medication_id, caregiver_id)
            medication.active = False
            medication.updated_at = datetime.utcnow()
            session.query(models.Reminder).filter(
                models.Reminder.medication_id == medication_id
            ).update({"is_active": False}, synchronize_session=False)
            session.commit()
            session.refresh(medication)

            logger.info(f"Deactivated medication {medication_id}")
            return medication

        if db:
            return _deactivate(db)

        with get_db_context() as session:
            return _deactivate(session)


# Singleton instance
medication_service = MedicationService()
