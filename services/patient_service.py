"""
Patient Service
Patient directory lookups used to validate ownership
"""

import logging
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_

from database import get_db_context
import models
from services.exceptions import NotFound


logger = logging.getLogger(__name__)


class PatientService:
    """
    Patient directory
    """

    def find_patient(
        self,
        session: Session,
        patient_id: int,
        caregiver_id: Optional[int] = None
    ) -> models.Patient:
        """
        Load a patient, optionally scoped to a caregiver.
        Absent and foreign patients both raise NotFound.
        """
        filters = [models.Patient.id == patient_id]
        if caregiver_id is not None:
            filters.append(models.Patient.caregiver_id == caregiver_id)

        patient = session.query(models.Patient).filter(and_(*filters)).first()
        if not patient:
            raise NotFound(f"Patient {patient_id} not found")
        return patient

    async def get_patient(
        self,
        patient_id: int,
        caregiver_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> models.Patient:
        """Get a patient visible to the caregiver"""
        if db:
            return self.find_patient(db, patient_id, caregiver_id)

        with get_db_context() as session:
            return self.find_patient(session, patient_id, caregiver_id)

    async def get_caregiver_patients(
        self,
        caregiver_id: int,
        active_only: bool = True,
        db: Optional[Session] = None
    ) -> List[models.Patient]:
        """List a caregiver's patients"""
        def _get(session: Session) -> List[models.Patient]:
            query = session.query(models.Patient).filter(
                models.Patient.caregiver_id == caregiver_id
            )
            if active_only:
                query = query.filter(models.Patient.is_active == True)  # noqa: E712
            return query.order_by(models.Patient.name).all()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)


# Singleton instance
patient_service = PatientService()
