"""
Reminders API Router
Endpoints for reminder sets and dose confirmation
"""

from typing import Optional
from datetime import date
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from api.deps import get_db, require_caregiver_id, services
from api.schemas.reminder import (
    ReminderSetCreate,
    ReminderSetResponse,
    ReminderList,
    ReminderResponse,
    ExpansionSummary,
    DoseTakenRequest,
    DoseList,
    DoseResponse,
    DoseActionResponse,
)


router = APIRouter(prefix="/reminders", tags=["reminders"])


@router.post(
    "/medication/{medication_id}",
    response_model=ReminderSetResponse,
    status_code=status.HTTP_201_CREATED,
)
async def define_reminders(
    medication_id: int,
    payload: ReminderSetCreate,
    caregiver_id: int = Depends(require_caregiver_id),
    db: Session = Depends(get_db)
):
    """
    Replace the reminder set of a medication

    Earlier reminders are deactivated and the new ones are expanded into
    doses over the configured horizon.

    - **reminders**: list of {time_slot, exact_time "HH:MM", ...}
    """
    reminder_service = services.get_reminder_service()

    result = await reminder_service.define_reminders(
        medication_id,
        payload.reminders,
        caregiver_id=caregiver_id,
        db=db
    )

    return ReminderSetResponse(
        message="Reminders saved",
        reminders=[ReminderResponse.model_validate(r) for r in result["reminders"]],
        expansion=[ExpansionSummary(**e.to_dict()) for e in result["expansion"]],
    )


@router.get("/medication/{medication_id}", response_model=ReminderList)
async def get_medication_reminders(
    medication_id: int,
    caregiver_id: int = Depends(require_caregiver_id),
    db: Session = Depends(get_db)
):
    """
    Get active reminders for a medication
    """
    reminder_service = services.get_reminder_service()

    reminders = await reminder_service.get_active_reminders(
        medication_id,
        caregiver_id=caregiver_id,
        db=db
    )
    return ReminderList(reminders=reminders)


@router.get("/patient/{patient_id}/today", response_model=DoseList)
async def get_today_doses(
    patient_id: int,
    day: Optional[date] = Query(None, description="Civil day (defaults to today)"),
    caregiver_id: int = Depends(require_caregiver_id),
    db: Session = Depends(get_db)
):
    """
    Get the patient's doses for a day, cancelled ones excluded
    """
    await services.get_patient_service().get_patient(patient_id, caregiver_id=caregiver_id, db=db)

    doses = await services.get_dose_ledger().get_today_doses(patient_id, day=day, db=db)
    return DoseList(doses=doses)


@router.post("/dose/{dose_id}/taken", response_model=DoseActionResponse)
async def mark_dose_taken(
    dose_id: int,
    payload: Optional[DoseTakenRequest] = None,
    caregiver_id: int = Depends(require_caregiver_id),
    db: Session = Depends(get_db)
):
    """
    Mark a pending dose as taken
    """
    payload = payload or DoseTakenRequest()

    dose = await services.get_dose_ledger().mark_taken(
        dose_id,
        actor=payload.taken_by,
        notes=payload.notes,
        caregiver_id=caregiver_id,
        db=db
    )
    return DoseActionResponse(message="Dose marked as taken", dose=DoseResponse.model_validate(dose))


@router.post("/dose/{dose_id}/missed", response_model=DoseActionResponse)
async def mark_dose_missed(
    dose_id: int,
    caregiver_id: int = Depends(require_caregiver_id),
    db: Session = Depends(get_db)
):
    """
    Mark a pending dose as missed
    """
    dose = await services.get_dose_ledger().mark_missed(dose_id, caregiver_id=caregiver_id, db=db)
    return DoseActionResponse(message="Dose marked as missed", dose=DoseResponse.model_validate(dose))


@router.post("/dose/{dose_id}/cancel", response_model=DoseActionResponse)
async def cancel_dose(
    dose_id: int,
    caregiver_id: int = Depends(require_caregiver_id),
    db: Session = Depends(get_db)
):
    """
    Cancel a pending dose
    """
    dose = await services.get_dose_ledger().cancel(dose_id, caregiver_id=caregiver_id, db=db)
    return DoseActionResponse(message="Dose cancelled", dose=DoseResponse.model_validate(dose))
