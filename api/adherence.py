"""
Adherence API Router
Endpoints for daily adherence rollups and dose history
"""

from typing import Optional
from datetime import date, timedelta
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import get_db, require_caregiver_id, services
from api.schemas.adherence import AdherenceReport, AdherenceSummary
from api.schemas.reminder import DoseList
from services.clock import local_today


router = APIRouter(prefix="/adherence", tags=["adherence"])


@router.get("/patient/{patient_id}", response_model=AdherenceReport)
async def get_patient_adherence(
    patient_id: int,
    days: int = Query(7, ge=1, le=365, description="Number of days to include"),
    medication_id: Optional[int] = Query(None),
    caregiver_id: int = Depends(require_caregiver_id),
    db: Session = Depends(get_db)
):
    """
    Get daily adherence rollups with a summary
    """
    await services.get_patient_service().get_patient(patient_id, caregiver_id=caregiver_id, db=db)
    aggregator = services.get_adherence_aggregator()

    end_date = local_today()
    start_date = end_date - timedelta(days=days - 1)

    logs = await aggregator.get_daily_logs(
        patient_id,
        start_date=start_date,
        end_date=end_date,
        medication_id=medication_id,
        db=db
    )
    summary = await aggregator.get_summary(
        patient_id,
        start_date=start_date,
        end_date=end_date,
        medication_id=medication_id,
        db=db
    )

    return AdherenceReport(
        patient_id=patient_id,
        adherence_data=logs,
        summary=AdherenceSummary(**summary),
    )


@router.get("/patient/{patient_id}/doses", response_model=DoseList)
async def get_dose_history(
    patient_id: int,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    status: Optional[str] = Query(None, description="pending, taken, missed or cancelled"),
    limit: int = Query(100, ge=1, le=500),
    caregiver_id: int = Depends(require_caregiver_id),
    db: Session = Depends(get_db)
):
    """
    Get dose history, newest first
    """
    await services.get_patient_service().get_patient(patient_id, caregiver_id=caregiver_id, db=db)

    doses = await services.get_dose_ledger().get_dose_history(
        patient_id,
        start_date=start_date,
        end_date=end_date,
        status=status,
        limit=limit,
        db=db
    )
    return DoseList(doses=doses)
