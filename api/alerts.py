"""
Alerts API Router
Endpoints for caregiver alerts
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import get_db, require_caregiver_id, services
from api.schemas.alert import AlertList, AlertResponse


router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.get("", response_model=AlertList)
async def get_alerts(
    alert_type: Optional[str] = Query(None, description="missed_dose, low_stock or low_battery"),
    is_read: Optional[bool] = Query(None),
    patient_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    caregiver_id: int = Depends(require_caregiver_id),
    db: Session = Depends(get_db)
):
    """
    Get the caller's alerts, newest first
    """
    alerts = await services.get_alert_service().get_alerts(
        caregiver_id,
        alert_type=alert_type,
        is_read=is_read,
        patient_id=patient_id,
        limit=limit,
        db=db
    )
    return AlertList(alerts=alerts)


@router.put("/{alert_id}/read", response_model=AlertResponse)
async def mark_alert_read(
    alert_id: int,
    caregiver_id: int = Depends(require_caregiver_id),
    db: Session = Depends(get_db)
):
    """
    Mark an alert as read
    """
    return await services.get_alert_service().mark_read(alert_id, caregiver_id, db=db)
