"""
API Dependencies
Common dependencies for FastAPI endpoints
"""

from typing import Optional
from fastapi import Header, HTTPException, status

from database import get_db


async def require_caregiver_id(
    x_caregiver_id: Optional[int] = Header(None, alias="X-Caregiver-Id")
) -> int:
    """
    Caller identity for caregiver-only endpoints
    Raises HTTPException if the header is missing
    """
    if x_caregiver_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Caregiver-Id header required",
        )
    return x_caregiver_id


class ServiceDependency:
    """
    Dependency injection for services
    """

    @staticmethod
    def get_reminder_service():
        from services.reminder_service import reminder_service
        return reminder_service

    @staticmethod
    def get_dose_ledger():
        from services.dose_ledger import dose_ledger
        return dose_ledger

    @staticmethod
    def get_device_service():
        from services.device_service import device_service
        return device_service

    @staticmethod
    def get_event_reconciler():
        from services.reconciler import event_reconciler
        return event_reconciler

    @staticmethod
    def get_alert_service():
        from services.alert_service import alert_service
        return alert_service

    @staticmethod
    def get_adherence_aggregator():
        from services.adherence_aggregator import adherence_aggregator
        return adherence_aggregator

    @staticmethod
    def get_patient_service():
        from services.patient_service import patient_service
        return patient_service


# Service dependency instances
services = ServiceDependency()


__all__ = ["get_db", "require_caregiver_id", "services"]
