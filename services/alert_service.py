"""
Alert Service
Caregiver-facing alert queries and read state
"""

import logging
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_

from database import get_db_context
import models
from services.exceptions import NotFound


logger = logging.getLogger(__name__)


class AlertService:
    """
    Read side of the alert sink
    """

    async def get_alerts(
        self,
        caregiver_id: int,
        alert_type: Optional[str] = None,
        is_read: Optional[bool] = None,
        patient_id: Optional[int] = None,
        limit: int = 50,
        db: Optional[Session] = None
    ) -> List[models.Alert]:
        """Newest alerts for a caregiver with optional filters"""
        def _get(session: Session) -> List[models.Alert]:
            filters = [models.Alert.caregiver_id == caregiver_id]
            if alert_type:
                filters.append(models.Alert.alert_type == alert_type)
            if is_read is not None:
                filters.append(models.Alert.is_read == is_read)
            if patient_id:
                filters.append(models.Alert.patient_id == patient_id)

            return session.query(models.Alert).filter(and_(*filters)).order_by(
                models.Alert.created_at.desc(), models.Alert.id.desc()
            ).limit(limit).all()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def mark_read(
        self,
        alert_id: int,
        caregiver_id: int,
        db: Optional[Session] = None
    ) -> models.Alert:
        """Mark one of the caregiver's alerts as read"""
        def _mark(session: Session) -> models.Alert:
            alert = session.query(models.Alert).filter(
                and_(
                    models.Alert.id == alert_id,
                    models.Alert.caregiver_id == caregiver_id
                )
            ).first()
            if not alert:
                raise NotFound(f"Alert {alert_id} not found")

            alert.is_read = True
            session.commit()
            session.refresh(alert)
            return alert

        if db:
            return _mark(db)

        with get_db_context() as session:
            return _mark(session)


# Singleton instance
alert_service = AlertService()
