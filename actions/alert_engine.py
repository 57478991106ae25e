"""
Alert Engine
Persists caregiver alerts raised as side effects of dose reconciliation
"""

import logging
from typing import TYPE_CHECKING, Dict, Any, Optional
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from models import AlertSeverity, AlertType, DoseStatus
from config import settings

if TYPE_CHECKING:
    from services.events import DoseTransition


logger = logging.getLogger(__name__)


class AlertEngine:
    """
    Fire-and-forget alert sink

    Every insert runs in its own SAVEPOINT so a failing alert never rolls
    back or fails the operation that raised it.
    """

    def __init__(self, dedupe_device_alerts: Optional[bool] = None):
        self.dedupe_device_alerts = (
            settings.DEDUPE_DEVICE_ALERTS if dedupe_device_alerts is None else dedupe_device_alerts
        )

    def _caregiver_for_patient(self, db: Session, patient_id: int) -> Optional[int]:
        return db.execute(
            select(models.Patient.caregiver_id).where(models.Patient.id == patient_id)
        ).scalar_one_or_none()

    def _has_unread(self, db: Session, patient_id: int, alert_type: AlertType) -> bool:
        existing = db.execute(
            select(models.Alert.id).where(
                models.Alert.patient_id == patient_id,
                models.Alert.alert_type == alert_type.value,
                models.Alert.is_read == False,  # noqa: E712
            ).limit(1)
        ).first()
        return existing is not None

    def raise_alert(
        self,
        db: Session,
        caregiver_id: Optional[int],
        patient_id: int,
        alert_type: AlertType,
        title: str,
        message: str,
        severity: AlertSeverity,
        payload: Optional[Dict[str, Any]] = None,
        dedupe: bool = False,
    ) -> Optional[models.Alert]:
        """
        Store an alert for a caregiver.

        Returns the new alert, or None when it was deduplicated or could
        not be stored. Never raises.
        """
        try:
            with db.begin_nested():
                if caregiver_id is None:
                    caregiver_id = self._caregiver_for_patient(db, patient_id)
                if caregiver_id is None:
                    logger.warning(f"No caregiver for patient {patient_id}; dropping {alert_type.value} alert")
                    return None

                if dedupe and self._has_unread(db, patient_id, alert_type):
                    logger.info(f"Unread {alert_type.value} alert already open for patient {patient_id}")
                    return None

                alert = models.Alert(
                    caregiver_id=caregiver_id,
                    patient_id=patient_id,
                    alert_type=alert_type.value,
                    title=title,
                    message=message,
                    severity=severity.value,
                    payload=payload or {},
                    is_read=False,
                    created_at=datetime.utcnow(),
                )
                db.add(alert)

            logger.info(f"Created {alert_type.value} alert {alert.id} for patient {patient_id}")
            return alert
        except SQLAlchemyError:
            logger.exception(f"Failed to store {alert_type.value} alert for patient {patient_id}")
            return None

    def create_missed_dose_alert(self, db: Session, event: "DoseTransition") -> Optional[models.Alert]:
        """Alert the caregiver that a dose was missed"""
        return self.raise_alert(
            db,
            caregiver_id=None,
            patient_id=event.patient_id,
            alert_type=AlertType.MISSED_DOSE,
            title="Missed Dose",
            message="Patient missed a dose at the scheduled time.",
            severity=AlertSeverity.HIGH,
            payload={
                "dose_id": event.dose_id,
                "medication_id": event.medication_id,
                "reminder_id": event.reminder_id,
                "scheduled_time": event.scheduled_time.isoformat(),
            },
        )

    def create_low_stock_alert(
        self,
        db: Session,
        patient_id: int,
        device_id: str,
        compartment_number: int,
        medication_id: Optional[int],
        current_stock: int,
        threshold: int,
    ) -> Optional[models.Alert]:
        """Alert the caregiver that a compartment is running low"""
        return self.raise_alert(
            db,
            caregiver_id=None,
            patient_id=patient_id,
            alert_type=AlertType.LOW_STOCK,
            title="Low Stock Alert",
            message="Medication in a dispenser compartment is running low.",
            severity=AlertSeverity.MEDIUM,
            payload={
                "device_id": device_id,
                "compartment_number": compartment_number,
                "medication_id": medication_id,
                "current_stock": current_stock,
                "low_stock_threshold": threshold,
            },
            dedupe=self.dedupe_device_alerts,
        )

    def create_low_battery_alert(
        self,
        db: Session,
        patient_id: int,
        device_id: str,
        battery_level: int,
    ) -> Optional[models.Alert]:
        """Alert the caregiver that a dispenser battery is low"""
        return self.raise_alert(
            db,
            caregiver_id=None,
            patient_id=patient_id,
            alert_type=AlertType.LOW_BATTERY,
            title="Low Battery",
            message="Dispenser battery is low.",
            severity=AlertSeverity.MEDIUM,
            payload={
                "device_id": device_id,
                "battery_level": battery_level,
                "threshold": settings.LOW_BATTERY_THRESHOLD,
            },
            dedupe=self.dedupe_device_alerts,
        )

    def on_transition(self, event: "DoseTransition", db: Session) -> None:
        """Dose ledger listener: missed doses notify the caregiver"""
        if event.new_status == DoseStatus.MISSED.value:
            self.create_missed_dose_alert(db, event)


# Singleton instance
alert_engine = AlertEngine()
