"""
Device Service
Dispenser registration, compartment assignment and status sync
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import settings
from database import get_db_context
import models
from actions.alert_engine import alert_engine
from services.exceptions import NotFound, ValidationError
from services.medication_service import medication_service
from services.patient_service import patient_service


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompartmentAssignment:
    """What a dispenser compartment currently dispenses, and for whom"""
    device_pk: int
    device_serial: str
    compartment_id: int
    compartment_number: int
    medication_id: int
    patient_id: int


class DeviceService:
    """
    Service for dispenser devices
    """

    # ==================== DIRECTORY ====================

    def find_device(self, session: Session, device_serial: str) -> models.Device:
        """Load a device by hardware serial"""
        device = session.execute(
            select(models.Device).where(models.Device.device_id == device_serial)
        ).scalar_one_or_none()
        if device is None:
            raise NotFound(f"Device {device_serial} not found")
        return device

    def resolve_compartment(
        self,
        session: Session,
        device_serial: str,
        compartment_number: int
    ) -> CompartmentAssignment:
        """
        Resolve device + compartment to medication and patient via the
        device's current assignment
        """
        device = self.find_device(session, device_serial)
        if device.patient_id is None:
            raise NotFound(f"Device {device_serial} is not assigned to a patient")

        compartment = session.execute(
            select(models.DeviceCompartment).where(
                models.DeviceCompartment.device_id == device.id,
                models.DeviceCompartment.compartment_number == compartment_number,
            )
        ).scalar_one_or_none()
        if compartment is None or compartment.medication_id is None:
            raise NotFound(f"Compartment {compartment_number} of device {device_serial} holds no medication")

        return CompartmentAssignment(
            device_pk=device.id,
            device_serial=device.device_id,
            compartment_id=compartment.id,
            compartment_number=compartment.compartment_number,
            medication_id=compartment.medication_id,
            patient_id=device.patient_id,
        )

    # ==================== CAREGIVER OPERATIONS ====================

    async def connect_device(
        self,
        patient_id: int,
        device_serial: str,
        device_name: Optional[str] = None,
        connection_type: str = "wifi",
        caregiver_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> models.Device:
        """
        Register a dispenser for a patient, or move an existing one.
        A device belongs to at most one patient at a time.
        """
        def _connect(session: Session) -> models.Device:
            patient_service.find_patient(session, patient_id, caregiver_id)

            device = session.execute(
                select(models.Device).where(models.Device.device_id == device_serial)
            ).scalar_one_or_none()

            now = datetime.utcnow()
            if device:
                device.patient_id = patient_id
                if device_name:
                    device.device_name = device_name
                device.connection_type = connection_type
                device.is_connected = True
                device.last_sync = now
            else:
                device = models.Device(
                    patient_id=patient_id,
                    device_id=device_serial,
                    device_name=device_name,
                    connection_type=connection_type,
                    is_connected=True,
                    last_sync=now,
                )
                session.add(device)

            session.commit()
            session.refresh(device)
            logger.info(f"Device {device_serial} connected to patient {patient_id}")
            return device

        if db:
            return _connect(db)

        with get_db_context() as session:
            return _connect(session)

    def _latest_device(self, session: Session, patient_id: int) -> Optional[models.Device]:
        return session.query(models.Device).filter(
            models.Device.patient_id == patient_id
        ).order_by(models.Device.created_at.desc(), models.Device.id.desc()).first()

    def _upsert_compartment(
        self,
        session: Session,
        device: models.Device,
        compartment_number: int,
        medication_id: Optional[int],
        current_stock: int,
        low_stock_threshold: Optional[int] = None,
        refilled: bool = False,
    ) -> models.DeviceCompartment:
        if current_stock < 0:
            raise ValidationError("current_stock must not be negative")

        compartment = session.execute(
            select(models.DeviceCompartment).where(
                models.DeviceCompartment.device_id == device.id,
                models.DeviceCompartment.compartment_number == compartment_number,
            )
        ).scalar_one_or_none()

        if compartment is None:
            compartment = models.DeviceCompartment(
                device_id=device.id,
                compartment_number=compartment_number,
                low_stock_threshold=settings.DEFAULT_LOW_STOCK_THRESHOLD,
            )
            session.add(compartment)

        compartment.medication_id = medication_id
        compartment.current_stock = current_stock
        if low_stock_threshold is not None:
            compartment.low_stock_threshold = low_stock_threshold
        if refilled:
            compartment.last_refill = datetime.utcnow()
        return compartment

    async def assign_compartment(
        self,
        patient_id: int,
        compartment_number: int,
        medication_id: int,
        current_stock: int,
        low_stock_threshold: Optional[int] = None,
        caregiver_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> models.DeviceCompartment:
        """Load a medication into a compartment of the patient's device"""
        def _assign(session: Session) -> models.DeviceCompartment:
            patient_service.find_patient(session, patient_id, caregiver_id)
            medication = medication_service.find_medication(session, medication_id, caregiver_id)
            if medication.patient_id != patient_id:
                raise NotFound(f"Medication {medication_id} not found")

            device = self._latest_device(session, patient_id)
            if device is None:
                raise NotFound("No device connected")

            compartment = self._upsert_compartment(
                session,
                device,
                compartment_number,
                medication_id,
                current_stock,
                low_stock_threshold=low_stock_threshold,
                refilled=True,
            )
            session.commit()
            session.refresh(compartment)

            logger.info(
                f"Compartment {compartment_number} of device {device.device_id} "
                f"loaded with medication {medication_id} ({current_stock} units)"
            )
            return compartment

        if db:
            return _assign(db)

        with get_db_context() as session:
            return _assign(session)

    async def get_patient_device(
        self,
        patient_id: int,
        caregiver_id: Optional[int] = None,
        event_limit: int = 20,
        db: Optional[Session] = None
    ) -> Optional[Dict[str, Any]]:
        """Latest device of a patient with compartments and recent events"""
        def _get(session: Session) -> Optional[Dict[str, Any]]:
            patient_service.find_patient(session, patient_id, caregiver_id)
            device = self._latest_device(session, patient_id)
            if device is None:
                return None

            compartments = session.query(models.DeviceCompartment).filter(
                models.DeviceCompartment.device_id == device.id
            ).order_by(models.DeviceCompartment.compartment_number).all()

            events = session.query(models.DeviceEvent).filter(
                models.DeviceEvent.device_id == device.id
            ).order_by(models.DeviceEvent.timestamp.desc(), models.DeviceEvent.id.desc()).limit(event_limit).all()

            return {"device": device, "compartments": compartments, "recent_events": events}

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    # ==================== HARDWARE CALLBACKS ====================

    async def update_status(
        self,
        device_serial: str,
        battery_level: Optional[int] = None,
        is_connected: Optional[bool] = None,
        compartments: Optional[List[Dict[str, Any]]] = None,
        db: Optional[Session] = None
    ) -> models.Device:
        """
        Status heartbeat from a dispenser

        Updates battery and connectivity, syncs compartment stock and raises a
        low-battery alert below the configured threshold.
        """
        def _update(session: Session) -> models.Device:
            device = self.find_device(session, device_serial)

            if battery_level is not None:
                device.battery_level = battery_level
            if is_connected is not None:
                device.is_connected = is_connected
            device.last_sync = datetime.utcnow()

            for comp in compartments or []:
                self._upsert_compartment(
                    session,
                    device,
                    int(comp["number"]),
                    comp.get("medication_id"),
                    int(comp.get("stock", 0)),
                )

            if (
                battery_level is not None
                and battery_level < settings.LOW_BATTERY_THRESHOLD
                and device.patient_id is not None
            ):
                session.flush()
                alert_engine.create_low_battery_alert(session, device.patient_id, device.device_id, battery_level)

            session.commit()
            session.refresh(device)
            logger.info(f"Device {device_serial} status updated (battery={device.battery_level})")
            return device

        if db:
            return _update(db)

        with get_db_context() as session:
            return _update(session)


# Singleton instance
device_service = DeviceService()
