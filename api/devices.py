"""
Devices API Router
Endpoints for dispenser registration and hardware callbacks
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from api.deps import get_db, require_caregiver_id, services
from api.schemas.device import (
    DeviceConnect,
    CompartmentAssign,
    DeviceStatusUpdate,
    DeviceEventCreate,
    DeviceResponse,
    CompartmentResponse,
    DeviceDetail,
    EventRecorded,
)


router = APIRouter(prefix="/devices", tags=["devices"])


# ==================== CAREGIVER ENDPOINTS ====================

@router.post(
    "/patient/{patient_id}/connect",
    response_model=DeviceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def connect_device(
    patient_id: int,
    payload: DeviceConnect,
    caregiver_id: int = Depends(require_caregiver_id),
    db: Session = Depends(get_db)
):
    """
    Connect a dispenser to a patient
    """
    return await services.get_device_service().connect_device(
        patient_id,
        payload.device_id,
        device_name=payload.device_name,
        connection_type=payload.connection_type,
        caregiver_id=caregiver_id,
        db=db
    )


@router.post("/patient/{patient_id}/compartment", response_model=CompartmentResponse)
async def assign_compartment(
    patient_id: int,
    payload: CompartmentAssign,
    caregiver_id: int = Depends(require_caregiver_id),
    db: Session = Depends(get_db)
):
    """
    Load a medication into a compartment of the patient's dispenser
    """
    return await services.get_device_service().assign_compartment(
        patient_id,
        payload.compartment_number,
        payload.medication_id,
        payload.current_stock,
        low_stock_threshold=payload.low_stock_threshold,
        caregiver_id=caregiver_id,
        db=db
    )


@router.get("/patient/{patient_id}", response_model=DeviceDetail)
async def get_patient_device(
    patient_id: int,
    caregiver_id: int = Depends(require_caregiver_id),
    db: Session = Depends(get_db)
):
    """
    Get the patient's dispenser with compartments and recent events
    """
    detail = await services.get_device_service().get_patient_device(
        patient_id,
        caregiver_id=caregiver_id,
        db=db
    )
    if detail is None:
        return DeviceDetail()
    return DeviceDetail.model_validate(detail, from_attributes=True)


# ==================== HARDWARE CALLBACKS ====================

@router.post("/{device_serial}/status", response_model=DeviceResponse)
async def update_device_status(
    device_serial: str,
    payload: DeviceStatusUpdate,
    db: Session = Depends(get_db)
):
    """
    Status heartbeat: battery, connectivity and compartment stock
    """
    compartments = None
    if payload.compartments is not None:
        compartments = [c.model_dump() for c in payload.compartments]

    return await services.get_device_service().update_status(
        device_serial,
        battery_level=payload.battery_level,
        is_connected=payload.is_connected,
        compartments=compartments,
        db=db
    )


@router.post(
    "/{device_serial}/event",
    response_model=EventRecorded,
    status_code=status.HTTP_201_CREATED,
)
async def record_device_event(
    device_serial: str,
    payload: DeviceEventCreate,
    db: Session = Depends(get_db)
):
    """
    Record a hardware event

    A lid_opened event with a compartment number is reconciled against the
    patient's pending doses.
    """
    outcome = await services.get_event_reconciler().record_device_event(
        device_serial,
        payload.event_type,
        compartment_number=payload.compartment_number,
        event_data=payload.event_data,
        observed_at=payload.observed_at,
        db=db
    )

    message = "Dose confirmed" if outcome["matched"] else "Event recorded"
    return EventRecorded(message=message, **outcome)
