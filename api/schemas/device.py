"""
Device Schemas
Pydantic models for dispenser API requests and responses
"""

from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict


# ==================== REQUEST SCHEMAS ====================

class DeviceConnect(BaseModel):
    """Connect a dispenser to a patient"""
    device_id: str = Field(..., min_length=1, max_length=255)
    device_name: Optional[str] = Field(None, max_length=255)
    connection_type: str = Field(default="wifi", max_length=50)


class CompartmentAssign(BaseModel):
    """Load a medication into a compartment"""
    compartment_number: int = Field(..., ge=1)
    medication_id: int
    current_stock: int = Field(..., ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)


class CompartmentStatus(BaseModel):
    """Compartment state reported by hardware"""
    number: int = Field(..., ge=1)
    stock: int = Field(default=0, ge=0)
    medication_id: Optional[int] = None


class DeviceStatusUpdate(BaseModel):
    """Status heartbeat from hardware"""
    battery_level: Optional[int] = Field(None, ge=0, le=100)
    is_connected: Optional[bool] = None
    compartments: Optional[List[CompartmentStatus]] = None


class DeviceEventCreate(BaseModel):
    """Event reported by hardware"""
    event_type: str = Field(..., min_length=1, max_length=50)
    compartment_number: Optional[int] = Field(None, ge=1)
    event_data: Optional[Dict[str, Any]] = None
    observed_at: Optional[datetime] = None


# ==================== RESPONSE SCHEMAS ====================

class DeviceResponse(BaseModel):
    """Stored device"""
    id: int
    patient_id: Optional[int] = None
    device_id: str
    device_name: Optional[str] = None
    connection_type: Optional[str] = None
    battery_level: Optional[int] = None
    is_connected: bool = False
    last_sync: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CompartmentResponse(BaseModel):
    """Stored compartment"""
    id: int
    compartment_number: int
    medication_id: Optional[int] = None
    current_stock: int
    low_stock_threshold: int
    last_refill: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DeviceEventResponse(BaseModel):
    """Stored device event"""
    id: int
    event_type: str
    compartment_number: Optional[int] = None
    event_data: Optional[Dict[str, Any]] = None
    matched_dose_id: Optional[int] = None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class DeviceDetail(BaseModel):
    """Device with compartments and recent events"""
    device: Optional[DeviceResponse] = None
    compartments: List[CompartmentResponse] = []
    recent_events: List[DeviceEventResponse] = []


class EventRecorded(BaseModel):
    """Result of recording a device event"""
    message: str
    event_id: int
    matched: bool
    dose_id: Optional[int] = None
    delay_minutes: Optional[int] = None
    remaining_stock: Optional[int] = None
    low_stock_alert_id: Optional[int] = None
