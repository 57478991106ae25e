"""
Reminder Schemas
Pydantic models for reminder and dose API requests and responses
"""

import re
from typing import Optional, List
from datetime import date, datetime, time
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")


def _check_hhmm(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if not _HHMM.match(value):
        raise ValueError("time must be in HH:MM format")
    return value


# ==================== REQUEST SCHEMAS ====================

class ReminderDefinition(BaseModel):
    """One reminder in a medication's reminder set"""
    time_slot: str = Field(..., min_length=1, max_length=50)
    exact_time: str = Field(..., description="Time in HH:MM format")
    time_window_start: Optional[str] = None
    time_window_end: Optional[str] = None
    food_rule: Optional[str] = Field(None, max_length=50)
    delay_on_meal_missed: bool = False
    notify_device: bool = True
    notify_mobile: bool = True

    @field_validator("exact_time", "time_window_start", "time_window_end")
    @classmethod
    def validate_time(cls, v: Optional[str]) -> Optional[str]:
        return _check_hhmm(v)

    @model_validator(mode="after")
    def validate_window(self):
        if self.time_window_start and self.time_window_end:
            if self.time_window_start[:5] > self.time_window_end[:5]:
                raise ValueError("time_window_start must not be after time_window_end")
        return self


class ReminderSetCreate(BaseModel):
    """Replace the reminder set of a medication"""
    reminders: List[ReminderDefinition] = Field(..., min_length=1)


class DoseTakenRequest(BaseModel):
    """Manual confirmation of a dose"""
    taken_by: str = Field(default="manual")
    notes: Optional[str] = Field(None, max_length=500)


# ==================== RESPONSE SCHEMAS ====================

class ReminderResponse(BaseModel):
    """Stored reminder"""
    id: int
    medication_id: int
    time_slot: str
    exact_time: time
    time_window_start: Optional[time] = None
    time_window_end: Optional[time] = None
    food_rule: Optional[str] = None
    delay_on_meal_missed: bool
    notify_device: bool
    notify_mobile: bool
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ExpansionSummary(BaseModel):
    """Dose materialization outcome for one reminder"""
    reminder_id: int
    created: int
    skipped: int
    failed: List[str] = []


class ReminderSetResponse(BaseModel):
    """Result of defining reminders"""
    message: str
    reminders: List[ReminderResponse]
    expansion: List[ExpansionSummary]


class ReminderList(BaseModel):
    """Active reminders of a medication"""
    reminders: List[ReminderResponse]


class DoseResponse(BaseModel):
    """Stored dose"""
    id: int
    reminder_id: int
    medication_id: int
    patient_id: int
    scheduled_date: date
    scheduled_time: datetime
    status: str
    taken_at: Optional[datetime] = None
    taken_by: Optional[str] = None
    missed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    device_verified: bool = False
    delay_minutes: int = 0
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class DoseList(BaseModel):
    """List of doses"""
    doses: List[DoseResponse]


class DoseActionResponse(BaseModel):
    """Result of a dose transition"""
    message: str
    dose: DoseResponse
