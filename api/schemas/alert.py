"""
Alert Schemas
Pydantic models for alert responses
"""

from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict


class AlertResponse(BaseModel):
    """Stored alert"""
    id: int
    patient_id: Optional[int] = None
    alert_type: str
    title: str
    message: Optional[str] = None
    severity: str
    payload: Optional[Dict[str, Any]] = None
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AlertList(BaseModel):
    """List of alerts"""
    alerts: List[AlertResponse]
