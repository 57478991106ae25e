"""
Adherence Schemas
Pydantic models for adherence report responses
"""

from typing import List
from datetime import date
from pydantic import BaseModel, ConfigDict


class AdherenceLogResponse(BaseModel):
    """Daily rollup row"""
    date: date
    medication_id: int
    total_doses: int
    taken_doses: int
    missed_doses: int
    late_doses: int
    adherence_percentage: float

    model_config = ConfigDict(from_attributes=True)


class AdherenceSummary(BaseModel):
    """Totals over the requested range"""
    total_doses: int
    taken_doses: int
    missed_doses: int
    late_doses: int
    overall_adherence: float
    days: int


class AdherenceReport(BaseModel):
    """Daily rollups with summary"""
    patient_id: int
    adherence_data: List[AdherenceLogResponse]
    summary: AdherenceSummary
