"""
Dose transition events
Published by the dose ledger inside the transaction that applied them.
"""

from dataclasses import dataclass, asdict
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session


@dataclass(frozen=True)
class DoseTransition:
    """A single pending -> terminal status change"""
    dose_id: int
    patient_id: int
    medication_id: int
    reminder_id: int
    scheduled_time: datetime
    new_status: str
    actor: Optional[str] = None
    delay_minutes: int = 0
    scheduled_date: Optional[date] = None
    occurred_at: Optional[datetime] = None

    @property
    def day(self) -> date:
        """Civil day the dose belongs to"""
        return self.scheduled_date or self.scheduled_time.date()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["scheduled_time"] = self.scheduled_time.isoformat()
        data["scheduled_date"] = self.day.isoformat()
        if self.occurred_at:
            data["occurred_at"] = self.occurred_at.isoformat()
        return data


# Listeners receive the event and the session the transition ran in
TransitionListener = Callable[[DoseTransition, Session], None]
