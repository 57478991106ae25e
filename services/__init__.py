"""
Services Module
Dose scheduling and reconciliation core for the DoseKeeper application
"""

from services.exceptions import (
    SchedulingError,
    NotFound,
    InvalidStateTransition,
    ValidationError,
    TransientStorageError,
    UnsupportedBackend,
)
from services.patient_service import PatientService, patient_service
from services.medication_service import MedicationService, medication_service
from services.schedule_expander import ScheduleExpander, ExpansionResult, schedule_expander
from services.adherence_aggregator import AdherenceAggregator, adherence_aggregator
from services.drift_shifter import DriftShifter, drift_shifter
from services.dose_ledger import DoseLedger, dose_ledger
from services.reminder_service import ReminderService, reminder_service
from services.device_service import DeviceService, CompartmentAssignment, device_service
from services.reconciler import EventReconciler, ReconciliationResult, event_reconciler
from services.alert_service import AlertService, alert_service


__all__ = [
    # Errors
    "SchedulingError",
    "NotFound",
    "InvalidStateTransition",
    "ValidationError",
    "TransientStorageError",
    "UnsupportedBackend",
    # Service classes
    "PatientService",
    "MedicationService",
    "ScheduleExpander",
    "ExpansionResult",
    "AdherenceAggregator",
    "DriftShifter",
    "DoseLedger",
    "ReminderService",
    "DeviceService",
    "CompartmentAssignment",
    "EventReconciler",
    "ReconciliationResult",
    "AlertService",
    # Singleton instances
    "patient_service",
    "medication_service",
    "schedule_expander",
    "adherence_aggregator",
    "drift_shifter",
    "dose_ledger",
    "reminder_service",
    "device_service",
    "event_reconciler",
    "alert_service",
]
