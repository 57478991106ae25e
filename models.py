"""
Database Models
SQLAlchemy ORM models for DoseKeeper
"""

from sqlalchemy import Column, Integer, String, Boolean, Float, DateTime, ForeignKey, Text, Date, Time, Index, UniqueConstraint, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import Enum as PyEnum

from database import Base


# ==================== ENUMS ====================

class DoseStatus(str, PyEnum):
    """Lifecycle of a materialized dose"""
    PENDING = "pending"
    TAKEN = "taken"
    MISSED = "missed"
    CANCELLED = "cancelled"


class DoseActor(str, PyEnum):
    """Channel that confirmed a dose"""
    MANUAL = "manual"
    DEVICE = "device"


class AdherenceOutcome(str, PyEnum):
    """Outcomes counted by the daily adherence rollup"""
    TAKEN = "taken"
    MISSED = "missed"


class AlertType(str, PyEnum):
    """Types of caregiver alerts"""
    MISSED_DOSE = "missed_dose"
    LOW_STOCK = "low_stock"
    LOW_BATTERY = "low_battery"


class AlertSeverity(str, PyEnum):
    """Alert severity levels"""
    INFO = "info"
    MEDIUM = "medium"
    HIGH = "high"


class DeviceEventType(str, PyEnum):
    """Event types reported by dispensers"""
    LID_OPENED = "lid_opened"
    LID_CLOSED = "lid_closed"
    REFILLED = "refilled"
    ERROR = "error"


# ==================== MODELS ====================

class Caregiver(Base):
    """Caregiver account that owns patients and receives alerts"""
    __tablename__ = "caregivers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(20))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    patients = relationship("Patient", back_populates="caregiver", cascade="all, delete-orphan")
    alerts = relationship("Alert", back_populates="caregiver", cascade="all, delete-orphan")


class Patient(Base):
    """Home patient under a caregiver"""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    caregiver_id = Column(Integer, ForeignKey("caregivers.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    age = Column(Integer)
    allergies = Column(Text)
    medical_conditions = Column(Text)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    caregiver = relationship("Caregiver", back_populates="patients")
    medications = relationship("Medication", back_populates="patient", cascade="all, delete-orphan")
    doses = relationship("Dose", back_populates="patient", cascade="all, delete-orphan")
    devices = relationship("Device", back_populates="patient")
    adherence_logs = relationship("AdherenceLog", back_populates="patient", cascade="all, delete-orphan")


class Medication(Base):
    """Medication prescribed to a patient"""
    __tablename__ = "medications"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)

    name = Column(String(255), nullable=False)
    strength = Column(String(100))  # e.g., "500mg"
    dose_per_intake = Column(String(50))
    frequency = Column(String(50))
    food_rule = Column(String(50))
    instructions = Column(Text)

    # Soft delete flag; doses keep referencing inactive medications
    active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    patient = relationship("Patient", back_populates="medications")
    reminders = relationship("Reminder", back_populates="medication", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_medications_patient_active", "patient_id", "active"),
    )


class Reminder(Base):
    """Recurring daily time slot for a medication"""
    __tablename__ = "reminders"

    id = Column(Integer, primary_key=True, index=True)
    medication_id = Column(Integer, ForeignKey("medications.id", ondelete="CASCADE"), nullable=False, index=True)

    time_slot = Column(String(50), nullable=False)  # "morning", "night", ...
    exact_time = Column(Time, nullable=False)
    time_window_start = Column(Time)
    time_window_end = Column(Time)
    food_rule = Column(String(50))
    delay_on_meal_missed = Column(Boolean, default=False)
    notify_device = Column(Boolean, default=True)
    notify_mobile = Column(Boolean, default=True)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    medication = relationship("Medication", back_populates="reminders")
    doses = relationship("Dose", back_populates="reminder")


class Dose(Base):
    """A materialized, dated occurrence of a reminder"""
    __tablename__ = "doses"

    id = Column(Integer, primary_key=True, index=True)
    reminder_id = Column(Integer, ForeignKey("reminders.id", ondelete="CASCADE"), nullable=False)
    medication_id = Column(Integer, ForeignKey("medications.id", ondelete="CASCADE"), nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)

    # Civil day the dose was generated for; unaffected by drift shifts
    scheduled_date = Column(Date, nullable=False)
    scheduled_time = Column(DateTime, nullable=False)

    status = Column(String(20), nullable=False, default=DoseStatus.PENDING.value)
    taken_at = Column(DateTime)
    taken_by = Column(String(50))
    missed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    device_verified = Column(Boolean, default=False)
    delay_minutes = Column(Integer, default=0)
    notes = Column(Text)

    # Set once the transition has been counted in the daily rollup
    adherence_recorded = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    reminder = relationship("Reminder", back_populates="doses")
    medication = relationship("Medication")
    patient = relationship("Patient", back_populates="doses")

    __table_args__ = (
        UniqueConstraint("reminder_id", "scheduled_date", name="uq_doses_reminder_date"),
        Index("ix_doses_patient_scheduled", "patient_id", "scheduled_time"),
        Index("ix_doses_status", "status"),
    )


class Device(Base):
    """Physical pill dispenser"""
    __tablename__ = "devices"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), index=True)

    device_id = Column(String(255), unique=True, nullable=False)  # hardware serial
    device_name = Column(String(255))
    connection_type = Column(String(50), default="wifi")
    battery_level = Column(Integer, default=100)
    is_connected = Column(Boolean, default=False)
    last_sync = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    patient = relationship("Patient", back_populates="devices")
    compartments = relationship("DeviceCompartment", back_populates="device", cascade="all, delete-orphan")
    events = relationship("DeviceEvent", back_populates="device", cascade="all, delete-orphan")


class DeviceCompartment(Base):
    """One medication slot inside a dispenser"""
    __tablename__ = "device_compartments"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(Integer, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False)
    medication_id = Column(Integer, ForeignKey("medications.id", ondelete="SET NULL"))

    compartment_number = Column(Integer, nullable=False)
    current_stock = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False, default=5)
    last_refill = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    device = relationship("Device", back_populates="compartments")
    medication = relationship("Medication")

    __table_args__ = (
        UniqueConstraint("device_id", "compartment_number", name="uq_compartment_device_number"),
    )


class DeviceEvent(Base):
    """Raw event reported by a dispenser, kept for audit"""
    __tablename__ = "device_events"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(Integer, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, index=True)

    event_type = Column(String(50), nullable=False)
    compartment_number = Column(Integer)
    event_data = Column(JSON, default=dict)
    matched_dose_id = Column(Integer, ForeignKey("doses.id", ondelete="SET NULL"))

    timestamp = Column(DateTime, default=datetime.utcnow)

    device = relationship("Device", back_populates="events")


class Alert(Base):
    """Caregiver notification produced by reconciliation and device status"""
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, index=True)
    caregiver_id = Column(Integer, ForeignKey("caregivers.id", ondelete="CASCADE"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), index=True)

    alert_type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text)
    severity = Column(String(20), default=AlertSeverity.INFO.value)
    payload = Column(JSON, default=dict)  # structured details (ids, times, stock)

    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    caregiver = relationship("Caregiver", back_populates="alerts")

    __table_args__ = (
        Index("ix_alerts_patient_type_read", "patient_id", "alert_type", "is_read"),
    )


class AdherenceLog(Base):
    """Daily adherence rollup per patient and medication"""
    __tablename__ = "adherence_logs"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    medication_id = Column(Integer, ForeignKey("medications.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)

    total_doses = Column(Integer, nullable=False, default=0)
    taken_doses = Column(Integer, nullable=False, default=0)
    missed_doses = Column(Integer, nullable=False, default=0)
    late_doses = Column(Integer, nullable=False, default=0)
    adherence_percentage = Column(Float, nullable=False, default=0.0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    patient = relationship("Patient", back_populates="adherence_logs")
    medication = relationship("Medication")

    __table_args__ = (
        UniqueConstraint("patient_id", "medication_id", "date", name="uq_adherence_patient_med_date"),
        Index("ix_adherence_patient_date", "patient_id", "date"),
    )
