"""
Pytest Configuration and Shared Fixtures
========================================

This module provides shared fixtures for all DoseKeeper tests.
Fixtures include database sessions, test clients and sample data.
"""

import os
import sys
from datetime import datetime, date, time, timedelta
from typing import Generator, List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db, configure_sqlite
from models import (
    Caregiver, Patient, Medication, Reminder, Dose, Device, DeviceCompartment,
    DoseStatus,
)
from app import app


# ==================== DATABASE FIXTURES ====================

@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    # Foreign keys and SAVEPOINT support
    configure_sqlite(engine)

    # Create all tables
    Base.metadata.create_all(bind=engine)

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a test database session"""
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_engine
    )

    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a FastAPI test client with database override"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ==================== SAMPLE DATA FIXTURES ====================

@pytest.fixture
def base_day() -> date:
    """Fixed civil day used as the first scheduled day"""
    return date(2024, 3, 10)


@pytest.fixture
def test_caregiver(db_session: Session) -> Caregiver:
    """Create and return a test caregiver"""
    caregiver = Caregiver(name="Jane Roe", email="test.caregiver@example.com", phone="+15550100")
    db_session.add(caregiver)
    db_session.commit()
    db_session.refresh(caregiver)
    return caregiver


@pytest.fixture
def other_caregiver(db_session: Session) -> Caregiver:
    """A second caregiver who owns nothing shared"""
    caregiver = Caregiver(name="Sam Poe", email="other.caregiver@example.com")
    db_session.add(caregiver)
    db_session.commit()
    db_session.refresh(caregiver)
    return caregiver


@pytest.fixture
def test_patient(db_session: Session, test_caregiver: Caregiver) -> Patient:
    """Create and return a test patient"""
    patient = Patient(caregiver_id=test_caregiver.id, name="John Doe", age=74, is_active=True)
    db_session.add(patient)
    db_session.commit()
    db_session.refresh(patient)
    return patient


@pytest.fixture
def test_medication(db_session: Session, test_patient: Patient) -> Medication:
    """Create and return a test medication linked to test patient"""
    medication = Medication(
        patient_id=test_patient.id,
        name="Metformin",
        strength="500mg",
        dose_per_intake="1 tablet",
        frequency="daily",
        food_rule="after_food",
        active=True
    )
    db_session.add(medication)
    db_session.commit()
    db_session.refresh(medication)
    return medication


@pytest.fixture
def test_reminder(db_session: Session, test_medication: Medication) -> Reminder:
    """Create and return an active 08:00 reminder"""
    reminder = Reminder(
        medication_id=test_medication.id,
        time_slot="morning",
        exact_time=time(8, 0),
        is_active=True
    )
    db_session.add(reminder)
    db_session.commit()
    db_session.refresh(reminder)
    return reminder


def make_dose(db_session: Session, reminder: Reminder, day: date, at: time = None) -> Dose:
    """Insert one pending dose for a reminder"""
    dose = Dose(
        reminder_id=reminder.id,
        medication_id=reminder.medication_id,
        patient_id=reminder.medication.patient_id,
        scheduled_date=day,
        scheduled_time=datetime.combine(day, at or reminder.exact_time),
        status=DoseStatus.PENDING.value
    )
    db_session.add(dose)
    db_session.commit()
    db_session.refresh(dose)
    return dose


@pytest.fixture
def test_dose(db_session: Session, test_reminder: Reminder, base_day: date) -> Dose:
    """Pending dose for base_day at 08:00"""
    return make_dose(db_session, test_reminder, base_day)


@pytest.fixture
def week_of_doses(db_session: Session, test_reminder: Reminder, base_day: date) -> List[Dose]:
    """Seven consecutive pending doses starting at base_day"""
    return [
        make_dose(db_session, test_reminder, base_day + timedelta(days=i))
        for i in range(7)
    ]


@pytest.fixture
def test_device(db_session: Session, test_patient: Patient) -> Device:
    """Dispenser assigned to the test patient"""
    device = Device(
        patient_id=test_patient.id,
        device_id="DK-TEST-0001",
        device_name="Test dispenser",
        connection_type="wifi",
        battery_level=90,
        is_connected=True
    )
    db_session.add(device)
    db_session.commit()
    db_session.refresh(device)
    return device


@pytest.fixture
def test_compartment(db_session: Session, test_device: Device, test_medication: Medication) -> DeviceCompartment:
    """Compartment 1 loaded with the test medication"""
    compartment = DeviceCompartment(
        device_id=test_device.id,
        medication_id=test_medication.id,
        compartment_number=1,
        current_stock=10,
        low_stock_threshold=5
    )
    db_session.add(compartment)
    db_session.commit()
    db_session.refresh(compartment)
    return compartment


@pytest.fixture
def caregiver_headers(test_caregiver: Caregiver) -> dict:
    """Request headers identifying the test caregiver"""
    return {"X-Caregiver-Id": str(test_caregiver.id)}


# ==================== PYTEST CONFIGURATION ====================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "api: mark test as an API test")
    config.addinivalue_line("markers", "database: mark test as requiring database")
