#!/usr/bin/env python
"""
Seed Data
Script to seed the database with a demo caregiver, patient, medications,
reminders and a dispenser for development
"""

import sys
import os
import argparse
import asyncio
import logging

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import SessionLocal, engine, Base
from models import Caregiver, Patient, Dose
from services.device_service import device_service
from services.medication_service import medication_service
from services.reminder_service import reminder_service


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


DEMO_MEDICATIONS = [
    {
        "name": "Metformin",
        "strength": "500mg",
        "dose_per_intake": "1 tablet",
        "frequency": "twice daily",
        "food_rule": "after_food",
        "reminders": [
            {"time_slot": "morning", "exact_time": "08:00", "food_rule": "after_food"},
            {"time_slot": "night", "exact_time": "20:00", "food_rule": "after_food"},
        ],
    },
    {
        "name": "Lisinopril",
        "strength": "10mg",
        "dose_per_intake": "1 tablet",
        "frequency": "once daily",
        "food_rule": "any",
        "reminders": [
            {"time_slot": "morning", "exact_time": "09:00"},
        ],
    },
]


def create_tables():
    """Create all database tables"""
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Tables created successfully")


def clear_tables():
    """Drop and recreate all tables"""
    logger.info("Clearing existing data...")
    Base.metadata.drop_all(bind=engine)
    create_tables()


async def _seed(db) -> Patient:
    caregiver = db.query(Caregiver).filter(Caregiver.email == "demo.caregiver@example.com").first()
    if caregiver:
        logger.info("Demo caregiver already exists, skipping")
        return db.query(Patient).filter(Patient.caregiver_id == caregiver.id).first()

    caregiver = Caregiver(name="Demo Caregiver", email="demo.caregiver@example.com", phone="+15550100")
    db.add(caregiver)
    db.flush()

    patient = Patient(caregiver_id=caregiver.id, name="Demo Patient", age=72, is_active=True)
    db.add(patient)
    db.commit()

    await device_service.connect_device(
        patient.id, "DK-DEMO-0001", device_name="Kitchen dispenser", caregiver_id=caregiver.id, db=db
    )

    for number, entry in enumerate(DEMO_MEDICATIONS, start=1):
        medication = await medication_service.add_medication(
            patient.id,
            entry["name"],
            strength=entry["strength"],
            dose_per_intake=entry["dose_per_intake"],
            frequency=entry["frequency"],
            food_rule=entry["food_rule"],
            caregiver_id=caregiver.id,
            db=db
        )
        await reminder_service.define_reminders(
            medication.id, entry["reminders"], caregiver_id=caregiver.id, db=db
        )
        await device_service.assign_compartment(
            patient.id, number, medication.id, current_stock=30, caregiver_id=caregiver.id, db=db
        )

    return patient


def seed_all(clear_existing: bool = False):
    """Seed all demo data"""
    if clear_existing:
        clear_tables()
    else:
        create_tables()

    db = SessionLocal()
    try:
        patient = asyncio.run(_seed(db))

        print("\n" + "="*60)
        print("Seeding Complete!")
        print("="*60)
        print(f"\nDemo Patient ID: {patient.id}")
        print(f"Caregiver ID (X-Caregiver-Id): {patient.caregiver_id}")
        print(f"Pending doses: {db.query(Dose).filter(Dose.patient_id == patient.id).count()}")
    except Exception as e:
        db.rollback()
        logger.error(f"Error during seeding: {e}")
        raise
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(
        description="Seed the database with demo data"
    )
    parser.add_argument(
        "--clear",
        action="store_true",
        help="Clear existing data before seeding"
    )

    args = parser.parse_args()

    seed_all(clear_existing=args.clear)


if __name__ == "__main__":
    main()
