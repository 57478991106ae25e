"""
DoseKeeper Test Suite
=====================

This package contains all tests for the DoseKeeper medication adherence engine.

Test Structure:
- test_services/: scheduling core (expander, ledger, reconciler, rollups, drift, alerts)
- test_api/: API endpoint tests for FastAPI routes
- conftest.py: Shared pytest fixtures

Running Tests:
    # Run all tests
    pytest

    # Run specific test module
    pytest tests/test_services/

    # Run only marked tests
    pytest -m "unit"
    pytest -m "api"
"""

# Test configuration
TEST_DATABASE_URL = "sqlite:///:memory:"
TEST_CAREGIVER_EMAIL = "test.caregiver@example.com"

# Common test data
SAMPLE_REMINDERS = [
    {"time_slot": "morning", "exact_time": "08:00", "food_rule": "after_food"},
    {"time_slot": "night", "exact_time": "20:00", "food_rule": "after_food"},
]

__all__ = [
    "TEST_DATABASE_URL",
    "TEST_CAREGIVER_EMAIL",
    "SAMPLE_REMINDERS",
]
