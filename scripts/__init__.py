"""
Scripts for DoseKeeper
Maintenance and seeding utilities
"""

from .extend_dose_horizon import extend_horizon
from .seed_data import seed_all, create_tables

__all__ = [
    "extend_horizon",
    "seed_all",
    "create_tables"
]
