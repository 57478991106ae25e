"""
Actions Module
Side-effect engines triggered by the scheduling core
"""

from .alert_engine import (
    AlertEngine,
    alert_engine
)


__all__ = [
    "AlertEngine",
    "alert_engine",
]
