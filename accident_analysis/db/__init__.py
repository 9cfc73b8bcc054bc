"""
Database Package - SQLAlchemy
=============================

Persistence for accidents, witnesses, fragments, evidence and cause trees.
"""

from .models import (
    Base,
    AccidentRow, WitnessRow, FragmentRow, MaterialEvidenceRow, CauseTreeRow,
)
from .session import Database

__all__ = [
    # Base
    "Base",
    # Tables
    "AccidentRow", "WitnessRow", "FragmentRow", "MaterialEvidenceRow", "CauseTreeRow",
    # Session
    "Database",
]
