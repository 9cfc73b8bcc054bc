"""
SQLAlchemy Models for Database
==============================

Schema for the accident-analysis workflow:
- Accidents (root aggregate, numbered ACC-<year>-<seq>)
- Witnesses, testimony fragments and material evidence per accident
- One cause tree per accident, stored as its JSON wire format

Supports both PostgreSQL and SQLite via SQLAlchemy.
"""

from datetime import datetime
from sqlalchemy import (
    Column, String, Text, Integer, Boolean, DateTime, Enum, ForeignKey,
    UniqueConstraint, Index, JSON
)
from sqlalchemy.orm import relationship, declarative_base

from ..schemas import AccidentStatus, AnalysisStage, FragmentCategory, Severity

# Use JSON for cross-database compatibility (works with both PostgreSQL and SQLite)
JSONB = JSON

Base = declarative_base()


class AccidentRow(Base):
    """Declared workplace accident"""
    __tablename__ = "accidents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    accident_number = Column(String(32), nullable=False, unique=True)
    date = Column(DateTime, nullable=False)
    time = Column(String(16), nullable=False)
    location = Column(String(255), nullable=False)
    establishment = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    severity = Column(Enum(Severity), nullable=True)
    victim_name = Column(String(255), nullable=True)
    victim_first_name = Column(String(255), nullable=True)
    victim_position = Column(String(255), nullable=True)
    is_anonymized = Column(Boolean, default=False, nullable=False)
    status = Column(Enum(AccidentStatus), default=AccidentStatus.DRAFT, nullable=False)
    stage = Column(Enum(AnalysisStage), default=AnalysisStage.DECLARED, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    witnesses = relationship("WitnessRow", back_populates="accident", cascade="all, delete-orphan")
    fragments = relationship("FragmentRow", back_populates="accident", cascade="all, delete-orphan")
    evidence = relationship("MaterialEvidenceRow", back_populates="accident", cascade="all, delete-orphan")
    cause_tree = relationship("CauseTreeRow", back_populates="accident", cascade="all, delete-orphan", uselist=False)

    __table_args__ = (
        Index("ix_accidents_status", "status"),
    )


class WitnessRow(Base):
    """Witness of an accident, with the raw testimony"""
    __tablename__ = "witnesses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    accident_id = Column(Integer, ForeignKey("accidents.id", ondelete="CASCADE"), nullable=False, index=True)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    position = Column(String(255), nullable=False)
    testimony = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    accident = relationship("AccidentRow", back_populates="witnesses")


class FragmentRow(Base):
    """Classified testimony fragment"""
    __tablename__ = "fragments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    accident_id = Column(Integer, ForeignKey("accidents.id", ondelete="CASCADE"), nullable=False, index=True)
    witness_id = Column(Integer, ForeignKey("witnesses.id", ondelete="SET NULL"), nullable=True)
    content = Column(Text, nullable=False)
    category = Column(Enum(FragmentCategory), default=FragmentCategory.OTHER, nullable=False)
    is_unusual = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    accident = relationship("AccidentRow", back_populates="fragments")


class MaterialEvidenceRow(Base):
    """Material evidence item"""
    __tablename__ = "material_evidence"

    id = Column(Integer, primary_key=True, autoincrement=True)
    accident_id = Column(Integer, ForeignKey("accidents.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    is_useful = Column(Boolean, default=False, nullable=False)
    file_name = Column(String(255), nullable=True)
    file_url = Column(String(1024), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    accident = relationship("AccidentRow", back_populates="evidence")


class CauseTreeRow(Base):
    """
    Cause tree of an accident.

    tree_data holds {"nodes": [...]} and preventive_measures the measure
    list, both in the JSON wire format. Saving replaces the whole row.
    """
    __tablename__ = "cause_trees"

    id = Column(Integer, primary_key=True, autoincrement=True)
    accident_id = Column(Integer, ForeignKey("accidents.id", ondelete="CASCADE"), nullable=False)
    tree_data = Column(JSONB, nullable=False, default=dict)
    preventive_measures = Column(JSONB, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    accident = relationship("AccidentRow", back_populates="cause_tree")

    __table_args__ = (
        UniqueConstraint("accident_id", name="uq_cause_tree_accident"),
    )
