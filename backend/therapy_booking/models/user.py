# backend/therapy_booking/models/user.py
"""
Collaborator records the booking engine reads.

Users, therapist and patient profiles, and the guardian links between
parents and patients are owned by the wider practice application. The
booking engine only reads them to resolve principals and rates.
"""

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import RoleName
from ..database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=RoleName.PATIENT)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    therapist_profile = relationship("Therapist", back_populates="user", uselist=False)

    @property
    def is_admin(self) -> bool:
        return self.role == RoleName.ADMIN

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class Therapist(Base):
    """Therapist profile. ``session_rate`` is the price of one paid session."""

    __tablename__ = "therapists"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    user_id = Column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    session_rate = Column(Numeric(10, 2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="therapist_profile")
    availability_rules = relationship(
        "AvailabilityRule", back_populates="therapist", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Therapist {self.id} rate={self.session_rate}>"


class Patient(Base):
    __tablename__ = "patients"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    # Set when the patient has their own login.
    user_id = Column(String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    primary_therapist_id = Column(
        String(26), ForeignKey("therapists.id", ondelete="SET NULL"), nullable=True
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", foreign_keys=[user_id])
    guardians = relationship("PatientGuardian", back_populates="patient", cascade="all, delete-orphan")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Patient {self.id} {self.full_name}>"


class PatientGuardian(Base):
    """Links a parent or guardian user to a patient they may act for."""

    __tablename__ = "patient_guardians"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    patient_id = Column(String(26), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    patient = relationship("Patient", back_populates="guardians")

    __table_args__ = (
        UniqueConstraint("patient_id", "user_id", name="uq_patient_guardians_patient_user"),
    )
