# backend/therapy_booking/repositories/user_repository.py
"""
UserRepository - read access to collaborator records.

Users, therapists, patients and guardian links are owned elsewhere; the
booking engine only looks them up.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.enums import RoleName
from ..models.user import Patient, PatientGuardian, Therapist, User
from .base_repository import BaseRepository


class UserRepository(BaseRepository[User]):
    def __init__(self, db: Session):
        super().__init__(db, User)

    def get_admin_ids(self) -> List[str]:
        rows = self.db.query(User.id).filter(User.role == RoleName.ADMIN.value).all()
        return [row[0] for row in rows]

    def get_therapist(self, therapist_id: str) -> Optional[Therapist]:
        return self.db.get(Therapist, therapist_id)

    def get_patient(self, patient_id: str) -> Optional[Patient]:
        return self.db.get(Patient, patient_id)

    def get_patient_by_user_id(self, user_id: str) -> Optional[Patient]:
        return self.db.query(Patient).filter(Patient.user_id == user_id).first()

    def is_guardian(self, user_id: str, patient_id: str) -> bool:
        return (
            self.db.query(PatientGuardian.id)
            .filter(PatientGuardian.user_id == user_id, PatientGuardian.patient_id == patient_id)
            .first()
            is not None
        )

    def get_guardian_user_ids(self, patient_id: str) -> List[str]:
        rows = (
            self.db.query(PatientGuardian.user_id)
            .filter(PatientGuardian.patient_id == patient_id)
            .all()
        )
        return [row[0] for row in rows]
