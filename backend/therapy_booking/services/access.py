# backend/therapy_booking/services/access.py
"""
Ownership checks shared by the booking services.

Every check runs before any mutation and raises Forbidden or NotFound.
"""

import logging
from typing import Optional

from ..core.exceptions import ForbiddenException, NotFoundException, ValidationException
from ..models.session import TherapySession
from ..models.user import Patient, Therapist
from ..principal import UserPrincipal
from ..repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


class AccessPolicy:
    def __init__(self, users: UserRepository):
        self.users = users

    def resolve_patient(self, principal: UserPrincipal, patient_id: Optional[str]) -> Patient:
        """
        The patient a caller books or pays for.

        Patients act for themselves; guardians and admins name the patient.
        """
        if principal.is_therapist:
            raise ForbiddenException("Therapists cannot book sessions for patients")

        if principal.is_patient:
            patient = self.users.get_patient_by_user_id(principal.user_id)
            if patient is None:
                raise NotFoundException("Patient profile not found")
            if patient_id and patient_id != patient.id:
                raise ForbiddenException("You can only book sessions for yourself")
            return patient

        if not patient_id:
            raise ValidationException("patient_id is required", details={"field": "patient_id"})
        patient = self.users.get_patient(patient_id)
        if patient is None:
            raise NotFoundException("Patient not found")
        if not self.can_act_for_patient(principal, patient):
            raise ForbiddenException("You are not a guardian of this patient")
        return patient

    def can_act_for_patient(self, principal: UserPrincipal, patient: Patient) -> bool:
        if principal.is_admin:
            return True
        if principal.is_patient:
            return patient.user_id == principal.user_id
        if principal.is_guardian:
            return self.users.is_guardian(principal.user_id, patient.id)
        return False

    def is_session_therapist(self, principal: UserPrincipal, session: TherapySession) -> bool:
        if not principal.is_therapist:
            return False
        therapist = self.users.get_therapist(session.therapist_id)
        return therapist is not None and therapist.user_id == principal.user_id

    def ensure_session_access(self, principal: UserPrincipal, session: TherapySession) -> None:
        """Patient side, the session's therapist, or an admin."""
        if self.is_session_therapist(principal, session):
            return
        patient = self.users.get_patient(session.patient_id)
        if patient is not None and self.can_act_for_patient(principal, patient):
            return
        raise ForbiddenException("You do not have access to this session")

    def ensure_therapist_or_admin(self, principal: UserPrincipal, session: TherapySession) -> None:
        if principal.is_admin or self.is_session_therapist(principal, session):
            return
        raise ForbiddenException("Only the session's therapist can do this")

    def ensure_manages_therapist(self, principal: UserPrincipal, therapist: Therapist) -> None:
        if principal.is_admin:
            return
        if principal.is_therapist and therapist.user_id == principal.user_id:
            return
        raise ForbiddenException("You can only manage your own availability")

    def patient_user_ids(self, patient_id: str) -> list:
        """Users to notify on the patient side: the patient login and guardians."""
        patient = self.users.get_patient(patient_id)
        receivers = []
        if patient is not None and patient.user_id:
            receivers.append(patient.user_id)
        for guardian_id in self.users.get_guardian_user_ids(patient_id):
            if guardian_id not in receivers:
                receivers.append(guardian_id)
        return receivers
