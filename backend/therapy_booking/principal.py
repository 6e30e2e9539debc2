"""Principal abstraction for authenticated callers."""

from __future__ import annotations

from dataclasses import dataclass

from .core.enums import RoleName


@dataclass(frozen=True)
class UserPrincipal:
    """An authenticated user and the role they act in."""

    user_id: str
    role: RoleName

    @property
    def id(self) -> str:
        return self.user_id

    @property
    def is_admin(self) -> bool:
        return self.role == RoleName.ADMIN

    @property
    def is_therapist(self) -> bool:
        return self.role == RoleName.THERAPIST

    @property
    def is_guardian(self) -> bool:
        return self.role == RoleName.PARENT

    @property
    def is_patient(self) -> bool:
        return self.role == RoleName.PATIENT
