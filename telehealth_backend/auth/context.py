from dataclasses import dataclass

PATIENT_ROLE = 'individual'
THERAPIST_ROLE = 'therapist'
ADMIN_ROLE = 'admin'


@dataclass(frozen=True)
class AuthContext:
    """The already-verified caller of a request."""

    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE
