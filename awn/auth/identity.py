from dataclasses import dataclass

PATIENT_ROLE = "patient"
THERAPIST_ROLE = "therapist"


@dataclass(frozen=True)
class CurrentUser:
    """The authenticated caller as resolved from a bearer token."""

    id: int
    email: str
    role: str = PATIENT_ROLE
    therapist_id: int | None = None

    @property
    def is_therapist(self) -> bool:
        return self.role == THERAPIST_ROLE

    @property
    def normalized_email(self) -> str | None:
        if not self.email:
            return None
        return self.email.strip().lower() or None
