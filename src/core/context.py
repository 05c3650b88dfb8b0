"""Authentication context model for typed user authentication."""

from dataclasses import dataclass


@dataclass
class AuthenticatedUserContext:
    """Identity of the caller, taken from the verified bearer token."""

    user_id: str
    email: str | None = None

    def __post_init__(self):
        if not self.user_id:
            raise ValueError("User id is required in authentication context")
