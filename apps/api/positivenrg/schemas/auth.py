"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel

from positivenrg.db.enums import Role


class TokenPayload(BaseModel):
    """Decoded JWT payload structure."""
    sub: UUID  # user_id
    role: str
    token_version: int


class Actor(BaseModel):
    """
    Authenticated caller for a request.

    Returned by the get_current_actor dependency and passed into every
    service call that needs an authorization decision.
    """
    user_id: UUID
    role: Role
    email: str
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
