"""Auth schemas: the caller identity resolved from the bearer token."""

import uuid

from pydantic import BaseModel, field_validator


class Identity(BaseModel):
    """Caller identity. Either field may be absent; both absent means anonymous."""

    user_id: uuid.UUID | None = None
    email: str | None = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().lower()
        return v or None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None and self.email is None
