"""
AuthUser Model.

The reconciled record combining the identity-provider subject with the
fields stored by the Profile Store.  The Profile Store speaks camelCase
JSON (``referralCode``, ``createdAt``); the model accepts either the
wire aliases or the Python field names.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from portal_auth.models.enums import UserRole


class AuthUser(BaseModel):
    """Represents a provisioned member profile.

    ``id`` is the identity-provider subject id and doubles as the
    primary key of the Profile Store row.  Instances are immutable so
    the current-user slot can only ever be replaced, never patched.
    """

    id: str
    email: str
    name: str
    role: UserRole
    referral_code: Optional[str] = Field(default=None, alias="referralCode")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    @field_validator("role", mode="before")
    @classmethod
    def _casefold_role(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    def to_wire(self) -> dict[str, Any]:
        """Serialise with the Profile Store's camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
