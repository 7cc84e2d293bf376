"""
User Models

A user is referenced everywhere else by id only (group members, expense
payee/payers, change-log actors and visibility). Display names are
resolved by lookup at read time.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from splitledger.validation import new_id


class UserRole(str, Enum):
    """Account role."""
    NORMAL = "user"
    PRIVILEGED = "admin"


class User(BaseModel):
    """
    A registered account.

    The password hash never leaves the user store; use to_public_dict()
    for anything shown to other users or written to logs.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_id,
        description="Canonical user identifier"
    )
    first_name: str = Field(..., min_length=1, max_length=20)
    last_name: str = Field(..., min_length=1, max_length=20)
    user_id: str = Field(
        ...,
        description="Unique login handle (lower-case)"
    )
    password_hash: str = Field(..., repr=False)
    role: UserRole = Field(default=UserRole.NORMAL)
    signup_date: datetime = Field(default_factory=datetime.utcnow)
    last_login: datetime = Field(default_factory=datetime.utcnow)
    pinned_groups: list[str] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        """Name shown to other users ("first last")."""
        return f"{self.first_name} {self.last_name}"

    def to_public_dict(self) -> dict[str, Any]:
        """All fields except the password hash."""
        data = self.model_dump(mode="json", exclude={"password_hash"})
        data["display_name"] = self.display_name
        return data
