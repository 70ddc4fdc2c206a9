"""
Pydantic view-models for user accounts
Field constraints mirror the deployed application's account API
"""

import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

LOGIN_REGEX = re.compile(
    r"^(?:[a-zA-Z0-9!$&*+=?^_`{|}~.-]+@[a-zA-Z0-9-]+(?:\.[a-zA-Z0-9-]+)*"
    r"|[_.@A-Za-z0-9-]+)$"
)

# Same shape the bean-validation @Email constraint accepts: no TLD required
EMAIL_REGEX = re.compile(
    r"^[a-zA-Z0-9!#$%&'*+/=?^_`{|}~-]+(?:\.[a-zA-Z0-9!#$%&'*+/=?^_`{|}~-]+)*"
    r"@(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?\.)*"
    r"[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?$"
)

LOGIN_MIN_LENGTH = 1
LOGIN_MAX_LENGTH = 50


class _AccountModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class UserDTO(_AccountModel):
    """Public view of a user, carrying only identity fields"""

    id: Optional[int] = None
    login: Optional[str] = None

    @classmethod
    def from_user(cls, user) -> "UserDTO":
        return cls(id=user.id, login=user.login)

    def __eq__(self, other):
        if not isinstance(other, UserDTO):
            return NotImplemented
        return self.id == other.id and self.login == other.login

    def __hash__(self):
        return hash((self.id, self.login))

    def __str__(self):
        return f"UserDTO{{id='{self.id}', login='{self.login}'}}"


class AdminUserDTO(_AccountModel):
    """User view with every field an administrator can manage"""

    id: Optional[int] = None
    login: str = Field(..., min_length=LOGIN_MIN_LENGTH, max_length=LOGIN_MAX_LENGTH)
    first_name: Optional[str] = Field(None, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)
    email: Optional[str] = Field(None, min_length=5, max_length=254)
    image_url: Optional[str] = Field(None, max_length=256)
    activated: bool = False
    lang_key: Optional[str] = Field(None, min_length=2, max_length=10)
    created_by: Optional[str] = None
    created_date: Optional[datetime] = None
    last_modified_by: Optional[str] = None
    last_modified_date: Optional[datetime] = None
    authorities: List[str] = Field(default_factory=list)

    @field_validator("login")
    @classmethod
    def login_pattern(cls, v):
        if not v.strip():
            raise ValueError("must not be blank")
        if not LOGIN_REGEX.match(v):
            raise ValueError("must be a plain login or an email-shaped login")
        return v

    @field_validator("email")
    @classmethod
    def email_shape(cls, v):
        if v is not None and not EMAIL_REGEX.match(v):
            raise ValueError("must be a well-formed email address")
        return v

    @classmethod
    def from_user(cls, user) -> "AdminUserDTO":
        return cls(
            id=user.id,
            login=user.login,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            image_url=user.image_url,
            activated=bool(user.activated),
            lang_key=user.lang_key,
            created_by=user.created_by,
            created_date=user.created_date,
            last_modified_by=user.last_modified_by,
            last_modified_date=user.last_modified_date,
            authorities=sorted(user.authorities or []),
        )


class PasswordChangeDTO(_AccountModel):
    """Password change request; neither field is constrained"""

    current_password: Optional[str] = None
    new_password: Optional[str] = None

    def __repr__(self):
        # Never print the passwords themselves
        return "PasswordChangeDTO(current_password='***', new_password='***')"
