from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    BORROWER = "borrower"
    MANAGER = "manager"
    ADMIN = "admin"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class AccountCreate(_CamelModel):
    email: EmailStr
    role: Role | None = None
    name: str | None = Field(default=None, max_length=255)
    photo_url: str | None = Field(default=None, max_length=1024)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.strip().lower()


class AccountDTO(_CamelModel):
    id: UUID
    email: EmailStr
    role: Role
    name: str | None = None
    photo_url: str | None = None
    created_at: datetime | None = None


class AccountRegistrationResponse(_CamelModel):
    created: bool
    message: str
    account: AccountDTO


class AccountListResponse(BaseModel):
    items: list[AccountDTO]
    total: int


class RoleLookupResponse(_CamelModel):
    email: EmailStr
    role: Role
