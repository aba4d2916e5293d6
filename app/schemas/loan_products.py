from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class LoanProductCreate(_CamelModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    category: str | None = Field(default=None, max_length=100)
    interest_rate: Decimal | None = Field(default=None, ge=0)
    max_limit: Decimal | None = Field(default=None, ge=0)
    image_url: str | None = Field(default=None, max_length=1024)
    terms: dict[str, Any] = Field(default_factory=dict)


class LoanProductUpdate(_CamelModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    category: str | None = Field(default=None, max_length=100)
    interest_rate: Decimal | None = Field(default=None, ge=0)
    max_limit: Decimal | None = Field(default=None, ge=0)
    image_url: str | None = Field(default=None, max_length=1024)
    terms: dict[str, Any] | None = None


class LoanProductDTO(_CamelModel):
    id: UUID
    title: str
    description: str | None = None
    category: str | None = None
    interest_rate: Decimal | None = None
    max_limit: Decimal | None = None
    image_url: str | None = None
    terms: dict[str, Any] = Field(default_factory=dict)
    approved: bool = False
    approved_at: datetime | None = None
    created_at: datetime | None = None

    @field_serializer("interest_rate", "max_limit")
    def _decimal_as_str(self, value: Decimal | None) -> str | None:
        return str(value) if value is not None else None


class LoanProductListResponse(BaseModel):
    items: list[LoanProductDTO]
    total: int
