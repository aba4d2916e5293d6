from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class LoanApplicationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


DECISION_STATUSES = frozenset({LoanApplicationStatus.APPROVED, LoanApplicationStatus.REJECTED})

# Keys a client may send but which only the server is allowed to set.
SERVER_CONTROLLED_FIELDS = frozenset(
    {
        "id",
        "_id",
        "status",
        "applied_at",
        "appliedAt",
        "decided_at",
        "decidedAt",
        "decided_by",
        "decidedBy",
        "decision_note",
        "decisionNote",
        "owner_email",
        "ownerEmail",
        "user_email",
        "userEmail",
    }
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class LoanApplicationCreate(_CamelModel):
    """Application form. Unknown keys are kept as part of the payload."""

    model_config = ConfigDict(extra="allow")

    loan_product_id: UUID | None = None
    amount: Decimal | None = Field(default=None, gt=0)
    purpose: str | None = Field(default=None, max_length=2000)

    def application_payload(self) -> dict[str, Any]:
        payload = {
            key: value
            for key, value in (self.model_extra or {}).items()
            if key not in SERVER_CONTROLLED_FIELDS
        }
        if self.amount is not None:
            payload["amount"] = str(self.amount)
        if self.purpose is not None:
            payload["purpose"] = self.purpose
        return payload


class LoanDecisionRequest(_CamelModel):
    status: LoanApplicationStatus
    note: str | None = Field(default=None, max_length=2000)

    @field_validator("status")
    @classmethod
    def _decision_only(cls, value: LoanApplicationStatus) -> LoanApplicationStatus:
        if value not in DECISION_STATUSES:
            raise ValueError("status must be 'approved' or 'rejected'")
        return value


class LoanApplicationDTO(_CamelModel):
    id: UUID
    owner_email: str
    loan_product_id: UUID | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    status: LoanApplicationStatus
    applied_at: datetime
    decided_at: datetime | None = None
    decided_by: str | None = None
    decision_note: str | None = None


class LoanApplicationListResponse(BaseModel):
    items: list[LoanApplicationDTO]
    total: int


class LoanApplicationWithdrawResponse(_CamelModel):
    id: UUID
    withdrawn: bool = True
