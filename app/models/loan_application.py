import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import validates

from app.db.base import Base


APPLICATION_STATUSES = ("pending", "approved", "rejected")


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_loan_app_status",
        ),
        CheckConstraint(
            "(status = 'pending') = (decided_at IS NULL)",
            name="ck_loan_app_decided_at",
        ),
        Index("ix_loan_app_owner_applied", "owner_email", "applied_at"),
        Index("ix_loan_app_status_applied", "status", "applied_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_email = Column(String(255), nullable=False)
    loan_product_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_products.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    payload = Column(JSONB, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default="pending")
    applied_at = Column(DateTime(timezone=True), nullable=False)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    decided_by = Column(String(255), nullable=True)
    decision_note = Column(Text, nullable=True)

    @validates("status")
    def _validate_status(self, key, value):
        value = getattr(value, "value", value)
        if value not in APPLICATION_STATUSES:
            raise ValueError(f"Unknown loan application status: {value!r}")
        return value
