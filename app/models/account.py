import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import validates

from app.db.base import Base


ACCOUNT_ROLES = ("borrower", "manager", "admin")


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("email", name="uq_accounts_email"),
        CheckConstraint(
            "role IN ('borrower', 'manager', 'admin')",
            name="ck_accounts_role",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="borrower", server_default="borrower")
    name = Column(String(255), nullable=True)
    photo_url = Column(String(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    @validates("role")
    def _validate_role(self, key, value):
        value = getattr(value, "value", value)
        if value not in ACCOUNT_ROLES:
            raise ValueError(f"Unknown role: {value!r}")
        return value
