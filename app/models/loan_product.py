import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.db.base import Base


class LoanProduct(Base):
    __tablename__ = "loan_products"
    __table_args__ = (
        CheckConstraint("interest_rate IS NULL OR interest_rate >= 0", name="ck_loan_product_rate_nonneg"),
        CheckConstraint("max_limit IS NULL OR max_limit >= 0", name="ck_loan_product_limit_nonneg"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True, index=True)
    interest_rate = Column(Numeric(10, 4), nullable=True)
    max_limit = Column(Numeric(18, 2), nullable=True)
    image_url = Column(String(1024), nullable=True)
    terms = Column(JSONB, nullable=False, default=dict)
    # Operator marker on the product itself; unrelated to application decisions.
    approved = Column(Boolean, nullable=False, default=False, server_default="false")
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
