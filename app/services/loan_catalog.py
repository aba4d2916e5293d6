from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound
from app.models.loan_product import LoanProduct
from app.schemas.loan_products import LoanProductCreate, LoanProductUpdate
from app.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = frozenset({"title", "terms"})


def parse_product_id(value: str | UUID) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise NotFound("Loan product not found") from exc


async def list_products(
    db: AsyncSession,
    *,
    category: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[LoanProduct], int]:
    conditions = []
    if category:
        conditions.append(LoanProduct.category == category)
    count_stmt = select(func.count()).select_from(LoanProduct).where(*conditions)
    total = int((await db.execute(count_stmt)).scalar_one() or 0)
    stmt = (
        select(LoanProduct)
        .where(*conditions)
        .order_by(LoanProduct.created_at.desc(), LoanProduct.id.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), total


async def latest(db: AsyncSession, n: int) -> list[LoanProduct]:
    stmt = select(LoanProduct).order_by(LoanProduct.created_at.desc(), LoanProduct.id.desc()).limit(n)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_product(db: AsyncSession, product_id: str | UUID) -> LoanProduct:
    stmt = select(LoanProduct).where(LoanProduct.id == parse_product_id(product_id))
    result = await db.execute(stmt)
    product = result.scalar_one_or_none()
    if product is None:
        raise NotFound("Loan product not found")
    return product


async def create_product(db: AsyncSession, payload: LoanProductCreate, *, actor_email: str) -> LoanProduct:
    product = LoanProduct(**payload.model_dump(), approved=False, created_by=actor_email)
    db.add(product)
    await db.flush()
    record_audit_log(
        db,
        actor_email=actor_email,
        action="loan_product.created",
        resource_type="loan_product",
        resource_id=str(product.id),
        new_value=model_snapshot(product),
    )
    await db.commit()
    await db.refresh(product)
    return product


async def update_product(
    db: AsyncSession,
    product_id: str | UUID,
    payload: LoanProductUpdate,
    *,
    actor_email: str,
) -> LoanProduct:
    product = await get_product(db, product_id)
    old_snapshot = model_snapshot(product)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None and field in _REQUIRED_FIELDS:
            continue
        setattr(product, field, value)
    db.add(product)
    record_audit_log(
        db,
        actor_email=actor_email,
        action="loan_product.updated",
        resource_type="loan_product",
        resource_id=str(product.id),
        old_value=old_snapshot,
        new_value=model_snapshot(product),
    )
    await db.commit()
    await db.refresh(product)
    return product


async def approve_product(db: AsyncSession, product_id: str | UUID, *, actor_email: str) -> LoanProduct:
    """Set the operator approval marker on a catalog product."""
    product = await get_product(db, product_id)
    if product.approved:
        return product
    product.approved = True
    product.approved_at = datetime.now(timezone.utc)
    db.add(product)
    record_audit_log(
        db,
        actor_email=actor_email,
        action="loan_product.approved",
        resource_type="loan_product",
        resource_id=str(product.id),
        old_value={"approved": False},
        new_value={"approved": True, "approved_at": product.approved_at},
    )
    await db.commit()
    await db.refresh(product)
    logger.info("Loan product %s approved by %s", product.id, actor_email)
    return product
