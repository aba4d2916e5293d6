"""Loan application lifecycle.

pending --decide--> approved | rejected   (terminal)
pending --withdraw--> deleted             (owner only)

State changes are issued as single conditional statements so two concurrent
requests can never both move the same application out of ``pending``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidTransition, NotFound, ValidationFailed
from app.core.security import VerifiedIdentity
from app.core.settings import settings
from app.models.account import Account
from app.models.loan_application import LoanApplication
from app.schemas.loan import DECISION_STATUSES, LoanApplicationCreate, LoanApplicationStatus
from app.services import loan_catalog, ownership
from app.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

PENDING = LoanApplicationStatus.PENDING.value


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parse_application_id(value: str | UUID) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise NotFound("Loan application not found") from exc


async def get_application(db: AsyncSession, application_id: str | UUID) -> LoanApplication | None:
    stmt = select(LoanApplication).where(LoanApplication.id == parse_application_id(application_id))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _get_or_404(db: AsyncSession, application_id: str | UUID) -> LoanApplication:
    application = await get_application(db, application_id)
    if application is None:
        raise NotFound("Loan application not found")
    return application


def can_decide(account: Account | None) -> bool:
    return account is not None and account.role in settings.loan_decision_roles


async def submit(
    db: AsyncSession,
    identity: VerifiedIdentity,
    data: LoanApplicationCreate,
) -> LoanApplication:
    if data.loan_product_id is not None:
        await loan_catalog.get_product(db, data.loan_product_id)

    application = LoanApplication(
        owner_email=identity.email,
        loan_product_id=data.loan_product_id,
        payload=data.application_payload(),
        status=PENDING,
        applied_at=_now(),
    )
    db.add(application)
    await db.flush()
    record_audit_log(
        db,
        actor_email=identity.email,
        action="loan_application.submitted",
        resource_type="loan_application",
        resource_id=str(application.id),
        new_value=model_snapshot(application),
    )
    await db.commit()
    await db.refresh(application)
    logger.info("Loan application %s submitted", application.id)
    return application


async def decide(
    db: AsyncSession,
    application_id: str | UUID,
    target: LoanApplicationStatus | str,
    *,
    actor_email: str,
    note: str | None = None,
) -> LoanApplication:
    try:
        target = LoanApplicationStatus(target)
    except ValueError as exc:
        raise ValidationFailed(f"Unknown status: {target!r}") from exc
    if target not in DECISION_STATUSES:
        raise ValidationFailed("status must be 'approved' or 'rejected'")

    app_id = parse_application_id(application_id)
    stmt = (
        update(LoanApplication)
        .where(LoanApplication.id == app_id, LoanApplication.status == PENDING)
        .values(
            status=target.value,
            decided_at=_now(),
            decided_by=actor_email,
            decision_note=note,
        )
        .returning(LoanApplication)
    )
    result = await db.execute(stmt)
    application = result.scalar_one_or_none()

    if application is None:
        await db.rollback()
        current = await get_application(db, app_id)
        if current is None:
            raise NotFound("Loan application not found")
        raise InvalidTransition(
            f"Loan application is already {current.status}",
            details={"status": current.status},
        )

    record_audit_log(
        db,
        actor_email=actor_email,
        action=f"loan_application.{target.value}",
        resource_type="loan_application",
        resource_id=str(application.id),
        old_value={"status": PENDING},
        new_value={
            "status": application.status,
            "decided_at": application.decided_at,
            "decision_note": note,
        },
    )
    await db.commit()
    logger.info("Loan application %s %s by %s", application.id, target.value, actor_email)
    return application


async def withdraw(
    db: AsyncSession,
    identity: VerifiedIdentity,
    application_id: str | UUID,
) -> UUID:
    application = await _get_or_404(db, application_id)
    ownership.assert_owner(identity, application)
    if application.status != PENDING:
        raise InvalidTransition(
            "Only pending loan applications can be withdrawn",
            details={"status": application.status},
        )

    snapshot = model_snapshot(application)
    stmt = delete(LoanApplication).where(
        LoanApplication.id == application.id,
        LoanApplication.owner_email == identity.email,
        LoanApplication.status == PENDING,
    )
    result = await db.execute(stmt)
    if not result.rowcount:
        # Decided or deleted between the read and the delete.
        await db.rollback()
        current = await get_application(db, application.id)
        if current is None:
            raise NotFound("Loan application not found")
        raise InvalidTransition(
            "Only pending loan applications can be withdrawn",
            details={"status": current.status},
        )

    record_audit_log(
        db,
        actor_email=identity.email,
        action="loan_application.withdrawn",
        resource_type="loan_application",
        resource_id=str(application.id),
        old_value=snapshot,
    )
    await db.commit()
    logger.info("Loan application %s withdrawn", application.id)
    return application.id


async def _list(db: AsyncSession, stmt, *, limit: int, offset: int) -> tuple[list[LoanApplication], int]:
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = int((await db.execute(count_stmt)).scalar_one() or 0)
    page = (
        stmt.order_by(LoanApplication.applied_at.desc(), LoanApplication.id.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await db.execute(page)
    return list(result.scalars().all()), total


async def list_mine(
    db: AsyncSession,
    identity: VerifiedIdentity,
    *,
    status: LoanApplicationStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[LoanApplication], int]:
    stmt = ownership.scope(select(LoanApplication), identity)
    if status is not None:
        stmt = stmt.where(LoanApplication.status == status.value)
    return await _list(db, stmt, limit=limit, offset=offset)


async def list_pending(
    db: AsyncSession,
    identity: VerifiedIdentity,
    *,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[LoanApplication], int]:
    stmt = ownership.scope(select(LoanApplication), identity, global_view=True)
    stmt = stmt.where(LoanApplication.status == PENDING)
    return await _list(db, stmt, limit=limit, offset=offset)


async def get_for_caller(
    db: AsyncSession,
    identity: VerifiedIdentity,
    account: Account | None,
    application_id: str | UUID,
) -> LoanApplication:
    application = await _get_or_404(db, application_id)
    if not can_decide(account):
        ownership.assert_owner(identity, application)
    return application
