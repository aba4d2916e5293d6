"""Account registry: email → account record.

Pure data operations. Authorization of the callers (for example who may
elevate whom) happens in the route dependencies, never here.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Forbidden, InvalidTransition, NotFound
from app.core.security import normalize_email
from app.models.account import Account
from app.schemas.users import AccountCreate, Role
from app.services.audit import record_audit_log

logger = logging.getLogger(__name__)


def parse_account_id(value: str | UUID) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise NotFound("Account not found") from exc


async def get_by_email(db: AsyncSession, email: str) -> Account | None:
    stmt = select(Account).where(Account.email == normalize_email(email))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_by_id(db: AsyncSession, account_id: str | UUID) -> Account | None:
    stmt = select(Account).where(Account.id == parse_account_id(account_id))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def register(
    db: AsyncSession,
    payload: AccountCreate,
    *,
    allow_elevated_role: bool = True,
) -> tuple[Account, bool]:
    """Create the account, or return the stored one unchanged if the email exists.

    The requested role only matters when the account is created; with
    ``allow_elevated_role`` off, anything but borrower is refused.

    Returns ``(account, created)``.
    """
    email = normalize_email(payload.email)
    existing = await get_by_email(db, email)
    if existing is not None:
        return existing, False

    role = payload.role or Role.BORROWER
    if role is not Role.BORROWER and not allow_elevated_role:
        raise Forbidden("Accounts can only self-register as borrowers")
    account = Account(
        email=email,
        role=role.value,
        name=payload.name,
        photo_url=payload.photo_url,
    )
    db.add(account)
    try:
        await db.flush()
    except IntegrityError:
        # Lost a race with a concurrent registration of the same email.
        await db.rollback()
        existing = await get_by_email(db, email)
        if existing is None:
            raise
        return existing, False

    record_audit_log(
        db,
        actor_email=email,
        action="account.registered",
        resource_type="account",
        resource_id=str(account.id),
        new_value={"email": email, "role": account.role},
    )
    await db.commit()
    await db.refresh(account)
    logger.info("Registered account %s with role %s", email, account.role)
    return account, True


async def role_of(db: AsyncSession, email: str) -> Role:
    account = await get_by_email(db, email)
    if account is None:
        raise NotFound("Account not found")
    return Role(account.role)


async def count_admins(db: AsyncSession) -> int:
    stmt = select(func.count()).select_from(Account).where(Account.role == Role.ADMIN.value)
    return int((await db.execute(stmt)).scalar_one() or 0)


async def elevate(
    db: AsyncSession,
    account_id: str | UUID,
    new_role: Role,
    *,
    actor_email: str | None = None,
) -> Account:
    """Overwrite the account's role. Repeating the same elevation is a no-op."""
    account = await get_by_id(db, account_id)
    if account is None:
        raise NotFound("Account not found")
    old_role = account.role
    if old_role == new_role.value:
        return account
    if old_role == Role.ADMIN.value and await count_admins(db) <= 1:
        logger.warning("Refused to change the role of the last admin %s", account.email)
        raise InvalidTransition(
            "The last admin account cannot be demoted",
            details={"role": old_role},
        )

    account.role = new_role.value
    db.add(account)
    record_audit_log(
        db,
        actor_email=actor_email,
        action="account.role_changed",
        resource_type="account",
        resource_id=str(account.id),
        old_value={"role": old_role},
        new_value={"role": account.role},
    )
    await db.commit()
    await db.refresh(account)
    logger.info("Role of %s changed from %s to %s", account.email, old_role, account.role)
    return account


async def list_accounts(db: AsyncSession, *, limit: int, offset: int) -> tuple[list[Account], int]:
    count_result = await db.execute(select(func.count()).select_from(Account))
    total = int(count_result.scalar_one() or 0)
    stmt = select(Account).order_by(Account.created_at.desc()).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return list(result.scalars().all()), total
