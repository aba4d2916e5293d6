from __future__ import annotations

import logging
from typing import Iterable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import context
from app.core.errors import Forbidden, Unauthenticated
from app.core.security import IdentityVerifier, VerifiedIdentity
from app.core.settings import settings
from app.db.session import get_db
from app.models.account import Account
from app.schemas.users import Role
from app.services import accounts

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False, description="Identity provider ID token")


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


def get_identity_verifier(request: Request) -> IdentityVerifier:
    verifier = getattr(request.app.state, "identity_verifier", None)
    if verifier is None:
        raise RuntimeError("Identity verifier has not been initialised")
    return verifier


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> VerifiedIdentity:
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Missing authentication token")
    identity = await verifier.verify(credentials.credentials)
    context.set_caller(identity.email)
    return identity


async def get_current_account(
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> Account | None:
    """The caller's account, if one has been registered."""
    return await accounts.get_by_email(db, identity.email)


class RoleGate:
    """Admit a verified identity whose account role is one of ``roles``.

    Strict set membership: no role implies another. A caller without an
    account is refused the same way as one with the wrong role.
    """

    def __init__(self, roles: Iterable[Role | str]) -> None:
        self.roles = frozenset(getattr(role, "value", role) for role in roles)

    async def check(self, db: AsyncSession, identity: VerifiedIdentity) -> Account:
        account = await accounts.get_by_email(db, identity.email)
        if account is None or account.role not in self.roles:
            logger.warning(
                "Role gate denied: caller=%s role=%s required=%s",
                identity.email,
                account.role if account is not None else None,
                sorted(self.roles),
            )
            raise Forbidden("Insufficient permissions")
        return account


def require_roles(*roles: Role | str, setting: str | None = None):
    """Dependency factory restricting a route to the given roles.

    With ``setting``, the allowed roles are read from that settings field on
    every request instead of being fixed at declaration time.

    Usage:
        @router.get("/pending")
        async def pending(account: Account = Depends(require_roles(setting="loan_decision_roles"))):
    """
    if not roles and setting is None:
        raise ValueError("require_roles needs at least one role or a settings field")

    async def dependency(
        identity: VerifiedIdentity = Depends(get_current_identity),
        db: AsyncSession = Depends(get_db_session),
    ) -> Account:
        allowed = getattr(settings, setting) if setting else roles
        return await RoleGate(allowed).check(db, identity)

    return dependency
