"""Ownership scoping for loan application queries.

Borrowers only ever see rows whose ``owner_email`` matches their verified
email, whatever the client asked for. The single exception is the
pending-queue path for decision roles, which passes ``global_view=True``
after the role gate has admitted the caller.
"""

from __future__ import annotations

from sqlalchemy.sql import Select

from app.core.errors import Forbidden
from app.core.security import VerifiedIdentity
from app.models.loan_application import LoanApplication


def scope(stmt: Select, identity: VerifiedIdentity, *, global_view: bool = False) -> Select:
    if global_view:
        return stmt
    return stmt.where(LoanApplication.owner_email == identity.email)


def is_owner(identity: VerifiedIdentity, application: LoanApplication) -> bool:
    return application.owner_email == identity.email


def assert_owner(identity: VerifiedIdentity, application: LoanApplication) -> None:
    if not is_owner(identity, application):
        raise Forbidden("You do not own this loan application")
