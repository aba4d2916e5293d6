from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import NotFound
from app.core.security import VerifiedIdentity
from app.core.settings import settings
from app.models.account import Account
from app.schemas.users import (
    AccountCreate,
    AccountDTO,
    AccountListResponse,
    AccountRegistrationResponse,
    Role,
    RoleLookupResponse,
)
from app.services import accounts

router = APIRouter(prefix="/users", tags=["users"])


@router.post(
    "",
    response_model=AccountRegistrationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register an account (idempotent by email)",
)
async def register_account(
    payload: AccountCreate,
    response: Response,
    db: AsyncSession = Depends(deps.get_db_session),
) -> AccountRegistrationResponse:
    account, created = await accounts.register(
        db, payload, allow_elevated_role=settings.allow_self_assigned_roles
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return AccountRegistrationResponse(
        created=created,
        message="Account created" if created else "Account already exists",
        account=AccountDTO.model_validate(account),
    )


@router.get("", response_model=AccountListResponse, summary="List all accounts")
async def list_accounts(
    _: Account = Depends(deps.require_roles(setting="account_list_roles")),
    db: AsyncSession = Depends(deps.get_db_session),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> AccountListResponse:
    items, total = await accounts.list_accounts(db, limit=limit, offset=offset)
    return AccountListResponse(
        items=[AccountDTO.model_validate(item) for item in items],
        total=total,
    )


@router.get("/me", response_model=AccountDTO, summary="The caller's own account")
async def read_own_account(
    account: Account | None = Depends(deps.get_current_account),
) -> AccountDTO:
    if account is None:
        raise NotFound("Account not found")
    return AccountDTO.model_validate(account)


@router.get("/role/{email}", response_model=RoleLookupResponse, summary="Look up an account's role")
async def read_role(
    email: str,
    db: AsyncSession = Depends(deps.get_db_session),
) -> RoleLookupResponse:
    role = await accounts.role_of(db, email)
    return RoleLookupResponse(email=email.strip().lower(), role=role)


@router.patch(
    "/make-manager/{account_id}",
    response_model=AccountDTO,
    summary="Elevate an account to manager",
)
async def make_manager(
    account_id: str,
    identity: VerifiedIdentity = Depends(deps.get_current_identity),
    _: Account = Depends(deps.require_roles(setting="role_elevation_roles")),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AccountDTO:
    account = await accounts.elevate(db, account_id, Role.MANAGER, actor_email=identity.email)
    return AccountDTO.model_validate(account)
