from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.security import VerifiedIdentity
from app.models.account import Account
from app.schemas.loan import (
    LoanApplicationCreate,
    LoanApplicationDTO,
    LoanApplicationListResponse,
    LoanApplicationStatus,
    LoanApplicationWithdrawResponse,
    LoanDecisionRequest,
)
from app.services import loan_applications

router = APIRouter(prefix="/loan-applications", tags=["loan-applications"])

_decision_roles = deps.require_roles(setting="loan_decision_roles")


@router.post(
    "",
    response_model=LoanApplicationDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Apply for a loan",
)
async def submit_loan_application(
    payload: LoanApplicationCreate,
    identity: VerifiedIdentity = Depends(deps.get_current_identity),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationDTO:
    application = await loan_applications.submit(db, identity, payload)
    return LoanApplicationDTO.model_validate(application)


@router.get(
    "/mine",
    response_model=LoanApplicationListResponse,
    summary="List the caller's loan applications, newest first",
)
async def list_my_loan_applications(
    identity: VerifiedIdentity = Depends(deps.get_current_identity),
    db: AsyncSession = Depends(deps.get_db_session),
    status_filter: LoanApplicationStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> LoanApplicationListResponse:
    items, total = await loan_applications.list_mine(
        db, identity, status=status_filter, limit=limit, offset=offset
    )
    return LoanApplicationListResponse(
        items=[LoanApplicationDTO.model_validate(item) for item in items],
        total=total,
    )


@router.get(
    "/pending",
    response_model=LoanApplicationListResponse,
    summary="List every pending loan application, newest first",
)
async def list_pending_loan_applications(
    identity: VerifiedIdentity = Depends(deps.get_current_identity),
    _: Account = Depends(_decision_roles),
    db: AsyncSession = Depends(deps.get_db_session),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> LoanApplicationListResponse:
    items, total = await loan_applications.list_pending(db, identity, limit=limit, offset=offset)
    return LoanApplicationListResponse(
        items=[LoanApplicationDTO.model_validate(item) for item in items],
        total=total,
    )


@router.get(
    "/{application_id}",
    response_model=LoanApplicationDTO,
    summary="Loan application detail (owner or decision role)",
)
async def read_loan_application(
    application_id: str,
    identity: VerifiedIdentity = Depends(deps.get_current_identity),
    account: Account | None = Depends(deps.get_current_account),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationDTO:
    application = await loan_applications.get_for_caller(db, identity, account, application_id)
    return LoanApplicationDTO.model_validate(application)


@router.patch(
    "/{application_id}/decide",
    response_model=LoanApplicationDTO,
    summary="Approve or reject a pending loan application",
)
async def decide_loan_application(
    application_id: str,
    payload: LoanDecisionRequest,
    identity: VerifiedIdentity = Depends(deps.get_current_identity),
    _: Account = Depends(_decision_roles),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationDTO:
    application = await loan_applications.decide(
        db,
        application_id,
        payload.status,
        actor_email=identity.email,
        note=payload.note,
    )
    return LoanApplicationDTO.model_validate(application)


@router.delete(
    "/{application_id}",
    response_model=LoanApplicationWithdrawResponse,
    summary="Withdraw a pending loan application",
)
async def withdraw_loan_application(
    application_id: str,
    identity: VerifiedIdentity = Depends(deps.get_current_identity),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationWithdrawResponse:
    withdrawn_id = await loan_applications.withdraw(db, identity, application_id)
    return LoanApplicationWithdrawResponse(id=withdrawn_id)
