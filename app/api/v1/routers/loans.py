from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import ValidationFailed
from app.core.security import VerifiedIdentity
from app.core.settings import settings
from app.models.account import Account
from app.schemas.loan_products import (
    LoanProductCreate,
    LoanProductDTO,
    LoanProductListResponse,
    LoanProductUpdate,
)
from app.services import loan_catalog

router = APIRouter(prefix="/loans", tags=["loan-catalog"])

_manage_catalog = deps.require_roles(setting="catalog_manage_roles")


@router.get("", response_model=LoanProductListResponse, summary="List loan products")
async def list_loan_products(
    db: AsyncSession = Depends(deps.get_db_session),
    category: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> LoanProductListResponse:
    items, total = await loan_catalog.list_products(db, category=category, limit=limit, offset=offset)
    return LoanProductListResponse(
        items=[LoanProductDTO.model_validate(item) for item in items],
        total=total,
    )


@router.get("/latest", response_model=list[LoanProductDTO], summary="Newest loan products")
async def latest_loan_products(
    db: AsyncSession = Depends(deps.get_db_session),
    limit: int | None = Query(default=None),
) -> list[LoanProductDTO]:
    n = settings.latest_products_default if limit is None else limit
    if n < 1 or n > settings.latest_products_max:
        raise ValidationFailed(
            f"limit must be between 1 and {settings.latest_products_max}",
            details={"limit": limit},
        )
    items = await loan_catalog.latest(db, n)
    return [LoanProductDTO.model_validate(item) for item in items]


@router.get("/{product_id}", response_model=LoanProductDTO, summary="Loan product detail")
async def read_loan_product(
    product_id: str,
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanProductDTO:
    product = await loan_catalog.get_product(db, product_id)
    return LoanProductDTO.model_validate(product)


@router.post(
    "",
    response_model=LoanProductDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Add a loan product to the catalog",
)
async def create_loan_product(
    payload: LoanProductCreate,
    identity: VerifiedIdentity = Depends(deps.get_current_identity),
    _: Account = Depends(_manage_catalog),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanProductDTO:
    product = await loan_catalog.create_product(db, payload, actor_email=identity.email)
    return LoanProductDTO.model_validate(product)


@router.patch("/{product_id}", response_model=LoanProductDTO, summary="Update a loan product")
async def update_loan_product(
    product_id: str,
    payload: LoanProductUpdate,
    identity: VerifiedIdentity = Depends(deps.get_current_identity),
    _: Account = Depends(_manage_catalog),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanProductDTO:
    product = await loan_catalog.update_product(db, product_id, payload, actor_email=identity.email)
    return LoanProductDTO.model_validate(product)


@router.patch(
    "/{product_id}/approve",
    response_model=LoanProductDTO,
    summary="Mark a loan product as approved for display",
)
async def approve_loan_product(
    product_id: str,
    identity: VerifiedIdentity = Depends(deps.get_current_identity),
    _: Account = Depends(_manage_catalog),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanProductDTO:
    product = await loan_catalog.approve_product(db, product_id, actor_email=identity.email)
    return LoanProductDTO.model_validate(product)
