"""
Promo endpoints
===============

POST /api/v1/promos/validate -- check a code (and price it against a fare)
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rideswift.api.dependencies import get_db, get_runtime
from rideswift.api.middleware import limiter
from rideswift.api.schemas import PromoValidateRequest, PromoValidateResponse
from rideswift.config import settings
from rideswift.domain.pricing import compute_discount
from rideswift.runtime import Runtime

router = APIRouter(prefix="/promos", tags=["promos"])


@router.post(
    "/validate",
    response_model=PromoValidateResponse,
    summary="Validate a promo code",
    responses={400: {"description": "Unknown, expired or exhausted code."}},
)
@limiter.limit(settings.rate_limit)
async def validate_promo(
    request: Request,
    body: PromoValidateRequest,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    terms = await runtime.promo_ledger(db).validate(body.code, body.fare)
    return PromoValidateResponse(
        code=terms.code,
        discount_type=terms.discount_type,
        discount_value=terms.discount_value,
        min_fare=terms.min_fare,
        max_discount=terms.max_discount,
        discount=compute_discount(terms, body.fare) if body.fare is not None else None,
    )
