"""
Promo ledger.

A code is redeemable iff it exists (matched case-insensitively against
the upper-cased stored code), is active, has not expired and is under
its usage limit.  When a fare is supplied, the code's minimum fare must
also be met.  Redemption is a conditional increment, so the usage
counter can never pass the limit and a rejected code never moves it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rideswift.domain.entities import PromoTerms
from rideswift.domain.enums import DiscountType
from rideswift.domain.errors import InvalidPromoCode
from rideswift.domain.pricing import compute_discount
from rideswift.infrastructure.repositories import PromoCodeRepository

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PromoLedger:
    def __init__(
        self, session: AsyncSession, clock: Callable[[], datetime] = utcnow
    ):
        self.promos = PromoCodeRepository(session)
        self.clock = clock

    async def validate(self, code: str, fare: Optional[float] = None) -> PromoTerms:
        """Return the code's terms or raise ``InvalidPromoCode``."""
        canonical = (code or "").strip().upper()
        if not canonical:
            raise InvalidPromoCode(code, "Promo code is required")

        row = await self.promos.lookup(canonical, self.clock())
        if row is None:
            raise InvalidPromoCode(canonical, "Invalid or expired promo code")
        promo, unexpired, has_uses = row
        if not promo.is_active or not unexpired:
            raise InvalidPromoCode(canonical, "Invalid or expired promo code")
        if not has_uses:
            raise InvalidPromoCode(canonical, "Promo code has reached its usage limit")
        if fare is not None and promo.min_fare is not None and fare < promo.min_fare:
            raise InvalidPromoCode(
                canonical, f"Promo code requires a minimum fare of {promo.min_fare:.2f}"
            )

        return PromoTerms(
            code=promo.code,
            discount_type=DiscountType(promo.discount_type),
            discount_value=promo.discount_value,
            min_fare=promo.min_fare,
            max_discount=promo.max_discount,
        )

    async def redeem(self, code: str) -> None:
        if not await self.promos.redeem(code.strip().upper(), self.clock()):
            raise InvalidPromoCode(code, "Promo code has reached its usage limit")

    async def apply(self, code: str, fare: float) -> tuple[PromoTerms, float]:
        """Validate, redeem and price a code against *fare* in one go."""
        terms = await self.validate(code, fare)
        await self.redeem(terms.code)
        discount = compute_discount(terms, fare)
        logger.info("Promo %s applied: %.2f off %.2f", terms.code, discount, fare)
        return terms, discount
