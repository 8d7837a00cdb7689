"""Pricing engine: pure functions, no I/O.

Ticket model, applied in order:
- no active subscription: owner pays the base price
- active subscription with tickets: one ticket covers the owner slot
- active subscription without tickets: owner gets the out-of-ticket discount

Guests always pay full price; subscription benefits are not transferable.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from models.booking import DISCOUNT_NONE, DISCOUNT_OUT_OF_TICKET, DISCOUNT_TICKET
from services.errors import BadRequest
from services.policy import PriceRounding


@dataclass(frozen=True)
class PriceQuote:
    tickets_to_consume: int
    discount_kind: str
    owner_price: int
    guest_price: int

    @property
    def total_owed(self) -> int:
        return self.owner_price + self.guest_price

    @property
    def is_free(self) -> bool:
        return self.total_owed == 0


def quote_price(
    base_price: int,
    guest_count: int,
    has_subscription: bool,
    tickets_remaining: int = 0,
    discount_percent: int = 0,
    rounding: Optional[PriceRounding] = None,
) -> PriceQuote:
    if base_price < 0:
        raise BadRequest("Base price cannot be negative")
    if guest_count < 0:
        raise BadRequest("guest_count cannot be negative")
    if not 0 <= discount_percent <= 100:
        raise BadRequest("Discount percent must be between 0 and 100")

    rounding = rounding or PriceRounding()
    guest_price = base_price * guest_count

    if not has_subscription:
        return PriceQuote(0, DISCOUNT_NONE, base_price, guest_price)

    if tickets_remaining > 0:
        return PriceQuote(1, DISCOUNT_TICKET, 0, guest_price)

    discounted = Decimal(base_price) * (100 - discount_percent) / 100
    return PriceQuote(0, DISCOUNT_OUT_OF_TICKET, rounding.apply(discounted), guest_price)


def payment_deadline(quote: PriceQuote, now: datetime, window_minutes: int) -> Optional[datetime]:
    """Free bookings are confirmed immediately and never expire."""
    if quote.is_free:
        return None
    return now + timedelta(minutes=window_minutes)
