from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal

from flask import current_app


@dataclass(frozen=True)
class PriceRounding:
    """How discounted prices are rounded. `unit` is expressed in the smallest
    currency unit prices are stored in (1 = whole unit for VND, 100 = whole
    dollars when storing cents)."""

    mode: str = ROUND_DOWN
    unit: int = 1

    def apply(self, amount: Decimal) -> int:
        steps = (amount / self.unit).quantize(Decimal(1), rounding=self.mode)
        return int(steps) * self.unit


@dataclass(frozen=True)
class BookingPolicy:
    payment_window_minutes: int = 30
    default_session_price: int = 100000
    subscriber_cancellation_hours: int = 24
    drop_in_cancellation_hours: int = 48
    out_of_ticket_discount_percent: int = 10
    max_guests: int = 10
    subscription_tickets: int = 10
    birthday_bonus_tickets: int = 1
    birthday_account_age_days: int = 30
    rounding: PriceRounding = field(default_factory=PriceRounding)

    @classmethod
    def from_config(cls, config) -> "BookingPolicy":
        defaults = cls()
        return cls(
            payment_window_minutes=int(config.get("PAYMENT_WINDOW_MINUTES", defaults.payment_window_minutes)),
            default_session_price=int(config.get("DEFAULT_SESSION_PRICE", defaults.default_session_price)),
            subscriber_cancellation_hours=int(
                config.get("SUBSCRIBER_CANCELLATION_HOURS", defaults.subscriber_cancellation_hours)
            ),
            drop_in_cancellation_hours=int(
                config.get("DROP_IN_CANCELLATION_HOURS", defaults.drop_in_cancellation_hours)
            ),
            out_of_ticket_discount_percent=int(
                config.get("OUT_OF_TICKET_DISCOUNT_PERCENT", defaults.out_of_ticket_discount_percent)
            ),
            max_guests=int(config.get("MAX_GUESTS", defaults.max_guests)),
            subscription_tickets=int(config.get("SUBSCRIPTION_TICKETS", defaults.subscription_tickets)),
            birthday_bonus_tickets=int(config.get("BIRTHDAY_BONUS_TICKETS", defaults.birthday_bonus_tickets)),
            birthday_account_age_days=int(
                config.get("BIRTHDAY_ACCOUNT_AGE_DAYS", defaults.birthday_account_age_days)
            ),
            rounding=PriceRounding(
                mode=config.get("PRICE_ROUNDING_MODE", ROUND_DOWN),
                unit=int(config.get("PRICE_ROUNDING_UNIT", 1)),
            ),
        )


def current_policy() -> BookingPolicy:
    policy = current_app.extensions.get("booking_policy")
    if policy is None:
        policy = BookingPolicy.from_config(current_app.config)
        current_app.extensions["booking_policy"] = policy
    return policy
