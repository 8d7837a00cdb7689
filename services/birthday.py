from datetime import date, datetime, time, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import extract, select

from models import db
from models.db import utcnow
from models import subscription as sub_status
from models.subscription import Subscription
from models.ticket_transaction import BonusTicket
from models.user import User
from services import settings
from services.policy import current_policy
from services.tickets import add_bonus_tickets


def find_birthday_candidates(today: date, min_account_age_days: int):
    """Users with a birthday today, an old enough account and an active subscription."""
    created_before = datetime.combine(today - timedelta(days=min_account_age_days), time.min)
    already_awarded = select(BonusTicket.user_id).where(
        BonusTicket.bonus_type == "birthday",
        BonusTicket.year == today.year,
    )
    return db.session.execute(
        select(User)
        .join(Subscription, Subscription.user_id == User.id)
        .where(
            User.birthday.is_not(None),
            extract("month", User.birthday) == today.month,
            extract("day", User.birthday) == today.day,
            User.created_at <= created_before,
            Subscription.status == sub_status.ACTIVE,
            User.id.not_in(already_awarded),
        )
        .order_by(User.id)
    ).scalars().all()


def allocate_birthday_tickets(today: Optional[date] = None) -> int:
    """Grant the yearly birthday bonus. Returns how many users received it."""
    today = today or utcnow().date()
    policy = current_policy()
    min_age = settings.get_int(settings.BIRTHDAY_ACCOUNT_AGE_DAYS, policy.birthday_account_age_days)
    bonus = settings.get_int(settings.BIRTHDAY_BONUS_TICKETS, policy.birthday_bonus_tickets)
    if bonus <= 0:
        current_app.logger.info("Birthday bonus disabled (%s tickets)", bonus)
        return 0

    user_ids = [u.id for u in find_birthday_candidates(today, min_age)]
    if not user_ids:
        current_app.logger.debug("No users eligible for birthday bonus today")
        return 0

    current_app.logger.info("Found %d users eligible for birthday bonus today", len(user_ids))
    granted = 0
    for user_id in user_ids:
        try:
            sub = add_bonus_tickets(user_id, bonus, bonus_type="birthday", note="Birthday bonus", year=today.year)
        except Exception:
            current_app.logger.exception("Failed to add birthday tickets for user %s", user_id)
            continue
        granted += 1
        current_app.logger.info(
            "Granted %d birthday ticket(s) to user %s - new balance: %d", bonus, user_id, sub.tickets_remaining,
        )
    return granted
