from models import db
from models.app_setting import AppSetting

OUT_OF_TICKET_DISCOUNT = "subscriber_out_of_ticket_discount_percent"
BIRTHDAY_BONUS_TICKETS = "birthday_bonus_tickets"
BIRTHDAY_ACCOUNT_AGE_DAYS = "birthday_account_age_days"


def get_int(key: str, default: int) -> int:
    """Read an integer setting. Missing or unparsable values fall back to `default`."""
    row = db.session.get(AppSetting, key)
    if row is None:
        return default
    try:
        return int(row.value)
    except (TypeError, ValueError):
        return default


def set_value(key: str, value, description=None) -> AppSetting:
    row = db.session.get(AppSetting, key)
    if row is None:
        row = AppSetting(key=key, value=str(value), description=description)
        db.session.add(row)
    else:
        row.value = str(value)
        if description is not None:
            row.description = description
    db.session.commit()
    return row
