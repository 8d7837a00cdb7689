import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as leaguebook.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "leaguebook.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bearer token lifetime: 8 hours
    TOKEN_LIFETIME_SECONDS = int(os.getenv("TOKEN_LIFETIME_SECONDS", str(8 * 60 * 60)))

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "vnd")

    # Booking policy (prices in the smallest currency unit)
    PAYMENT_WINDOW_MINUTES = int(os.getenv("PAYMENT_WINDOW_MINUTES", "30"))
    DEFAULT_SESSION_PRICE = int(os.getenv("DEFAULT_SESSION_PRICE", "100000"))
    SUBSCRIBER_CANCELLATION_HOURS = int(os.getenv("SUBSCRIBER_CANCELLATION_HOURS", "24"))
    DROP_IN_CANCELLATION_HOURS = int(os.getenv("DROP_IN_CANCELLATION_HOURS", "48"))
    OUT_OF_TICKET_DISCOUNT_PERCENT = int(os.getenv("OUT_OF_TICKET_DISCOUNT_PERCENT", "10"))
    PRICE_ROUNDING_MODE = os.getenv("PRICE_ROUNDING_MODE", "ROUND_DOWN")
    PRICE_ROUNDING_UNIT = int(os.getenv("PRICE_ROUNDING_UNIT", "1"))
    MAX_GUESTS = int(os.getenv("MAX_GUESTS", "10"))

    # Subscriptions
    SUBSCRIPTION_TICKETS = int(os.getenv("SUBSCRIPTION_TICKETS", "10"))
    BIRTHDAY_BONUS_TICKETS = int(os.getenv("BIRTHDAY_BONUS_TICKETS", "1"))
    BIRTHDAY_ACCOUNT_AGE_DAYS = int(os.getenv("BIRTHDAY_ACCOUNT_AGE_DAYS", "30"))

    # Background jobs
    REAPER_INTERVAL_SECONDS = int(os.getenv("REAPER_INTERVAL_SECONDS", "60"))
    # off by default: with several workers, run `flask run-jobs` in one process instead
    SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED")

    # schema normally comes from `flask db upgrade`
    CREATE_TABLES = _env_bool("CREATE_TABLES")

    # Basic app settings
    DEBUG = False
