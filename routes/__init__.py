from routes.health import health_bp
from routes.sessions import sessions_bp
from routes.booking import booking_bp
from routes.payments import payments_bp
from routes.stripe_webhook import webhook_bp
from routes.tickets import tickets_bp
from routes.admin import admin_bp

__all__ = [
    "health_bp",
    "sessions_bp",
    "booking_bp",
    "payments_bp",
    "webhook_bp",
    "tickets_bp",
    "admin_bp",
]
