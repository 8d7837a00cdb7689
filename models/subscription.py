from models.db import db, utcnow

ACTIVE = "active"
PAST_DUE = "past_due"
CANCELLED = "cancelled"
EXPIRED = "expired"

STATUSES = (ACTIVE, PAST_DUE, CANCELLED, EXPIRED)

class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default=ACTIVE)
    tickets_remaining = db.Column(db.Integer, nullable=False, default=0)

    current_period_start = db.Column(db.DateTime, nullable=True)
    current_period_end = db.Column(db.DateTime, nullable=True)

    stripe_subscription_id = db.Column(db.String(255), nullable=True, unique=True, index=True)
    stripe_customer_id = db.Column(db.String(255), nullable=True, index=True)
    auto_renew = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("tickets_remaining >= 0", name="ck_subscriptions_tickets_non_negative"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE
