from models.db import db, utcnow

# transaction_type values
SUBSCRIPTION_GRANT = "subscription_grant"
USED = "used"
RESTORED = "restored"
BONUS_REFERRAL = "bonus_referral"
BONUS_BIRTHDAY = "bonus_birthday"
BONUS_MANUAL = "bonus_manual"
EXPIRED = "expired"
REVOKED = "revoked"

# bonus_type values
BONUS_TYPES = ("referral", "birthday", "manual")

class TicketTransaction(db.Model):
    """Append-only audit trail of every ticket balance change. Rows are never updated."""

    __tablename__ = "ticket_transactions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey("subscriptions.id"), nullable=True, index=True)
    booking_id = db.Column(db.String(36), db.ForeignKey("bookings.id"), nullable=True, index=True)

    transaction_type = db.Column(db.String(30), nullable=False)
    amount = db.Column(db.Integer, nullable=False)         # signed delta
    balance_after = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.String(255), nullable=True)
    admin_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

class BonusTicket(db.Model):
    __tablename__ = "bonus_tickets"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    bonus_type = db.Column(db.String(20), nullable=False)
    tickets = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)
    referrer_id = db.Column(db.Integer, nullable=True)
    granted_by = db.Column(db.Integer, nullable=True)
    year = db.Column(db.Integer, nullable=True)  # set for birthday bonuses

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
