from models.db import db, utcnow

# payment_status values
PENDING = "pending"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"
REFUNDED = "refunded"

# discount_applied values
DISCOUNT_NONE = "none"
DISCOUNT_TICKET = "ticket"
DISCOUNT_OUT_OF_TICKET = "out_of_ticket"

PAYMENT_METHODS = ("stripe", "qr_transfer")

class Booking(db.Model):
    __tablename__ = "bookings"

    # UUID string allocated by the application before the row is inserted,
    # so ledger entries can reference it in the same unit of work
    id = db.Column(db.String(36), primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("sessions.id"), nullable=False, index=True)
    booking_code = db.Column(db.String(16), unique=True, nullable=False)

    guest_count = db.Column(db.Integer, nullable=False, default=0)
    tickets_used = db.Column(db.Integer, nullable=False, default=0)
    discount_applied = db.Column(db.String(20), nullable=False, default=DISCOUNT_NONE)

    price_paid = db.Column(db.Integer, nullable=False, default=0)        # owner slot
    guest_price_paid = db.Column(db.Integer, nullable=False, default=0)  # always full price

    payment_method = db.Column(db.String(20), nullable=False, default="stripe")
    payment_status = db.Column(db.String(20), nullable=False, default=PENDING, index=True)
    payment_deadline = db.Column(db.DateTime, nullable=True, index=True)
    stripe_payment_id = db.Column(db.String(255), nullable=True)

    cancelled_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        # Hard business-rule: one live booking per user per session
        db.Index(
            "uq_bookings_active_user_session",
            "user_id",
            "session_id",
            unique=True,
            postgresql_where=db.text("cancelled_at IS NULL"),
            sqlite_where=db.text("cancelled_at IS NULL"),
        ),
        db.CheckConstraint("guest_count >= 0", name="ck_bookings_guest_count_non_negative"),
        db.CheckConstraint("tickets_used IN (0, 1)", name="ck_bookings_tickets_used"),
    )

    @property
    def slots_consumed(self) -> int:
        return 1 + self.guest_count

    @property
    def total_owed(self) -> int:
        return self.price_paid + self.guest_price_paid

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None
