from models.db import db, utcnow

class Session(db.Model):
    """A bookable play session. Capacity is fixed at creation (courts x players per court)."""

    __tablename__ = "sessions"

    id = db.Column(db.Integer, primary_key=True)
    organizer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(160), nullable=False)
    location = db.Column(db.String(160), nullable=False)
    starts_at = db.Column(db.DateTime, nullable=False, index=True)  # naive UTC

    courts = db.Column(db.Integer, nullable=False, default=1)
    max_players_per_court = db.Column(db.Integer, nullable=False)
    total_slots = db.Column(db.Integer, nullable=False)
    available_slots = db.Column(db.Integer, nullable=False)

    # smallest currency unit; null means the configured default price
    price = db.Column(db.Integer, nullable=True)

    # null means the configured default window
    subscriber_cancellation_hours = db.Column(db.Integer, nullable=True)
    drop_in_cancellation_hours = db.Column(db.Integer, nullable=True)

    cancelled = db.Column(db.Boolean, default=False, nullable=False)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        # Hard capacity rules: never oversell, never release beyond the total
        db.CheckConstraint("available_slots >= 0", name="ck_sessions_available_non_negative"),
        db.CheckConstraint("available_slots <= total_slots", name="ck_sessions_available_within_total"),
    )

    @property
    def booked_slots(self) -> int:
        return self.total_slots - self.available_slots
