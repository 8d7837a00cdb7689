from models.db import db, utcnow

class AppSetting(db.Model):
    """Runtime-tunable key/value settings (discount percent, bonus sizes)."""

    __tablename__ = "app_settings"

    key = db.Column(db.String(100), primary_key=True)
    value = db.Column(db.String(255), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
