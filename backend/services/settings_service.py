from sqlalchemy.orm import Session
from config import DEFAULT_ATTESTATION_DEADLINE_DAYS, DEFAULT_REMINDER_FREQUENCY_DAYS
from models.models import Settings


def get_settings(db: Session) -> Settings:
    """Return the single settings row, creating it with defaults on first use."""
    settings = db.query(Settings).order_by(Settings.id).first()
    if settings is None:
        settings = Settings(
            attestation_deadline_in_days=DEFAULT_ATTESTATION_DEADLINE_DAYS,
            reminder_frequency_in_days=DEFAULT_REMINDER_FREQUENCY_DAYS,
        )
        db.add(settings)
        db.commit()
        db.refresh(settings)
    return settings
