import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationOutcome:
    """Result of a best-effort side effect run after a committed transition."""
    sent: bool
    error: Optional[str] = None

    @classmethod
    def skipped(cls, reason: str) -> "NotificationOutcome":
        return cls(sent=False, error=reason)


def dispatch(label: str, send: Callable[..., None], *args, **kwargs) -> NotificationOutcome:
    """Run ``send`` and report its outcome instead of raising."""
    try:
        send(*args, **kwargs)
    except Exception as e:
        logger.error(f"Notification '{label}' failed: {e}")
        return NotificationOutcome(sent=False, error=str(e))
    return NotificationOutcome(sent=True)
