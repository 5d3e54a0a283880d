# services/notification_service.py
import logging
from typing import List, Tuple

logger = logging.getLogger(__name__)


class LoggingNotificationDispatcher:
    """Delivers notifications to the application log and keeps an outbox."""

    def __init__(self):
        self.outbox: List[Tuple[str, str, str]] = []

    async def send(self, recipient: str, subject: str, body: str) -> None:
        self.outbox.append((recipient, subject, body))
        logger.info(f"[Notify] To {recipient}: {subject}")
