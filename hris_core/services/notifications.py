"""
HRIS Core - Notification Sinks

Facades push short notices to users after status transitions. Delivery is
the sink's concern; the default sink only logs.
"""

import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Fire-and-forget delivery of in-app notices."""
    
    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        link: Optional[str] = None,
    ) -> None: ...


class LoggingNotificationSink:
    """Writes notices to the application log."""
    
    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        link: Optional[str] = None,
    ) -> None:
        logger.info(f"Notify {user_id}: {title} - {message}" + (f" ({link})" if link else ""))
