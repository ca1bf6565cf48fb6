"""
Outbound notification transport.

Delivery itself lives in a separate messaging subsystem; this is the seam the
HTTP layer hands events to once a coordinator call has returned.
"""

import logging

logger = logging.getLogger(__name__)


async def send_notification(recipient_id: str, content: str) -> None:
    logger.info("notify %s: %s", recipient_id, content)
