import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

NotifyFn = Callable[[str], Awaitable[None]]


async def notify_surgery_booked(surgery_id: str) -> None:
    """
    Hand a committed booking to the notification channel.

    The e-mail/PDF dispatcher lives outside this package; this default only
    records the hand-off.
    """
    logger.info("surgery %s booked, notification queued", surgery_id)
