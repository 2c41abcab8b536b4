"""Customer e-mail notifications via the Resend HTTP API.

Notifications never affect order state: a missing API key skips the send and
delivery errors are logged.
"""

import logging
from typing import Optional

import httpx

from santavid.config import settings
from santavid.db.models import Order
from santavid.services.base import Notifier

logger = logging.getLogger(__name__)


class ResendNotifier(Notifier):

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, api_key: Optional[str] = None):
        self._http = http_client
        self._api_key = api_key if api_key is not None else settings.notifications.resend_api_key

    async def send(self, to: str, subject: str, html: str) -> None:
        if not self._api_key:
            logger.info(f"Resend API key not set, skipping e-mail to {to}: {subject}")
            return

        payload = {
            "from": settings.notifications.from_address,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        url = f"{settings.notifications.resend_base_url.rstrip('/')}/emails"

        if self._http is not None:
            response = await self._http.post(url, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=30.0) as http:
                response = await http.post(url, json=payload, headers=headers)
        response.raise_for_status()
        logger.info(f"Sent e-mail to {to}: {subject}")


def join_names(names: list[str]) -> str:
    """'A', 'A and B', 'A, B, and C'."""
    if len(names) <= 1:
        return "".join(names)
    if len(names) == 2:
        return f"{names[0]} and {names[1]}"
    return f"{', '.join(names[:-1])}, and {names[-1]}"


def _order_link(order: Order) -> str:
    return f"{settings.notifications.app_url.rstrip('/')}/order/{order.id}/success"


def _render(kind: str, order: Order, names: str) -> tuple[str, str]:
    link = _order_link(order)
    if kind == "confirmed":
        return (
            f"Santa is creating a magical video for {names}!",
            f"<p>Ho ho ho! Santa has received your order and is filming a personal "
            f"video for <strong>{names}</strong>. This usually takes 10-15 minutes.</p>"
            f'<p><a href="{link}">Follow the progress</a></p>',
        )
    if kind == "ready":
        return (
            f"Santa's video for {names} is ready!",
            f"<p>Santa's personal message for <strong>{names}</strong> is ready to watch.</p>"
            f'<p><a href="{order.final_video_url}">Watch the video</a></p>',
        )
    return (
        f"A hiccup at the North Pole with {names}'s video",
        f"<p>Something went wrong while creating the video for <strong>{names}</strong>. "
        f"You can retry from your order page.</p>"
        f'<p><a href="{link}">Open your order</a></p>',
    )


async def notify_customer(notifier: Notifier, order: Order, kind: str) -> bool:
    """Send one lifecycle e-mail ('confirmed', 'ready' or 'failed').

    `order.children` must be loaded. Returns True when a send was attempted
    successfully; failures are logged and reported as False.
    """
    if not order.customer_email:
        logger.info(f"Order {order.id}: no customer e-mail, skipping '{kind}' notification")
        return False

    names = join_names([child.name for child in order.children])
    subject, html = _render(kind, order, names)
    try:
        await notifier.send(order.customer_email, subject, html)
    except Exception as e:
        logger.error(f"Order {order.id}: '{kind}' notification failed: {type(e).__name__}: {e}")
        return False
    return True
