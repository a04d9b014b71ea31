"""
Payment completion notices (gateway → resource server).

Once a payment is confirmed out-of-band, the gateway tells the resource
server which context was paid and for which offer. A non-200 answer is a
hard failure; retrying is left to the caller.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import httpx

from .errors import MissingCorrelation, NotificationFailed
from .l402 import PaymentNotice, format_notice_headers

logger = logging.getLogger(__name__)


class PaymentNotifier:
    """Posts completion notices to the resource server's webhook."""

    def __init__(
        self,
        payment_success_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        if not payment_success_url:
            raise ValueError("l402-checkout: payment_success_url is required")
        self.payment_success_url = payment_success_url
        self._transport = transport
        self._timeout = timeout

    async def notify_paid(self, context_token: str, offer_id: str) -> None:
        """
        Notify the resource server that a payment context is paid.

        Args:
            context_token: Payment context token of the challenge.
            offer_id: Offer that was paid.

        Raises:
            MissingCorrelation: If either field is empty. Nothing is sent.
            NotificationFailed: If the server could not be reached or did
                not answer 200.
        """
        if not context_token or not offer_id:
            raise MissingCorrelation("missing payment context or offer ID")

        headers = format_notice_headers(
            PaymentNotice(payment_context_token=context_token, offer_id=offer_id)
        )

        start = time.monotonic()
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.post(self.payment_success_url, headers=headers)
        except httpx.HTTPError as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.error(f"Failed to notify backend for context {context_token}: {e} ({duration_ms}ms)")
            raise NotificationFailed(f"failed to notify backend: {e}") from e

        duration_ms = int((time.monotonic() - start) * 1000)
        if response.status_code != 200:
            logger.error(
                f"Backend failed to process payment for context {context_token}: "
                f"status={response.status_code} ({duration_ms}ms)"
            )
            raise NotificationFailed(
                f"backend failed to process payment: status {response.status_code}",
                status_code=response.status_code,
            )

        logger.info(
            f"Payment notice delivered for context {context_token}, "
            f"offer {offer_id} ({duration_ms}ms)"
        )
