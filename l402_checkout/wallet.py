"""
Client-side wallets.

A wallet is anything with an async ``pay(challenge)`` method. It receives the
parsed 402 challenge, picks an offer and method, and obtains (or completes)
payment. Success is returning normally; failure is raising a WalletError.

    FakeWallet     requests fake-pay instructions from the gateway and hands
                   the checkout URL to the operator.
    InspectWallet  prints the offers and refuses to pay.

Real payment rails are new classes with the same single method.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from .errors import OfferNotFound, PaymentDeclined, PaymentNotSupported, PaymentRequestFailed
from .l402 import (
    L402Challenge,
    PaymentMethod,
    PaymentRequestRequest,
    PaymentRequestResponse,
    PayReq,
)

logger = logging.getLogger(__name__)

ConfirmSource = Callable[[PaymentRequestResponse], Union[bool, Awaitable[bool]]]


def is_wallet(obj: Any) -> bool:
    return callable(getattr(obj, "pay", None))


def describe_instructions(payreq: PayReq) -> str:
    """Human-readable payment instructions for whichever variant is set."""
    if payreq.checkout_url:
        return f"To complete the payment, visit:\n{payreq.checkout_url}"
    if payreq.lightning_invoice:
        return f"To complete the payment, pay the Lightning invoice:\n{payreq.lightning_invoice}"
    if payreq.address:
        return (
            f"To complete the payment, send {payreq.asset or 'funds'} "
            f"on {payreq.chain or 'chain'} to:\n{payreq.address}"
        )
    return "No payment instructions were returned"


def prompt_confirm(response: PaymentRequestResponse) -> bool:
    """Console confirmation source for the demo client."""
    answer = input("Simulate the payment (visiting the URL) before continuing? (y/n): ")
    return answer.strip().lower() not in ("n", "no")


class FakeWallet:
    """
    Wallet that pays a preconfigured offer through a web checkout.

    It never confirms payment itself: the gateway tells the resource server
    once the checkout URL has been visited. The optional confirm source lets
    the operator (or a test) say when that has happened.
    """

    def __init__(
        self,
        offer_id: str,
        payment_method: Union[str, PaymentMethod] = PaymentMethod.FAKE_PAY,
        confirm: Optional[ConfirmSource] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
        out: Callable[[str], Any] = print,
    ):
        if not offer_id:
            raise ValueError("l402-checkout: offer_id is required")
        self.offer_id = offer_id
        self.payment_method = (
            payment_method.value if isinstance(payment_method, PaymentMethod) else payment_method
        )
        self._confirm = confirm
        self._transport = transport
        self._timeout = timeout
        self._out = out
        self.last_response: Optional[PaymentRequestResponse] = None

    async def pay(self, challenge: L402Challenge) -> PaymentRequestResponse:
        """
        Obtain payment instructions for the configured offer.

        Raises:
            OfferNotFound: The challenge does not contain the offer.
            PaymentRequestFailed: The gateway rejected the request or sent
                back something unreadable.
            PaymentDeclined: The confirm source answered no.
        """
        offer = challenge.find_offer(self.offer_id)
        if offer is None:
            raise OfferNotFound(self.offer_id)

        logger.info(
            f"Processing payment for offer {offer.id} ({offer.title}): "
            f"{offer.amount} {offer.currency}"
        )

        req = PaymentRequestRequest(
            offer_id=offer.id,
            payment_method=self.payment_method,
            payment_context_token=challenge.payment_context_token,
        )

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.post(challenge.payment_request_url, json=req.to_dict())
        except httpx.HTTPError as e:
            raise PaymentRequestFailed(f"failed to make payment request: {e}") from e

        if response.status_code != 200:
            raise PaymentRequestFailed(
                f"payment request failed with status {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        try:
            pay_resp = PaymentRequestResponse.from_dict(response.json())
        except (ValueError, TypeError, AttributeError) as e:
            raise PaymentRequestFailed(f"failed to decode payment response: {e}") from e

        self.last_response = pay_resp
        logger.info(
            f"Received payment instructions, expires at {pay_resp.expires_at.isoformat()}"
        )
        self._out("\n" + describe_instructions(pay_resp.payment_request) + "\n")

        if self._confirm is not None:
            confirmed = self._confirm(pay_resp)
            if inspect.isawaitable(confirmed):
                confirmed = await confirmed
            if not confirmed:
                raise PaymentDeclined("the client did not pay")

        return pay_resp


class InspectWallet:
    """Wallet that only lists the offers. Every pay() fails."""

    def __init__(self, out: Callable[[str], Any] = print):
        self._out = out

    async def pay(self, challenge: L402Challenge) -> None:
        self._out("Available offers:")
        for offer in challenge.offers:
            self._out(f"  Offer ID: {offer.id}")
            self._out(f"  Title: {offer.title}")
            self._out(f"  Price: {offer.amount / 100:.2f} {offer.currency}")
            self._out(f"  Supported payment methods: {', '.join(offer.payment_methods)}")
            self._out(" --------\n")

        raise PaymentNotSupported(
            "mock wallet cannot process payments, run client with --fake to simulate a payment"
        )
