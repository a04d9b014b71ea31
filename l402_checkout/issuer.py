"""
Challenge issuing.

A fresh payment context token is minted for every unpaid access attempt.
The token is the only thing tying a payment back to the request that
triggered it, so it comes from a CSPRNG (uuid4 draws from os.urandom).
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional, Sequence

import httpx

from .errors import ChargeFailed, MalformedChallenge
from .l402 import TERMS_URL, L402Challenge, Offer, parse_challenge

logger = logging.getLogger(__name__)


def new_payment_context_token() -> str:
    return str(uuid.uuid4())


class ChallengeIssuer:
    """Builds 402 challenges pointing at a gateway's payment-request URL."""

    def __init__(self, payment_request_url: str, terms_url: str = TERMS_URL):
        if not payment_request_url:
            raise ValueError("l402-checkout: payment_request_url is required")
        self.payment_request_url = payment_request_url
        self.terms_url = terms_url

    def issue_challenge(self, offers: Sequence[Offer]) -> L402Challenge:
        """
        Create a challenge presenting the given offers.

        Args:
            offers: Offers to present, in display order. Must not be empty.

        Returns:
            L402Challenge with a new payment context token.
        """
        if not offers:
            raise ValueError("l402-checkout: at least one offer is required")

        challenge = L402Challenge(
            payment_request_url=self.payment_request_url,
            payment_context_token=new_payment_context_token(),
            offers=list(offers),
            terms_url=self.terms_url,
        )
        logger.debug(
            f"Issued challenge {challenge.payment_context_token} "
            f"for offers {challenge.offer_ids()}"
        )
        return challenge


def issue_challenge(payment_request_url: str, offers: Sequence[Offer]) -> L402Challenge:
    """One-shot convenience around ChallengeIssuer."""
    return ChallengeIssuer(payment_request_url).issue_challenge(offers)


class GatewayIssuer:
    """
    Asks a payment gateway to mint the challenge (POST /charge).

    Used when the resource server delegates challenge creation to the
    gateway instead of issuing locally.
    """

    def __init__(
        self,
        charge_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        if not charge_url:
            raise ValueError("l402-checkout: charge_url is required")
        self.charge_url = charge_url
        self._transport = transport
        self._timeout = timeout

    async def issue_challenge(self, offers: Sequence[Offer]) -> L402Challenge:
        if not offers:
            raise ValueError("l402-checkout: at least one offer is required")

        payload: Any = {"offers": [offer.to_dict() for offer in offers]}
        logger.debug(f"Sending charge request to gateway with {len(offers)} offers")

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.post(self.charge_url, json=payload)
        except httpx.HTTPError as e:
            raise ChargeFailed(f"failed to contact gateway: {e}") from e

        if response.status_code != 200:
            raise ChargeFailed(
                f"gateway charge failed with status {response.status_code}: {response.text}"
            )

        try:
            return parse_challenge(response.content)
        except MalformedChallenge as e:
            raise ChargeFailed(f"gateway returned an invalid challenge: {e}") from e
