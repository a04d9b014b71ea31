"""
Payment gateway (FastAPI).

Routes:
    POST /payment-request   offer + method → payment instructions
    POST /charge            offers → fresh L402 challenge
    GET  /checkout          simulated out-of-band payment; notifies the
                            resource server that the context is paid
"""

from __future__ import annotations

import html
import logging
from typing import Any, Dict, Optional, Sequence

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse

from .config import DEFAULT_OFFERS, Settings
from .errors import (
    MissingCorrelation,
    NotificationFailed,
    PaymentRequestExpired,
    UnsupportedPaymentMethod,
)
from .issuer import ChallengeIssuer
from .l402 import Offer, PaymentRequestRequest, offers_from_dicts
from .notifier import PaymentNotifier
from .resolver import PaymentRequestResolver

logger = logging.getLogger(__name__)

SUCCESS_PAGE = """
<html>
    <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 40px auto; text-align: center;">
        <h1 style="color: #4CAF50;">Payment Successful!</h1>
        <p>Your payment for offer {offer_id} has been processed.</p>
        <p>You can now return to the application and access your content.</p>
    </body>
</html>
"""


def get_remote_addr(request: Request) -> str:
    if request.client:
        return request.client.host or "unknown"
    return "unknown"


def create_gateway(
    settings: Optional[Settings] = None,
    offers: Optional[Sequence[Offer]] = None,
    resolver: Optional[PaymentRequestResolver] = None,
    notifier: Optional[PaymentNotifier] = None,
    issuer: Optional[ChallengeIssuer] = None,
) -> FastAPI:
    """
    Build the gateway app.

    Args:
        settings: URLs, TTL and expiry policy (defaults to Settings.from_env()).
        offers: Catalog the resolver falls back to for unregistered contexts.
        resolver: Payment request resolver; built from settings by default.
        notifier: Completion notifier posting to the resource server.
        issuer: Issuer used by POST /charge.
    """
    settings = settings or Settings.from_env()
    resolver = resolver or PaymentRequestResolver(
        catalog=offers or DEFAULT_OFFERS,
        checkout_url=settings.checkout_url,
        ttl=settings.payment_ttl,
        enforce_expiry=settings.enforce_expiry,
    )
    notifier = notifier or PaymentNotifier(settings.payment_success_url)
    issuer = issuer or ChallengeIssuer(settings.payment_request_url)

    app = FastAPI(title="l402-checkout gateway")
    app.state.resolver = resolver
    app.state.notifier = notifier

    @app.post("/payment-request")
    async def payment_request(request: Request) -> Dict[str, Any]:
        try:
            req = PaymentRequestRequest.from_dict(await request.json())
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Failed to decode payment request from {get_remote_addr(request)}: {e}")
            raise HTTPException(status_code=400, detail={"error": "invalid request body"})

        logger.info(
            f"Received payment request: offer={req.offer_id} method={req.payment_method} "
            f"context={req.payment_context_token}"
        )

        try:
            response = resolver.resolve_payment_request(req)
        except (MissingCorrelation, UnsupportedPaymentMethod) as e:
            raise HTTPException(status_code=400, detail={"error": str(e)})

        logger.info(
            f"Payment request processed: offer={req.offer_id} "
            f"checkout_url={response.payment_request.checkout_url}"
        )
        return response.to_dict()

    @app.post("/charge")
    async def charge(request: Request) -> Dict[str, Any]:
        try:
            body = await request.json()
            offers_in = offers_from_dicts(body.get("offers") or [])
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Failed to decode charge request from {get_remote_addr(request)}: {e}")
            raise HTTPException(status_code=400, detail={"error": "invalid request body"})

        if not offers_in:
            logger.warning(f"No offers in charge request from {get_remote_addr(request)}")
            raise HTTPException(status_code=400, detail={"error": "no offers provided"})

        logger.info(f"Received charge request for offers {[o.id for o in offers_in]}")
        challenge = issuer.issue_challenge(offers_in)
        resolver.register_challenge(challenge)

        logger.info(f"Charge request processed: context={challenge.payment_context_token}")
        return challenge.to_dict()

    @app.get("/checkout", response_class=HTMLResponse)
    async def checkout(
        request: Request,
        payment_context_token: str = "",
        offer_id: str = "",
    ) -> HTMLResponse:
        logger.info(
            f"Received checkout request: context={payment_context_token} "
            f"offer={offer_id} from {get_remote_addr(request)}"
        )

        if not payment_context_token or not offer_id:
            logger.warning("Missing parameters in checkout request")
            raise HTTPException(
                status_code=400, detail={"error": "missing payment context or offer ID"}
            )

        try:
            resolver.check_not_expired(payment_context_token)
        except PaymentRequestExpired as e:
            logger.warning(str(e))
            raise HTTPException(status_code=410, detail={"error": str(e)})

        try:
            await notifier.notify_paid(payment_context_token, offer_id)
        except NotificationFailed as e:
            raise HTTPException(status_code=502, detail={"error": str(e)})

        return HTMLResponse(SUCCESS_PAGE.format(offer_id=html.escape(offer_id)))

    return app
