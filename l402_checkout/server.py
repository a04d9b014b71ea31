"""
Resource server (FastAPI).

Protects a resource behind a static bearer token and an L402 paywall:
unpaid callers get a 402 challenge, the gateway reports completed payments
on POST /payment-success, and the caller's retry is then let through.

Paid state is kept per payment context token in an AccessLedger. Only
contexts issued here can be paid. A caller is granted access once any
context issued to its bearer token is paid, because the retried request is
the original request, with no token on it.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Dict, Optional, Sequence

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .config import DEFAULT_OFFERS, Settings
from .errors import CorrelationMismatch, MissingCorrelation
from .issuer import ChallengeIssuer
from .l402 import L402Challenge, Offer, parse_notice_headers
from .ledger import AccessLedger

logger = logging.getLogger(__name__)


class PaymentRequired(Exception):
    """Raised by PaymentGate; rendered as a 402 with the challenge body."""

    def __init__(self, challenge: L402Challenge):
        self.challenge = challenge
        super().__init__(f"payment required for context {challenge.payment_context_token}")


def parse_bearer(auth_header: Optional[str]) -> Optional[str]:
    """
    Extract the token from an Authorization: Bearer header.

    Returns:
        Token string, or None if the header is missing or not Bearer.
    """
    if not auth_header or not isinstance(auth_header, str):
        return None
    trimmed = auth_header.strip()
    if not trimmed.startswith("Bearer "):
        return None
    token = trimmed[len("Bearer "):].strip()
    return token or None


def get_client_id(request: Any) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if getattr(request, "client", None):
        return request.client.host or "unknown"
    return "unknown"


class PaymentGate:
    """
    Bearer auth + L402 paywall for one route, used with Depends().

    Any object with an ``issue_challenge(offers)`` method (sync or async)
    can mint the challenges.
    """

    def __init__(
        self,
        ledger: AccessLedger,
        issuer: Any,
        offers: Sequence[Offer],
        auth_token: str,
    ):
        if not auth_token:
            raise ValueError("l402-checkout: auth_token is required")
        if not offers:
            raise ValueError("l402-checkout: at least one offer is required")
        self.ledger = ledger
        self.issuer = issuer
        self.offers = list(offers)
        self.auth_token = auth_token

    async def __call__(self, request: Request) -> Dict[str, Any]:
        """
        Check a request against the paywall.

        Returns:
            Access info dict when the caller is authenticated and has paid.

        Raises:
            HTTPException: 401 on missing/invalid bearer token.
            PaymentRequired: When the caller has not paid yet.
        """
        client_id = get_client_id(request)
        path = request.url.path

        token = parse_bearer(request.headers.get("authorization"))
        if token is None:
            logger.warning(f"Unauthorized request from {client_id} to {path}: missing bearer token")
            raise HTTPException(status_code=401, detail={"error": "Unauthorized: missing bearer token"})
        if token != self.auth_token:
            logger.warning(f"Unauthorized request from {client_id} to {path}: invalid token")
            raise HTTPException(status_code=401, detail={"error": "Unauthorized: invalid token"})

        if self.ledger.has_access(token):
            logger.info(f"Access granted to {path} for {client_id}")
            return {"paid": True, "client_id": client_id}

        challenge = self.issuer.issue_challenge(self.offers)
        if inspect.isawaitable(challenge):
            challenge = await challenge
        self.ledger.open_context(challenge, subject=token)

        logger.info(
            f"Payment required response sent to {client_id} "
            f"(context {challenge.payment_context_token})"
        )
        raise PaymentRequired(challenge)


def create_server(
    settings: Optional[Settings] = None,
    offers: Optional[Sequence[Offer]] = None,
    ledger: Optional[AccessLedger] = None,
    issuer: Optional[Any] = None,
) -> FastAPI:
    """
    Build the resource server app.

    Args:
        settings: URLs and auth token (defaults to Settings.from_env()).
        offers: Offers presented in every challenge (demo catalog by default).
        ledger: Access ledger; a fresh one by default.
        issuer: Challenge issuer; a local ChallengeIssuer pointing at the
            gateway's payment-request URL by default.
    """
    settings = settings or Settings.from_env()
    ledger = ledger if ledger is not None else AccessLedger(ttl=settings.payment_ttl)
    issuer = issuer or ChallengeIssuer(settings.payment_request_url)
    gate = PaymentGate(ledger, issuer, offers or DEFAULT_OFFERS, settings.auth_token)

    app = FastAPI(title="l402-checkout resource server")
    app.state.ledger = ledger
    app.state.gate = gate

    @app.exception_handler(PaymentRequired)
    async def payment_required_handler(request: Request, exc: PaymentRequired) -> JSONResponse:
        return JSONResponse(status_code=402, content=exc.challenge.to_dict())

    @app.get("/private-resource")
    async def private_resource(access: Dict[str, Any] = Depends(gate)) -> Dict[str, str]:
        return {"message": "Access granted to dataset 123", "status": "success"}

    @app.post("/payment-success")
    async def payment_success(request: Request) -> Dict[str, Any]:
        """Completion webhook called by the gateway."""
        notice = parse_notice_headers(request.headers)
        if notice is None:
            logger.error(f"Missing payment context or offer ID in headers from {get_client_id(request)}")
            raise HTTPException(
                status_code=400,
                detail={"error": str(MissingCorrelation("missing payment context or offer ID"))},
            )

        try:
            transitioned = ledger.mark_paid(notice.payment_context_token, notice.offer_id)
        except CorrelationMismatch as e:
            logger.warning(str(e))
            raise HTTPException(status_code=400, detail={"error": str(e)})

        if not transitioned:
            logger.info(f"Payment context {notice.payment_context_token} was already paid")

        return {
            "status": "ok",
            "payment_context_token": notice.payment_context_token,
            "offer_id": notice.offer_id,
            "already_paid": not transitioned,
        }

    @app.get("/stats")
    async def stats() -> Dict[str, Any]:
        return ledger.to_dict()

    return app
