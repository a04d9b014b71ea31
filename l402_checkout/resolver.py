"""
Payment request resolution (gateway role).

Turns a client's chosen offer + payment method into time-bounded,
method-specific payment instructions. Only the simulated fake-pay method
ships with a handler; real rails plug in through register_method().
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode

from .errors import MissingCorrelation, PaymentRequestExpired, UnsupportedPaymentMethod
from .l402 import (
    L402_VERSION,
    PAYMENT_REQUEST_TTL,
    L402Challenge,
    Offer,
    PaymentMethod,
    PaymentRequestRequest,
    PaymentRequestResponse,
    PayReq,
)

logger = logging.getLogger(__name__)

MethodHandler = Callable[[PaymentRequestRequest, Offer], PayReq]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def checkout_handler(checkout_url: str) -> MethodHandler:
    """
    Handler producing a web checkout URL bound to the context and offer.

    Visiting the URL is the out-of-band payment step.
    """

    def handler(req: PaymentRequestRequest, offer: Offer) -> PayReq:
        query = urlencode({
            "payment_context_token": req.payment_context_token,
            "offer_id": offer.id,
        })
        separator = "&" if "?" in checkout_url else "?"
        return PayReq(checkout_url=f"{checkout_url}{separator}{query}")

    return handler


class PaymentRequestResolver:
    """
    Resolves PaymentRequestRequests against known offers.

    Offers are looked up in the challenge registered for the request's
    context token first, then in the static catalog.
    """

    def __init__(
        self,
        catalog: Union[Mapping[str, Offer], Iterable[Offer]] = (),
        checkout_url: Optional[str] = None,
        ttl: int = PAYMENT_REQUEST_TTL,
        enforce_expiry: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if isinstance(catalog, Mapping):
            self._catalog: Dict[str, Offer] = dict(catalog)
        else:
            self._catalog = {offer.id: offer for offer in catalog}
        if ttl <= 0:
            raise ValueError("l402-checkout: ttl must be positive")

        self.ttl = ttl
        self.enforce_expiry = enforce_expiry
        self._clock = clock
        self._lock = threading.Lock()

        # context token → offers presented under it
        self._challenges: Dict[str, Dict[str, Offer]] = {}
        # context token → expiry of the latest instructions handed out
        self._pending: Dict[str, datetime] = {}
        # (deadline, token) in insertion order for both registries above
        self._challenge_deadlines: Deque[Tuple[datetime, str]] = deque()
        self._pending_deadlines: Deque[Tuple[datetime, str]] = deque()

        self._handlers: Dict[str, MethodHandler] = {}
        if checkout_url:
            self.register_method(PaymentMethod.FAKE_PAY, checkout_handler(checkout_url))

    def register_method(self, method: Union[str, PaymentMethod], handler: MethodHandler) -> None:
        """Plug in instructions for a payment method."""
        key = method.value if isinstance(method, PaymentMethod) else method
        self._handlers[key] = handler

    def supported_methods(self) -> List[str]:
        return sorted(self._handlers)

    def _evict_expired(self, now: datetime) -> None:
        # caller holds the lock
        while self._challenge_deadlines and self._challenge_deadlines[0][0] <= now:
            _, token = self._challenge_deadlines.popleft()
            self._challenges.pop(token, None)
        while self._pending_deadlines and self._pending_deadlines[0][0] <= now:
            deadline, token = self._pending_deadlines.popleft()
            # a newer request for the same context has its own entry
            if self._pending.get(token) == deadline:
                del self._pending[token]

    def evict_expired(self, now: Optional[datetime] = None) -> None:
        """Forget registered challenges and instructions older than ttl."""
        with self._lock:
            self._evict_expired(now or self._clock())

    def register_challenge(self, challenge: L402Challenge) -> None:
        """Remember which offers were presented under a context token."""
        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            self._challenges[challenge.payment_context_token] = {
                offer.id: offer for offer in challenge.offers
            }
            self._challenge_deadlines.append(
                (now + timedelta(seconds=self.ttl), challenge.payment_context_token)
            )

    def _lookup_offer(self, context_token: str, offer_id: str) -> Optional[Offer]:
        with self._lock:
            presented = self._challenges.get(context_token)
        if presented is not None:
            return presented.get(offer_id)
        return self._catalog.get(offer_id)

    def resolve_payment_request(self, req: PaymentRequestRequest) -> PaymentRequestResponse:
        """
        Produce payment instructions for an offer/method.

        Raises:
            MissingCorrelation: Empty payment context token.
            UnsupportedPaymentMethod: Unknown offer, method not offered, or
                method without a handler.
        """
        method = req.payment_method.value if isinstance(req.payment_method, PaymentMethod) else req.payment_method

        if not req.payment_context_token:
            raise MissingCorrelation("payment context token is required")

        offer = self._lookup_offer(req.payment_context_token, req.offer_id)
        if offer is None:
            logger.warning(f"Payment request for unknown offer {req.offer_id}")
            raise UnsupportedPaymentMethod(
                f"offer {req.offer_id} not found", offer_id=req.offer_id, payment_method=method
            )

        if not offer.supports(method):
            logger.warning(f"Offer {offer.id} does not accept payment method {method}")
            raise UnsupportedPaymentMethod(
                f"payment method {method} not supported for offer {offer.id}",
                offer_id=offer.id,
                payment_method=method,
            )

        handler = self._handlers.get(method)
        if handler is None:
            logger.warning(f"No handler for payment method {method}")
            raise UnsupportedPaymentMethod(
                f"payment method {method} not supported",
                offer_id=offer.id,
                payment_method=method,
            )

        payreq = handler(req, offer)
        now = self._clock()
        expires_at = now.replace(microsecond=0) + timedelta(seconds=self.ttl)

        with self._lock:
            self._evict_expired(now)
            self._pending[req.payment_context_token] = expires_at
            self._pending_deadlines.append((expires_at, req.payment_context_token))

        logger.info(
            f"Payment request for offer {offer.id} via {method} "
            f"(context {req.payment_context_token}) expires at {expires_at.isoformat()}"
        )
        return PaymentRequestResponse(
            version=L402_VERSION,
            expires_at=expires_at,
            payment_request=payreq,
        )

    def pending_expiry(self, context_token: str) -> Optional[datetime]:
        with self._lock:
            return self._pending.get(context_token)

    def check_not_expired(self, context_token: str, now: Optional[datetime] = None) -> None:
        """
        Reject late payments when expiry enforcement is on.

        Expired instructions are forgotten, so a context without live
        instructions is rejected too.

        Raises:
            PaymentRequestExpired: If enforce_expiry is set and this context
                has no unexpired instructions.
        """
        if not self.enforce_expiry:
            return
        now = now or self._clock()
        with self._lock:
            self._evict_expired(now)
            expires_at = self._pending.get(context_token)
        if expires_at is None:
            raise PaymentRequestExpired(
                f"no live payment request for context {context_token}"
            )
        if now >= expires_at:
            raise PaymentRequestExpired(
                f"payment request for context {context_token} expired at {expires_at.isoformat()}"
            )
