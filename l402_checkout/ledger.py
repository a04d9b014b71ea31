"""
In-memory access ledger for the resource server.

Tracks, per payment context token, who the challenge was issued to, which
offers were presented, and whether the context has been paid. Paid is
monotonic: mark_paid() is a compare-and-set and nothing ever unsets it.
Unpaid contexts are dropped once they are older than the ledger ttl.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple

from .errors import CorrelationMismatch, MissingCorrelation
from .l402 import PAYMENT_REQUEST_TTL, L402Challenge, Offer

logger = logging.getLogger(__name__)


@dataclass
class PaymentContext:
    """State of one issued challenge."""
    token: str
    subject: Optional[str]
    offers: Dict[str, Offer] = field(default_factory=dict)
    issued_at: float = field(default_factory=time.time)
    paid: bool = False
    paid_offer_id: Optional[str] = None
    paid_at: Optional[float] = None


@dataclass
class PaymentRecord:
    """A completed payment, kept for the stats summary."""
    token: str
    offer_id: str
    amount: int
    currency: str
    subject: Optional[str]
    timestamp: float


class AccessLedger:
    """Per-context paid/unpaid state, safe to share across requests."""

    def __init__(
        self,
        max_recent: int = 100,
        ttl: int = PAYMENT_REQUEST_TTL,
        clock: Callable[[], float] = time.time,
    ):
        if ttl <= 0:
            raise ValueError("l402-checkout: ttl must be positive")
        self.max_recent = max_recent
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._contexts: Dict[str, PaymentContext] = {}
        # (issued_at, token) in issue order, for dropping stale unpaid contexts
        self._issued: Deque[Tuple[float, str]] = deque()
        self._paid_subjects: Set[str] = set()
        self._recent_payments: List[PaymentRecord] = []
        self.total_challenges = 0
        self.total_paid = 0
        # currency → total amount paid
        self._revenue: Dict[str, int] = {}

    def _evict_expired(self, now: float) -> int:
        # caller holds the lock
        evicted = 0
        cutoff = now - self.ttl
        while self._issued and self._issued[0][0] <= cutoff:
            _, token = self._issued.popleft()
            ctx = self._contexts.get(token)
            if ctx is not None and not ctx.paid:
                del self._contexts[token]
                evicted += 1
        if evicted:
            logger.debug(f"Dropped {evicted} unpaid payment contexts older than {self.ttl}s")
        return evicted

    def evict_expired(self, now: Optional[float] = None) -> int:
        """Drop unpaid contexts issued more than ttl seconds ago."""
        with self._lock:
            return self._evict_expired(self._clock() if now is None else now)

    def open_context(self, challenge: L402Challenge, subject: Optional[str] = None) -> PaymentContext:
        """Record a freshly issued challenge."""
        now = self._clock()
        ctx = PaymentContext(
            token=challenge.payment_context_token,
            subject=subject,
            offers={offer.id: offer for offer in challenge.offers},
            issued_at=now,
        )
        with self._lock:
            self._evict_expired(now)
            if ctx.token in self._contexts:
                raise ValueError(f"payment context {ctx.token} already issued")
            self._contexts[ctx.token] = ctx
            self._issued.append((now, ctx.token))
            self.total_challenges += 1
        return ctx

    def get(self, token: str) -> Optional[PaymentContext]:
        with self._lock:
            return self._contexts.get(token)

    def mark_paid(self, token: str, offer_id: str) -> bool:
        """
        Transition a context from unpaid to paid.

        Args:
            token: Payment context token from the completion notice.
            offer_id: Offer the gateway says was paid.

        Returns:
            True if this call performed the transition, False if the context
            was already paid.

        Raises:
            MissingCorrelation: If token or offer_id is empty.
            CorrelationMismatch: If token was never issued here (or has
                expired unpaid), or the offer was not presented under it.
        """
        if not token or not offer_id:
            raise MissingCorrelation("missing payment context or offer ID")

        with self._lock:
            ctx = self._contexts.get(token)
            if ctx is None:
                raise CorrelationMismatch(f"unknown payment context {token}")
            if offer_id not in ctx.offers:
                raise CorrelationMismatch(
                    f"offer {offer_id} was not presented under payment context {token}"
                )

            if ctx.paid:
                return False

            ctx.paid = True
            ctx.paid_offer_id = offer_id
            ctx.paid_at = self._clock()
            if ctx.subject is not None:
                self._paid_subjects.add(ctx.subject)
            self.total_paid += 1

            offer = ctx.offers[offer_id]
            self._revenue[offer.currency] = self._revenue.get(offer.currency, 0) + offer.amount
            self._recent_payments.append(
                PaymentRecord(
                    token=token,
                    offer_id=offer_id,
                    amount=offer.amount,
                    currency=offer.currency,
                    subject=ctx.subject,
                    timestamp=ctx.paid_at,
                )
            )
            if len(self._recent_payments) > self.max_recent:
                self._recent_payments = self._recent_payments[-self.max_recent:]

        logger.info(f"Payment context {token} marked paid for offer {offer_id}")
        return True

    def is_paid(self, token: str) -> bool:
        with self._lock:
            ctx = self._contexts.get(token)
            return bool(ctx and ctx.paid)

    def has_access(self, subject: str) -> bool:
        """Whether any paid context belongs to this subject."""
        with self._lock:
            return subject in self._paid_subjects

    def to_dict(self) -> Dict[str, Any]:
        """Stats summary as a plain dict."""
        with self._lock:
            recent = [
                {
                    "payment_context_token": r.token,
                    "offer_id": r.offer_id,
                    "amount": r.amount,
                    "currency": r.currency,
                    "timestamp": r.timestamp,
                }
                for r in self._recent_payments[-20:]
            ]
            recent.reverse()

            return {
                "total_challenges": self.total_challenges,
                "total_paid": self.total_paid,
                "open_contexts": sum(1 for c in self._contexts.values() if not c.paid),
                "revenue": dict(self._revenue),
                "recent_payments": recent,
            }
