"""
L402 wire messages.

Implements the JSON payloads exchanged between client, resource server and
payment gateway:

    402 body            {version, payment_request_url, payment_context_token, offer[], terms_url}
    POST /payment-request  {offer_id, payment_method, payment_context_token, chain, asset}
    payment request reply  {version, expires_at, payment_request: {...}}
    completion notice   X-Payment-Context / X-Offer-ID headers

Field names are the interoperable contract; note the singular "offer" key
for the offer list and "check_url" for the checkout URL.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .errors import MalformedChallenge

L402_VERSION = "0.2.2"
TERMS_URL = "https://example.com/terms"

# Payment instructions are valid for 10 minutes.
PAYMENT_REQUEST_TTL = 600

PAYMENT_CONTEXT_HEADER = "X-Payment-Context"
OFFER_ID_HEADER = "X-Offer-ID"


class PaymentMethod(str, Enum):
    """
    Known payment methods.

    All payments happen out-of-band; L402 only carries the details the
    client needs. Methods can be added without breaking the protocol, so
    offers accept any string.
    """

    LIGHTNING = "lightning"
    ONCHAIN = "onchain"
    CREDIT_CARD = "credit_card"
    # Simulated method used to exercise the flow end to end.
    FAKE_PAY = "fake-pay"


class OfferType(str, Enum):
    ONE_TIME = "one-time"
    TOP_UP = "top-up"
    SUBSCRIPTION = "subscription"


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _require_str(data: Mapping[str, Any], key: str, default: Optional[str] = None) -> str:
    value = data.get(key, default)
    if value is None:
        raise ValueError(f"missing field: {key}")
    if not isinstance(value, str):
        raise ValueError(f"field {key} must be a string")
    return value


def _require_int(data: Mapping[str, Any], key: str, default: int = 0) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {key} must be an integer")
    return value


@dataclass(frozen=True)
class Offer:
    """A purchasable unit. Amount is in the smallest currency unit."""

    id: str
    title: str
    description: str
    type: OfferType
    amount: int
    currency: str
    payment_methods: Tuple[str, ...]
    # Credits granted, only meaningful for top-up offers.
    balance: int = 0

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("offer id is required")
        if self.amount < 0:
            raise ValueError(f"offer {self.id}: amount must be >= 0")
        if isinstance(self.payment_methods, str):
            raise ValueError(f"offer {self.id}: payment_methods must be a sequence, not a single method")
        methods = tuple(_plain(m) for m in self.payment_methods)
        if not methods:
            raise ValueError(f"offer {self.id}: payment_methods must not be empty")
        object.__setattr__(self, "payment_methods", methods)
        object.__setattr__(self, "type", OfferType(self.type))

    def supports(self, method: Union[str, PaymentMethod]) -> bool:
        return _plain(method) in self.payment_methods

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type.value,
            "balance": self.balance,
            "amount": self.amount,
            "currency": self.currency,
            "payment_methods": list(self.payment_methods),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Offer":
        methods = data.get("payment_methods")
        if not isinstance(methods, list) or not all(isinstance(m, str) for m in methods):
            raise ValueError("field payment_methods must be a list of strings")
        return cls(
            id=_require_str(data, "id"),
            title=_require_str(data, "title", ""),
            description=_require_str(data, "description", ""),
            type=OfferType(_require_str(data, "type")),
            balance=_require_int(data, "balance"),
            amount=_require_int(data, "amount"),
            currency=_require_str(data, "currency"),
            payment_methods=tuple(methods),
        )


@dataclass
class L402Challenge:
    """The 402 Payment Required body (PaymentRequiredResponse)."""

    payment_request_url: str
    payment_context_token: str
    offers: List[Offer] = field(default_factory=list)
    version: str = L402_VERSION
    terms_url: str = TERMS_URL

    def find_offer(self, offer_id: str) -> Optional[Offer]:
        for offer in self.offers:
            if offer.id == offer_id:
                return offer
        return None

    def offer_ids(self) -> List[str]:
        return [offer.id for offer in self.offers]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "payment_request_url": self.payment_request_url,
            "payment_context_token": self.payment_context_token,
            "offer": [offer.to_dict() for offer in self.offers],
            "terms_url": self.terms_url,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "L402Challenge":
        """
        Build a challenge from its decoded JSON.

        Raises:
            MalformedChallenge: If required fields are missing or ill-typed.
        """
        if not isinstance(data, Mapping):
            raise MalformedChallenge("challenge body must be a JSON object")
        try:
            raw_offers = data.get("offer") or []
            if not isinstance(raw_offers, list):
                raise ValueError("field offer must be a list")
            challenge = cls(
                version=_require_str(data, "version"),
                payment_request_url=_require_str(data, "payment_request_url"),
                payment_context_token=_require_str(data, "payment_context_token"),
                offers=[Offer.from_dict(o) for o in raw_offers],
                terms_url=_require_str(data, "terms_url", ""),
            )
        except (ValueError, TypeError, AttributeError) as e:
            raise MalformedChallenge(f"failed to parse L402 response: {e}") from e

        if not challenge.payment_context_token:
            raise MalformedChallenge("failed to parse L402 response: empty payment_context_token")
        if not challenge.payment_request_url:
            raise MalformedChallenge("failed to parse L402 response: empty payment_request_url")
        return challenge


@dataclass
class PaymentRequestRequest:
    """Client's choice of offer and payment method for a challenge."""

    offer_id: str
    payment_method: str
    payment_context_token: str
    # On-chain only
    chain: str = ""
    asset: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "offer_id": self.offer_id,
            "payment_method": _plain(self.payment_method),
            "payment_context_token": self.payment_context_token,
            "chain": self.chain,
            "asset": self.asset,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaymentRequestRequest":
        token = _require_str(data, "payment_context_token")
        if not token:
            raise ValueError("payment_context_token must not be empty")
        return cls(
            offer_id=_require_str(data, "offer_id"),
            payment_method=_require_str(data, "payment_method"),
            payment_context_token=token,
            chain=_require_str(data, "chain", ""),
            asset=_require_str(data, "asset", ""),
        )


@dataclass
class PayReq:
    """Method-specific payment instructions. One variant is populated."""

    lightning_invoice: str = ""
    address: str = ""
    asset: str = ""
    chain: str = ""
    # Web-based payment flow (cards, the simulated fake-pay).
    checkout_url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lightning_invoice": self.lightning_invoice,
            "address": self.address,
            "asset": self.asset,
            "chain": self.chain,
            "check_url": self.checkout_url,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PayReq":
        return cls(
            lightning_invoice=_require_str(data, "lightning_invoice", ""),
            address=_require_str(data, "address", ""),
            asset=_require_str(data, "asset", ""),
            chain=_require_str(data, "chain", ""),
            checkout_url=_require_str(data, "check_url", ""),
        )


def format_timestamp(value: datetime) -> str:
    """RFC3339 in UTC with a trailing Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class PaymentRequestResponse:
    """Resolver reply: time-bounded payment instructions."""

    expires_at: datetime
    payment_request: PayReq
    version: str = L402_VERSION

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "expires_at": format_timestamp(self.expires_at),
            "payment_request": self.payment_request.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaymentRequestResponse":
        payreq = data.get("payment_request")
        if not isinstance(payreq, Mapping):
            raise ValueError("field payment_request must be an object")
        return cls(
            version=_require_str(data, "version"),
            expires_at=parse_timestamp(_require_str(data, "expires_at")),
            payment_request=PayReq.from_dict(payreq),
        )


@dataclass
class PaymentNotice:
    """Gateway → resource server signal that a context has been paid."""

    payment_context_token: str
    offer_id: str


def parse_challenge(body: Union[str, bytes, Mapping[str, Any]]) -> L402Challenge:
    """
    Parse a 402 response body into a challenge.

    Args:
        body: Raw JSON text/bytes or an already-decoded dict.

    Returns:
        L402Challenge.

    Raises:
        MalformedChallenge: If the body is not valid JSON or not a challenge.
    """
    if isinstance(body, (str, bytes)):
        try:
            body = json.loads(body)
        except ValueError as e:
            raise MalformedChallenge(f"failed to parse L402 response: {e}") from e
    return L402Challenge.from_dict(body)


def format_notice_headers(notice: PaymentNotice) -> Dict[str, str]:
    """Headers carrying a completion notice."""
    return {
        PAYMENT_CONTEXT_HEADER: notice.payment_context_token,
        OFFER_ID_HEADER: notice.offer_id,
    }


def parse_notice_headers(headers: Optional[Mapping[str, str]]) -> Optional[PaymentNotice]:
    """
    Read a completion notice from request headers.

    Lookup is case-insensitive when given a Starlette/httpx header mapping,
    otherwise both the canonical and lower-case names are tried.

    Returns:
        PaymentNotice or None if either field is missing or blank.
    """
    if not headers:
        return None

    def _get(name: str) -> str:
        value = headers.get(name)
        if value is None:
            value = headers.get(name.lower())
        return (value or "").strip()

    context_token = _get(PAYMENT_CONTEXT_HEADER)
    offer_id = _get(OFFER_ID_HEADER)
    if not context_token or not offer_id:
        return None
    return PaymentNotice(payment_context_token=context_token, offer_id=offer_id)


def offers_from_dicts(items: Iterable[Mapping[str, Any]]) -> List[Offer]:
    return [Offer.from_dict(item) for item in items]
