"""
l402-checkout exception hierarchy.

Every failure in the protocol flow is raised as one of these, so callers can
tell which party and which phase went wrong.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class Phase(str, Enum):
    """Phase of a retry-client cycle in which a failure happened."""

    SEND = "send"
    PARSE = "parse"
    PAY = "pay"
    RETRY = "retry"


class L402Error(Exception):
    """Base exception for l402-checkout."""

    pass


# --- Client side ---


class ClientError(L402Error):
    """Failure of a transparent retry cycle, tagged with its phase."""

    phase: Phase = Phase.SEND

    def __init__(self, message: str, phase: Optional[Phase] = None):
        if phase is not None:
            self.phase = phase
        super().__init__(f"[{self.phase.value}] {message}")


class MalformedChallenge(ClientError):
    """402 body could not be parsed as an L402 challenge."""

    phase = Phase.PARSE


class WalletPaymentFailed(ClientError):
    """The wallet raised while paying a challenge. Wraps the wallet error."""

    phase = Phase.PAY

    def __init__(self, cause: Exception):
        self.cause = cause
        super().__init__(f"failed to process L402 payment: {cause}")


class TransportFailed(ClientError):
    """The initial or retried HTTP request could not be sent."""

    pass


# --- Wallet side ---


class WalletError(L402Error):
    """Base for failures raised by a wallet's pay()."""

    pass


class OfferNotFound(WalletError):
    def __init__(self, offer_id: str):
        self.offer_id = offer_id
        super().__init__(f"offer {offer_id} not found")


class PaymentNotSupported(WalletError):
    """The wallet cannot pay at all (inspection only)."""

    pass


class PaymentDeclined(WalletError):
    """The confirmation source declined to complete the payment."""

    pass


class PaymentRequestFailed(WalletError):
    """The gateway refused or garbled the payment request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


# --- Gateway side ---


class UnsupportedPaymentMethod(L402Error):
    """Offer/method combination the resolver cannot serve."""

    def __init__(self, message: str, offer_id: str = "", payment_method: str = ""):
        self.offer_id = offer_id
        self.payment_method = payment_method
        super().__init__(message)


class PaymentRequestExpired(L402Error):
    """Payment instructions for a context were used after expires_at."""

    pass


class ChargeFailed(L402Error):
    """A remote gateway failed to mint a challenge."""

    pass


# --- Completion notice ---


class MissingCorrelation(L402Error):
    """Completion notice lacks the context token or the offer id."""

    pass


class CorrelationMismatch(L402Error):
    """Completion notice names an offer not presented under that context."""

    pass


class NotificationFailed(L402Error):
    """The resource server did not acknowledge a completion notice."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
