"""
Client SDK for consuming L402-protected APIs.

Provides L402Client and l402_fetch, which pay challenges through a wallet
and retry the original request once.
"""

from .fetch import L402Client, State, auto_pay, l402_fetch

__all__ = ["L402Client", "State", "auto_pay", "l402_fetch"]
