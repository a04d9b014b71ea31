"""
Demo client.

    l402-client                       inspect the offers of the protected resource
    l402-client --fake                pay offer_0001 through the fake-pay checkout
    l402-client --fake --offer-id offer_0003 --yes
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .client import L402Client
from .config import Settings, configure_logging
from .errors import L402Error
from .wallet import FakeWallet, InspectWallet, prompt_confirm

logger = logging.getLogger(__name__)


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="l402-client",
        description="Fetch an L402-protected resource, paying through a wallet",
    )
    parser.add_argument("--url", default=settings.resource_url, help="protected resource URL")
    parser.add_argument("--offer-id", default="offer_0001", help="offer ID that we will purchase")
    parser.add_argument("--fake", action="store_true", help="simulate a fake payment")
    parser.add_argument(
        "--yes",
        action="store_true",
        help="do not prompt before retrying (assume the checkout was visited)",
    )
    parser.add_argument("--token", default=settings.auth_token, help="bearer token")
    return parser


async def run(args: argparse.Namespace) -> int:
    if args.fake:
        wallet = FakeWallet(args.offer_id, confirm=None if args.yes else prompt_confirm)
    else:
        wallet = InspectWallet()

    headers = {"Authorization": f"Bearer {args.token}"}
    async with L402Client(wallet=wallet, headers=headers) as client:
        try:
            response = await client.fetch(args.url)
        except L402Error as e:
            logger.error(f"Failed to execute request to {args.url}: {e}")
            return 1

    logger.info(f"Request completed: status={response.status_code} offer={args.offer_id}")
    print(response.text)
    return 0 if response.status_code == 200 else 1


def main(argv: Optional[List[str]] = None) -> int:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    args = build_parser(settings).parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
