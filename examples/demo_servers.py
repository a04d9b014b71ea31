"""
⚡ l402-checkout demo servers

Runs the resource server (port 8080) or the payment gateway (port 8081).

Run, in three terminals:
    python examples/demo_servers.py server
    python examples/demo_servers.py gateway
    l402-client --fake

Then open the printed checkout URL, answer "y", and the retried request is
granted. Without --fake the client only lists the offers.
"""

import sys
from urllib.parse import urlparse

import uvicorn

from l402_checkout.config import Settings, configure_logging
from l402_checkout.gateway import create_gateway
from l402_checkout.server import create_server


def main() -> None:
    role = sys.argv[1] if len(sys.argv) > 1 else "server"
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    if role == "server":
        app = create_server(settings)
        port = urlparse(settings.server_url).port or 8080
        print("\n⚡ l402-checkout resource server")
        print("=" * 40)
        print("  GET  /private-resource  - 402 until paid")
        print("  POST /payment-success   - gateway webhook")
        print("  GET  /stats             - ledger summary")
    elif role == "gateway":
        app = create_gateway(settings)
        port = urlparse(settings.gateway_url).port or 8081
        print("\n⚡ l402-checkout gateway")
        print("=" * 40)
        print("  POST /payment-request   - payment instructions")
        print("  POST /charge            - mint a challenge")
        print("  GET  /checkout          - simulated payment")
    else:
        print(f"unknown role {role!r}, expected 'server' or 'gateway'")
        sys.exit(2)

    print()
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
