#!/usr/bin/env python3
"""
Forward-auth gateway.

Answers the reverse proxy's per-request "is this authenticated?" question with
signed session cookies and an OAuth/OIDC login flow.
"""

import argparse
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Forward authentication gateway for reverse proxies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve on the default port
  SECRET=... COOKIE_DOMAIN=example.com python main.py

  # Custom bind address
  python main.py --host 127.0.0.1 --port 8080
        """,
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=4181, help="Listen port (default: 4181)")

    args = parser.parse_args()

    try:
        from forwardauth.api.server import run

        run(host=args.host, port=args.port)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
