#!/usr/bin/env python3
"""
Arcade auth API - accounts, sessions and Steam login for the game-library client.
"""

import argparse
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep arcade imports lazy (inside functions) so `--migrate` does not import
# FastAPI and `--serve` does not import psycopg unless Postgres is configured.
#


def sweep_sessions() -> int:
    """Delete expired sessions once from the configured store. Returns the count removed."""
    from arcade.api.services import build_services, build_store
    from arcade.auth.config import load_auth_config

    services = build_services(load_auth_config(), build_store())
    return services.sessions.sweep_expired()


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Arcade auth API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Apply pending Postgres migrations
  python main.py --migrate

  # Run the HTTP API
  python main.py --serve --port 4000
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP API server")
    parser.add_argument("--migrate", action="store_true", help="Apply pending SQL migrations and exit")
    parser.add_argument("--sweep-sessions", action="store_true", help="Delete expired sessions once and exit")
    parser.add_argument("--host", default="0.0.0.0", help="API server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=4000, help="API server listen port (default: 4000)")

    args = parser.parse_args()

    if args.migrate:
        from arcade.db.migrate import main as migrate_main

        raise SystemExit(migrate_main([]))

    if args.sweep_sessions:
        removed = sweep_sessions()
        print(f"Removed {removed} expired session(s).")
        return

    if args.serve:
        from arcade.api.server import run

        run(host=args.host, port=args.port)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
