"""Commerce engine database management CLI.

Creates and drops the relational schema (stock items, reference index,
webhook receipt log). Message DB provisions its own schema.

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
"""

import argparse
import sys


def setup_database():
    from commerce.domain import commerce
    from commerce.utils.db import setup_db

    print("Initializing commerce domain...")
    commerce.init()
    print("Creating commerce database schema...")
    created = setup_db(commerce)
    print(f"  Tables ready for: {', '.join(sorted(created))}")
    print("Done.")


def drop_database():
    from commerce.domain import commerce
    from commerce.utils.db import drop_db

    print("Initializing commerce domain...")
    commerce.init()
    print("Dropping commerce database schema...")
    drop_db(commerce)
    print("  Schema dropped.")
    print("Done.")


def main():
    parser = argparse.ArgumentParser(description="Commerce engine database management")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
