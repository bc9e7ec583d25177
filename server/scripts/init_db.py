#!/usr/bin/env python3
"""Initialise the ModelHub database.

Applies server/schema.sql (idempotent) and creates the bootstrap global
admin named by DEFAULT_ADMIN when it does not exist yet.

Usage:
    # From server/ (reads .env):
    python -m scripts.init_db

    # Different admin name:
    python -m scripts.init_db --admin alice
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from modelhub.config import get_settings  # noqa: E402
from modelhub.database import init_schema, SCHEMA_PATH  # noqa: E402
from modelhub.logging_config import configure_logging  # noqa: E402
from modelhub.main import ensure_default_admin  # noqa: E402


def main():
    settings = get_settings()
    parser = argparse.ArgumentParser(description="ModelHub database initialiser")
    parser.add_argument("--schema", default=SCHEMA_PATH, help="Path to schema.sql")
    parser.add_argument("--admin", default=settings.default_admin,
                        help="Global admin to create (default: DEFAULT_ADMIN)")
    args = parser.parse_args()

    configure_logging(settings.log_level)
    init_schema(args.schema)
    target = settings.azure_sql_server or settings.database_url
    print(f"Schema applied to {target}")

    if ensure_default_admin(args.admin):
        print(f"Created global admin '{args.admin}'")
    elif args.admin:
        print(f"Global admin '{args.admin}' already exists")


if __name__ == "__main__":
    main()
