"""
Run one-off database migrations without starting the web server.

Usage:
  python migrate.py

This script uses Alembic to apply schema migrations from ./migrations.
"""

import os
import sys


def main():
    from alembic import command
    from alembic.config import Config
    from dotenv import load_dotenv

    load_dotenv()
    if not os.environ.get('DATABASE_URL'):
        print("✗ DATABASE_URL environment variable not set", file=sys.stderr)
        sys.exit(1)

    config = Config()
    config.set_main_option('script_location', os.path.join(os.path.dirname(os.path.abspath(__file__)), 'migrations'))

    try:
        print("Applying database migrations...")
        command.upgrade(config, 'head')
        print("✓ Migrations completed successfully.")
    except Exception as e:
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
