"""Initial schema for the report card record store.

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the key-value table holding the six JSON collections."""

    # One row per collection: cdss_users, cdss_students, cdss_scores,
    # cdss_session, cdss_settings, cdss_logs
    op.execute('''CREATE TABLE IF NOT EXISTS record_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')


def downgrade() -> None:
    op.execute('DROP TABLE IF EXISTS record_store')
