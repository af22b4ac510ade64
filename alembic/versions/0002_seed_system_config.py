"""Seed system_config with OptimoRoute fetch defaults"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_seed_system_config"
down_revision = "0001_init"
branch_labels = None
depends_on = None


# OPTIMOROUTE_API_KEY is not seeded; store it encrypted with fieldops.crypto.encrypt_secret.
PLAINTEXT_VALUES = [
    ("OPTIMOROUTE_BASE_URL", "https://api.optimoroute.com/v1", "OptimoRoute REST API base URL"),
    ("FETCH_MAX_RETRIES", "3", "Retries per batch after the first attempt"),
    ("FETCH_RETRY_DELAY_MS", "2000", "Base retry delay; doubles on each retry"),
    ("FETCH_BATCH_DELAY_MS", "300", "Pause between successful batches"),
    ("FETCH_VALID_STATUSES", "success,failed,rejected", "Completion statuses kept by the fetch"),
    ("IMPORT_BATCH_SIZE", "50", "Rows per work_orders import transaction"),
]


def _insert_missing(connection, *, key: str, value: str, description: str) -> None:
    existing = connection.execute(
        sa.text("SELECT id FROM system_config WHERE key = :key"), {"key": key}
    ).scalar()
    if existing:
        return
    connection.execute(
        sa.text(
            """
            INSERT INTO system_config (key, value, description, is_active)
            VALUES (:key, :value, :description, TRUE)
            """
        ),
        {"key": key, "value": value, "description": description},
    )


def upgrade() -> None:
    connection = op.get_bind()
    for key, value, description in PLAINTEXT_VALUES:
        _insert_missing(connection, key=key, value=value, description=description)


def downgrade() -> None:
    connection = op.get_bind()
    for key, _, _ in PLAINTEXT_VALUES:
        connection.execute(sa.text("DELETE FROM system_config WHERE key = :key"), {"key": key})
