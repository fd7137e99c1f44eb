"""initial schema: status registry, cipher key ledger, audit events

Revision ID: 3a7c9e1b5d20
Revises:
Create Date: 2026-10-19 09:12:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3a7c9e1b5d20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "status_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("identity", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="Unverified"),
        sa.Column("access_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_accessed", sa.DateTime(), nullable=False),
        sa.Column("device_model", sa.String(255), nullable=True),
        sa.Column("os_version", sa.String(128), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone_number", sa.String(64), nullable=True),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("region", sa.String(128), nullable=True),
        sa.Column("country", sa.String(128), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("isp", sa.String(255), nullable=True),
        sa.Column("requested_at", sa.DateTime(), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("identity"),
    )
    op.create_index("idx_status_records_status", "status_records", ["status"])
    op.create_index("idx_status_records_last_accessed", "status_records", ["last_accessed"])

    op.create_table(
        "status_attachments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("record_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("remote_id", sa.String(512), nullable=False),
        sa.Column("url", sa.String(1024), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["record_id"], ["status_records.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_status_attachments_record", "status_attachments", ["record_id", "kind"])

    op.create_table(
        "cipher_key_actions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("identity", sa.String(64), nullable=False),
        sa.Column("action", sa.String(16), nullable=False),
        sa.Column("key_material", sa.Text(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_cipher_key_actions_identity", "cipher_key_actions", ["identity"])
    op.create_index("idx_cipher_key_actions_recorded_at", "cipher_key_actions", ["recorded_at"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor", sa.String(64), nullable=False, server_default="public"),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
    )
    op.create_index("idx_audit_events_action", "audit_events", ["action"])
    op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("idx_audit_events_entity", table_name="audit_events")
    op.drop_index("idx_audit_events_action", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("idx_cipher_key_actions_recorded_at", table_name="cipher_key_actions")
    op.drop_index("idx_cipher_key_actions_identity", table_name="cipher_key_actions")
    op.drop_table("cipher_key_actions")
    op.drop_index("idx_status_attachments_record", table_name="status_attachments")
    op.drop_table("status_attachments")
    op.drop_index("idx_status_records_last_accessed", table_name="status_records")
    op.drop_index("idx_status_records_status", table_name="status_records")
    op.drop_table("status_records")
