"""Create users, passkey credentials and passkey challenges tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

Challenges carry no foreign key to users: authentication challenges issued
before the caller is identified are stored under a reserved sentinel id.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", UUID(as_uuid=False), primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        "passkey_credentials",
        sa.Column("id", UUID(as_uuid=False), primary_key=True),
        sa.Column(
            "user_id",
            UUID(as_uuid=False),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("credential_id", sa.String(1024), nullable=False),
        sa.Column("public_key", sa.LargeBinary, nullable=False),
        sa.Column("counter", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("transports", sa.String(255), nullable=True),
        sa.Column("aaguid", sa.String(36), nullable=True),
        sa.Column("device_type", sa.String(32), nullable=True),
        sa.Column("backed_up", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("metadata", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("last_used", sa.DateTime, nullable=True),
        sa.Column("revoked_at", sa.DateTime, nullable=True),
        sa.Column("revoked_reason", sa.String(64), nullable=True),
    )
    op.create_index("idx_passkey_credentials_user_id", "passkey_credentials", ["user_id"])
    op.create_index("idx_passkey_credentials_credential_id", "passkey_credentials", ["credential_id"], unique=True)
    op.create_index("idx_passkey_credentials_status_last_used", "passkey_credentials", ["status", "last_used"])

    op.create_table(
        "passkey_challenges",
        sa.Column("id", UUID(as_uuid=False), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("challenge", sa.String(128), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("registration_options", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime, nullable=False),
    )
    op.create_index("idx_passkey_challenges_challenge", "passkey_challenges", ["challenge"], unique=True)
    op.create_index("idx_passkey_challenges_user_type", "passkey_challenges", ["user_id", "type"])
    op.create_index("idx_passkey_challenges_expires_at", "passkey_challenges", ["expires_at"])


def downgrade() -> None:
    op.drop_index("idx_passkey_challenges_expires_at", table_name="passkey_challenges")
    op.drop_index("idx_passkey_challenges_user_type", table_name="passkey_challenges")
    op.drop_index("idx_passkey_challenges_challenge", table_name="passkey_challenges")
    op.drop_table("passkey_challenges")
    op.drop_index("idx_passkey_credentials_status_last_used", table_name="passkey_credentials")
    op.drop_index("idx_passkey_credentials_credential_id", table_name="passkey_credentials")
    op.drop_index("idx_passkey_credentials_user_id", table_name="passkey_credentials")
    op.drop_table("passkey_credentials")
    op.drop_table("users")
