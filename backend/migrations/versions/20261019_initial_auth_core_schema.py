"""Initial auth core schema: tenancy, principals, sessions, MFA, invites, audit, scoped business rows

Revision ID: 20261019_initial_auth_core
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_auth_core"
down_revision = None
branch_labels = None
depends_on = None


SCOPE_CHECK_SQL = (
    "(role IN ('owner', 'backoffice') AND retailer_id IS NULL AND location_id IS NULL)"
    " OR (role = 'retailer' AND retailer_id IS NOT NULL AND location_id IS NULL)"
    " OR (role = 'location_user' AND retailer_id IS NOT NULL AND location_id IS NOT NULL)"
)

NOW = sa.text("(CURRENT_TIMESTAMP)")


def _scoped_columns():
    return [
        sa.Column("retailer_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["retailer_id"], ["retailers.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
    ]


def _scope_indexes(table):
    with op.batch_alter_table(table, schema=None) as batch_op:
        batch_op.create_index(f"ix_{table}_retailer_id", ["retailer_id"], unique=False)
        batch_op.create_index(f"ix_{table}_location_id", ["location_id"], unique=False)


def upgrade():
    # -- tenancy --
    op.create_table(
        "retailers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("retailers", schema=None) as batch_op:
        batch_op.create_index("ix_retailers_code", ["code"], unique=True)
        batch_op.create_index("ix_retailers_is_active", ["is_active"], unique=False)

    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("retailer_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["retailer_id"], ["retailers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("retailer_id", "code", name="uq_locations_retailer_code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("locations", schema=None) as batch_op:
        batch_op.create_index("ix_locations_retailer_id", ["retailer_id"], unique=False)

    # -- principals --
    op.create_table(
        "principals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("retailer_id", sa.Integer(), nullable=True),
        sa.Column("location_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("password_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mfa_enabled", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("profile_metadata", sa.JSON(), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login_ip", sa.String(45), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["retailer_id"], ["retailers.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["principals.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(SCOPE_CHECK_SQL, name="ck_principals_role_scope"),
        sa.CheckConstraint("status IN ('active', 'suspended', 'inactive')", name="ck_principals_status"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("principals", schema=None) as batch_op:
        batch_op.create_index("ix_principals_email", ["email"], unique=True)
        batch_op.create_index("ix_principals_role", ["role"], unique=False)
        batch_op.create_index("ix_principals_status", ["status"], unique=False)
        batch_op.create_index("ix_principals_retailer_location", ["retailer_id", "location_id"], unique=False)

    # -- sessions --
    op.create_table(
        "auth_sessions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("principal_id", sa.Integer(), nullable=False),
        sa.Column("access_token_hash", sa.String(64), nullable=False),
        sa.Column("refresh_token_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=False),
        sa.Column("origin", sa.String(45), nullable=True),
        sa.Column("client_signature", sa.String(512), nullable=True),
        sa.Column("device_id", sa.String(128), nullable=True),
        sa.Column("mfa_required", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("mfa_verified", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("mfa_failed_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_reason", sa.String(64), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by", sa.Integer(), nullable=True),
        sa.Column("revoke_reason", sa.String(255), nullable=True),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"]),
        sa.ForeignKeyConstraint(["revoked_by"], ["principals.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("auth_sessions", schema=None) as batch_op:
        batch_op.create_index("ix_auth_sessions_principal_id", ["principal_id"], unique=False)
        batch_op.create_index("ix_auth_sessions_access_token_hash", ["access_token_hash"], unique=True)
        batch_op.create_index("ix_auth_sessions_refresh_token_hash", ["refresh_token_hash"], unique=True)
        batch_op.create_index("ix_auth_sessions_principal_created", ["principal_id", "created_at"], unique=False)
        batch_op.create_index("ix_auth_sessions_expires", ["expires_at"], unique=False)

    op.create_table(
        "mfa_devices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("principal_id", sa.Integer(), nullable=False),
        sa.Column("device_type", sa.String(16), nullable=False, server_default="totp"),
        sa.Column("device_name", sa.String(128), nullable=True),
        sa.Column("secret", sa.String(64), nullable=False),
        sa.Column("backup_codes", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("mfa_devices", schema=None) as batch_op:
        batch_op.create_index("ix_mfa_devices_principal_id", ["principal_id"], unique=False)
        batch_op.create_index("ix_mfa_devices_principal_active", ["principal_id", "is_active"], unique=False)

    op.create_table(
        "invite_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("retailer_id", sa.Integer(), nullable=True),
        sa.Column("location_id", sa.Integer(), nullable=True),
        sa.Column("invited_by", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["retailer_id"], ["retailers.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["invited_by"], ["principals.id"]),
        sa.ForeignKeyConstraint(["used_by"], ["principals.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(SCOPE_CHECK_SQL, name="ck_invite_tokens_role_scope"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("invite_tokens", schema=None) as batch_op:
        batch_op.create_index("ix_invite_tokens_token_hash", ["token_hash"], unique=True)
        batch_op.create_index("ix_invite_tokens_email", ["email"], unique=False)

    # -- audit & risk --
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("principal_id", sa.Integer(), nullable=True),
        sa.Column("session_id", sa.String(36), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("origin", sa.String(45), nullable=True),
        sa.Column("client_signature", sa.String(512), nullable=True),
        sa.Column("device_id", sa.String(128), nullable=True),
        sa.Column("resource_type", sa.String(64), nullable=True),
        sa.Column("resource_id", sa.String(64), nullable=True),
        sa.Column("action", sa.String(64), nullable=True),
        sa.Column("outcome", sa.String(16), nullable=False),
        sa.Column("risk_score", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("anomaly_flags", sa.JSON(), nullable=False),
        sa.Column("event_data", sa.JSON(), nullable=True),
        sa.Column("error_details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("risk_score >= 0 AND risk_score <= 100", name="ck_audit_events_risk_score"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("audit_events", schema=None) as batch_op:
        batch_op.create_index("ix_audit_events_principal_id", ["principal_id"], unique=False)
        batch_op.create_index("ix_audit_events_session_id", ["session_id"], unique=False)
        batch_op.create_index("ix_audit_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_audit_events_outcome", ["outcome"], unique=False)
        batch_op.create_index("ix_audit_events_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_audit_events_principal_type", ["principal_id", "event_type"], unique=False)
        batch_op.create_index("ix_audit_events_origin_created", ["origin", "created_at"], unique=False)

    op.create_table(
        "security_alerts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("alert_type", sa.String(64), nullable=False),
        sa.Column("severity", sa.String(16), nullable=False),
        sa.Column("principal_id", sa.Integer(), nullable=True),
        sa.Column("audit_event_id", sa.Integer(), nullable=True),
        sa.Column("origin", sa.String(45), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("event_data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"]),
        sa.ForeignKeyConstraint(["audit_event_id"], ["audit_events.id"]),
        sa.ForeignKeyConstraint(["resolved_by"], ["principals.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("security_alerts", schema=None) as batch_op:
        batch_op.create_index("ix_security_alerts_principal_id", ["principal_id"], unique=False)
        batch_op.create_index("ix_security_alerts_unresolved", ["resolved_at", "created_at"], unique=False)

    op.create_table(
        "rate_limits",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("identifier", sa.String(255), nullable=False),
        sa.Column("limit_type", sa.String(32), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_attempt", sa.DateTime(timezone=True), nullable=False),
        sa.Column("blocked_until", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("identifier", "limit_type", name="uq_rate_limits_identifier_type"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("entity", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("outbox_events", schema=None) as batch_op:
        batch_op.create_index("ix_outbox_events_unprocessed", ["processed_at", "created_at"], unique=False)

    # -- scoped business rows --
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        *_scoped_columns(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _scope_indexes("customers")
    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.create_index("ix_customers_retailer_email", ["retailer_id", "email"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        *_scoped_columns(),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("reference", sa.String(64), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _scope_indexes("orders")

    op.create_table(
        "claims",
        sa.Column("id", sa.Integer(), nullable=False),
        *_scoped_columns(),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="submitted"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _scope_indexes("claims")

    op.create_table(
        "shipments",
        sa.Column("id", sa.Integer(), nullable=False),
        *_scoped_columns(),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("carrier", sa.String(64), nullable=True),
        sa.Column("tracking_number", sa.String(128), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _scope_indexes("shipments")


def downgrade():
    for table in (
        "shipments", "claims", "orders", "customers",
        "outbox_events", "rate_limits", "security_alerts", "audit_events",
        "invite_tokens", "mfa_devices", "auth_sessions", "principals",
        "locations", "retailers",
    ):
        op.drop_table(table)
