"""Initial CRM schema: users, properties, pipeline stages, contacts.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

User-owned tables get a user_isolation RLS policy keyed on the
app.current_user_id session variable. The users table has no policy:
signup and login read it before any user identity exists.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_USER_TABLES = ("properties", "pipeline_stages", "contacts")


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _user_column() -> sa.Column:
    return sa.Column(
        "user_id",
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # ── users ────────────────────────────────────────────────────────────

    op.create_table(
        "users",
        _id_column(),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("company", sa.String(200), nullable=True),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── properties ───────────────────────────────────────────────────────

    op.create_table(
        "properties",
        _id_column(),
        _user_column(),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "commission_percentage",
            sa.Numeric(5, 2),
            server_default=sa.text("0"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("price >= 0", name="ck_properties_price_non_negative"),
        sa.CheckConstraint(
            "commission_percentage >= 0 AND commission_percentage <= 100",
            name="ck_properties_commission_range",
        ),
    )

    # ── pipeline_stages ──────────────────────────────────────────────────

    op.create_table(
        "pipeline_stages",
        _id_column(),
        _user_column(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("is_default", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("clock_timestamp()"),
        ),
    )

    # ── contacts ─────────────────────────────────────────────────────────

    op.create_table(
        "contacts",
        _id_column(),
        _user_column(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        # No ON DELETE: a referenced property cannot be deleted
        sa.Column(
            "property_id",
            UUID(as_uuid=True),
            sa.ForeignKey("properties.id"),
            nullable=True,
        ),
        sa.Column(
            "stage_id",
            UUID(as_uuid=True),
            sa.ForeignKey("pipeline_stages.id"),
            nullable=True,
        ),
        sa.Column("visit_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sale_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sale_value", sa.Numeric(12, 2), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("clock_timestamp()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── RLS ──────────────────────────────────────────────────────────────

    for table in _USER_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")
        op.execute(f"""
            CREATE POLICY user_isolation ON {table}
            FOR ALL
            USING (user_id::text = current_setting('app.current_user_id', true))
            WITH CHECK (user_id::text = current_setting('app.current_user_id', true))
        """)

    # ── Indexes ──────────────────────────────────────────────────────────

    # Board load: stages in display order
    op.execute(
        "CREATE INDEX idx_pipeline_stages_user_position "
        "ON pipeline_stages(user_id, position, created_at)"
    )
    # Board load and stage deletion check
    op.execute("CREATE INDEX idx_contacts_user_stage ON contacts(user_id, stage_id)")
    # Dashboard ranges
    op.execute("CREATE INDEX idx_contacts_user_created ON contacts(user_id, created_at)")
    op.execute(
        "CREATE INDEX idx_contacts_user_sale_date ON contacts(user_id, sale_date) "
        "WHERE sale_date IS NOT NULL"
    )
    op.execute("CREATE INDEX idx_contacts_property ON contacts(property_id)")
    op.execute("CREATE INDEX idx_properties_user_created ON properties(user_id, created_at)")


def downgrade() -> None:
    for table in reversed(_USER_TABLES):
        op.execute(f"DROP POLICY IF EXISTS user_isolation ON {table}")
    op.drop_table("contacts")
    op.drop_table("pipeline_stages")
    op.drop_table("properties")
    op.drop_table("users")
