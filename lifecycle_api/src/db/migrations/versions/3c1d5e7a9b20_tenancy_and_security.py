"""Tenants plus the tenant-scoped security tables the lifecycle gateway reads.

Every table except `tenants` carries `tenant_id` (defaulted from the
`app.tenant_id` setting) and an RLS policy restricting rows to that tenant.
`tenants` itself is only row-filtered for non-owner roles; the owner reads it
to resolve slugs during seeding.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3c1d5e7a9b20"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CURRENT_TENANT = "current_setting('app.tenant_id', true)::uuid"
NOW = sa.text("now()")

SECURITY_TABLES = ("users", "roles", "permissions", "user_roles", "role_permissions")


def _timestamps():
    return (
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    )


def _tenant_table(name: str, *columns, unique: Sequence[str], references: Sequence[str] = ()) -> None:
    """Create `name` with id/tenant/timestamps, a per-tenant unique key and cascading FKs."""
    op.create_table(
        name,
        sa.Column("id", sa.UUID(), primary_key=True, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("tenant_id", sa.UUID(), nullable=False, server_default=sa.text(CURRENT_TENANT)),
        *_timestamps(),
        *columns,
        *(sa.Column(f"{ref[:-1]}_id", sa.UUID(), nullable=False) for ref in references),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        *(sa.ForeignKeyConstraint([f"{ref[:-1]}_id"], [f"{ref}.id"], ondelete="CASCADE") for ref in references),
        sa.UniqueConstraint("tenant_id", *unique, name=f"uq_{name}_tenant_{'_'.join(c.removesuffix('_id') for c in unique)}"),
    )
    op.create_index(f"ix_{name}_tenant_id", name, ["tenant_id"])


def _isolate(table: str, key: str = "tenant_id") -> None:
    op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;")
    op.execute(
        f"CREATE POLICY {table}_tenant_isolation ON {table} "
        f"USING ({key} = {CURRENT_TENANT}) WITH CHECK ({key} = {CURRENT_TENANT});"
    )


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp";')

    op.create_table(
        "tenants",
        sa.Column("id", sa.UUID(), primary_key=True, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("name", sa.Text(), nullable=False, unique=True),
        sa.Column("slug", sa.Text(), nullable=False, unique=True),
        *_timestamps(),
    )

    _tenant_table(
        "users",
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=True),
        sa.Column("hashed_password", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("is_superadmin", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        unique=("email",),
    )
    _tenant_table("roles", sa.Column("name", sa.Text(), nullable=False), sa.Column("description", sa.Text()), unique=("name",))
    _tenant_table(
        "permissions", sa.Column("code", sa.Text(), nullable=False), sa.Column("description", sa.Text()), unique=("code",)
    )
    _tenant_table("user_roles", unique=("user_id", "role_id"), references=("users", "roles"))
    _tenant_table("role_permissions", unique=("role_id", "permission_id"), references=("roles", "permissions"))

    _isolate("tenants", key="id")
    for table in SECURITY_TABLES:
        _isolate(table)


def downgrade() -> None:
    for table in reversed(SECURITY_TABLES):
        op.drop_table(table)
    op.drop_table("tenants")
