"""Lifecycle-managed documents and the transition engine tables.

Tenant-scoped tables, each under the same RLS isolation policy as the security tables:
- Inventory: locations, stock_levels, inventory_transactions, stock_adjustments(+lines)
- Procurement: suppliers, purchase_orders(+lines), purchase_returns(+lines)
- Sales: customers, sales_invoices(+lines), customer_payments, customer_ledger_entries, sales_returns(+lines)
- Maintenance/safety: assets, maintenance_work_orders, loto_procedures, loto_executions, permits_to_work
- Engine: state_transition_logs (append-only), idempotency_keys, sod_rules, audit_log
"""

from typing import List, Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "5e8a2b4c6d31"
down_revision: Union[str, None] = "3c1d5e7a9b20"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


CURRENT_TENANT = "current_setting('app.tenant_id', true)::uuid"
TENANT_DEFAULT = sa.text(CURRENT_TENANT)
UUID_DEFAULT = sa.text("uuid_generate_v4()")
NOW = sa.text("now()")

JSONB_EMPTY = sa.text("'{}'::jsonb")
JSONB_EMPTY_LIST = sa.text("'[]'::jsonb")

QTY = sa.Numeric(18, 6)

TENANT_SCOPED = [
    "locations",
    "stock_levels",
    "inventory_transactions",
    "stock_adjustments",
    "stock_adjustment_lines",
    "suppliers",
    "purchase_orders",
    "purchase_order_lines",
    "purchase_returns",
    "purchase_return_lines",
    "customers",
    "sales_invoices",
    "sales_invoice_lines",
    "customer_payments",
    "customer_ledger_entries",
    "sales_returns",
    "sales_return_lines",
    "assets",
    "maintenance_work_orders",
    "loto_procedures",
    "loto_executions",
    "permits_to_work",
    "state_transition_logs",
    "idempotency_keys",
    "sod_rules",
    "audit_log",
]

STATUS_TABLES = [
    "stock_adjustments",
    "purchase_orders",
    "purchase_returns",
    "sales_invoices",
    "sales_returns",
    "maintenance_work_orders",
    "loto_executions",
    "permits_to_work",
]


def _base_columns(updated_at: bool = True) -> List[sa.Column]:
    cols = [
        sa.Column("id", sa.UUID(), primary_key=True, server_default=UUID_DEFAULT),
        sa.Column("tenant_id", sa.UUID(), nullable=False, server_default=TENANT_DEFAULT),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    ]
    if updated_at:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False))
    return cols


def _tenant_fk() -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE")


def _text(name: str, required: bool = False) -> sa.Column:
    return sa.Column(name, sa.Text(), nullable=not required)


def _uuid(name: str, required: bool = False) -> sa.Column:
    return sa.Column(name, sa.UUID(), nullable=not required)


def _moment(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=True)


def _doc_type() -> List[sa.SchemaItem]:
    return [
        sa.Column("doc_type", sa.Text(), nullable=False, server_default="T1"),
        sa.CheckConstraint("doc_type IN ('T1', 'T2')"),
    ]


def _document_columns() -> List[sa.SchemaItem]:
    return [_text("status", required=True), *_doc_type()]


def _isolate(table: str) -> None:
    op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;")
    op.execute(
        f"CREATE POLICY {table}_tenant_isolation ON {table} "
        f"USING (tenant_id = {CURRENT_TENANT}) WITH CHECK (tenant_id = {CURRENT_TENANT});"
    )


def upgrade() -> None:
    # INVENTORY
    op.create_table(
        "locations",
        *_base_columns(),
        _text("code", required=True),
        _text("name"),
        _text("type"),
        _uuid("parent_id"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["parent_id"], ["locations.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_locations_tenant_code"),
    )
    op.create_table(
        "stock_levels",
        *_base_columns(),
        _uuid("location_id", required=True),
        _text("item_sku", required=True),
        sa.Column("quantity", QTY, nullable=False, server_default="0"),
        _text("uom"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("tenant_id", "location_id", "item_sku", name="uq_stock_levels_tenant_location_sku"),
    )
    op.create_table(
        "inventory_transactions",
        *_base_columns(),
        _uuid("location_id", required=True),
        _text("item_sku", required=True),
        sa.Column("quantity", QTY, nullable=False),
        _text("uom"),
        _text("movement_type", required=True),
        _text("ref_type"),
        _uuid("ref_id"),
        _uuid("created_by"),
        sa.Column("metadata", postgresql.JSONB(), server_default=JSONB_EMPTY, nullable=False),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"], ondelete="RESTRICT"),
        sa.Index("ix_inventory_transactions_ref", "tenant_id", "ref_type", "ref_id"),
    )
    op.create_table(
        "stock_adjustments",
        *_base_columns(),
        _text("adjustment_number", required=True),
        _uuid("location_id", required=True),
        _text("adjustment_type", required=True),
        *_document_columns(),
        _text("reason"),
        _uuid("created_by"),
        _uuid("approved_by"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("tenant_id", "adjustment_number", name="uq_stock_adjustments_tenant_number"),
    )
    op.create_table(
        "stock_adjustment_lines",
        *_base_columns(),
        _uuid("stock_adjustment_id", required=True),
        _text("item_sku", required=True),
        sa.Column("quantity_delta", QTY, nullable=False),
        _text("uom"),
        _text("notes"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["stock_adjustment_id"], ["stock_adjustments.id"], ondelete="CASCADE"),
    )

    # PROCUREMENT
    op.create_table(
        "suppliers",
        *_base_columns(),
        _text("code", required=True),
        _text("name", required=True),
        _text("tax_id"),
        _text("email"),
        _text("phone"),
        sa.Column("address", postgresql.JSONB(), server_default=JSONB_EMPTY, nullable=False),
        _tenant_fk(),
        sa.UniqueConstraint("tenant_id", "code", name="uq_suppliers_tenant_code"),
    )
    op.create_table(
        "purchase_orders",
        *_base_columns(),
        _text("po_number", required=True),
        _uuid("supplier_id", required=True),
        *_document_columns(),
        sa.Column("order_date", sa.Date()),
        sa.Column("expected_date", sa.Date()),
        sa.Column("total_amount", QTY, nullable=False, server_default="0"),
        _text("currency"),
        _text("notes"),
        _uuid("delivery_location_id"),
        _uuid("created_by"),
        _uuid("approved_by"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["delivery_location_id"], ["locations.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "po_number", name="uq_purchase_orders_tenant_number"),
    )
    op.create_table(
        "purchase_order_lines",
        *_base_columns(),
        _uuid("purchase_order_id", required=True),
        sa.Column("line_no", sa.Integer(), nullable=False),
        _text("item_sku", required=True),
        _text("description"),
        sa.Column("qty_ordered", QTY, nullable=False),
        sa.Column("qty_received", QTY, nullable=False, server_default="0"),
        _text("uom"),
        sa.Column("unit_price", QTY, nullable=False, server_default="0"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["purchase_order_id"], ["purchase_orders.id"], ondelete="CASCADE"),
        sa.CheckConstraint("qty_received >= 0 AND qty_received <= qty_ordered", name="received_within_ordered"),
    )
    op.create_table(
        "purchase_returns",
        *_base_columns(),
        _text("return_number", required=True),
        _uuid("supplier_id", required=True),
        _uuid("purchase_order_id"),
        _uuid("location_id", required=True),
        _text("return_type", required=True),
        *_document_columns(),
        _text("reason"),
        _text("resolution"),
        sa.Column("shipped_at", sa.Date()),
        _uuid("created_by"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["purchase_order_id"], ["purchase_orders.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("tenant_id", "return_number", name="uq_purchase_returns_tenant_number"),
    )
    op.create_table(
        "purchase_return_lines",
        *_base_columns(),
        _uuid("purchase_return_id", required=True),
        sa.Column("line_no", sa.Integer(), nullable=False),
        _text("item_sku", required=True),
        sa.Column("quantity", QTY, nullable=False),
        _text("uom"),
        _text("description"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["purchase_return_id"], ["purchase_returns.id"], ondelete="CASCADE"),
    )

    # SALES
    op.create_table(
        "customers",
        *_base_columns(),
        _text("code", required=True),
        _text("name", required=True),
        _text("email"),
        _text("phone"),
        sa.Column("billing_address", postgresql.JSONB(), server_default=JSONB_EMPTY, nullable=False),
        sa.Column("balance", QTY, nullable=False, server_default="0"),
        sa.Column("credit_limit", QTY, nullable=True),
        _tenant_fk(),
        sa.UniqueConstraint("tenant_id", "code", name="uq_customers_tenant_code"),
    )
    op.create_table(
        "sales_invoices",
        *_base_columns(),
        _text("invoice_number", required=True),
        _uuid("customer_id", required=True),
        *_document_columns(),
        sa.Column("issue_date", sa.Date()),
        sa.Column("due_date", sa.Date()),
        _text("currency"),
        sa.Column("subtotal", QTY, nullable=False, server_default="0"),
        sa.Column("tax_amount", QTY, nullable=False, server_default="0"),
        sa.Column("total", QTY, nullable=False, server_default="0"),
        sa.Column("balance_due", QTY, nullable=False, server_default="0"),
        _text("notes"),
        _uuid("created_by"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("tenant_id", "invoice_number", name="uq_sales_invoices_tenant_number"),
        sa.CheckConstraint("balance_due >= 0", name="balance_due_not_negative"),
    )
    op.create_table(
        "sales_invoice_lines",
        *_base_columns(),
        _uuid("sales_invoice_id", required=True),
        sa.Column("line_no", sa.Integer(), nullable=False),
        _text("item_sku", required=True),
        _text("description"),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("unit_price", QTY, nullable=False),
        sa.Column("tax_rate", sa.Numeric(9, 6), nullable=False, server_default="0"),
        sa.Column("line_total", QTY, nullable=False),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["sales_invoice_id"], ["sales_invoices.id"], ondelete="CASCADE"),
    )
    op.create_table(
        "customer_payments",
        *_base_columns(),
        _uuid("customer_id", required=True),
        _uuid("sales_invoice_id", required=True),
        sa.Column("amount", QTY, nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        _text("method"),
        _text("reference"),
        _uuid("created_by"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["sales_invoice_id"], ["sales_invoices.id"], ondelete="RESTRICT"),
        sa.CheckConstraint("amount > 0", name="amount_positive"),
    )
    op.create_table(
        "customer_ledger_entries",
        *_base_columns(),
        _uuid("customer_id", required=True),
        _text("entry_type", required=True),
        sa.Column("debit", QTY, nullable=False, server_default="0"),
        sa.Column("credit", QTY, nullable=False, server_default="0"),
        sa.Column("balance_after", QTY, nullable=False),
        _text("ref_type"),
        _uuid("ref_id"),
        _text("description"),
        *_doc_type(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
        sa.Index("ix_customer_ledger_entries_customer", "tenant_id", "customer_id", "created_at"),
    )
    op.create_table(
        "sales_returns",
        *_base_columns(),
        _text("return_number", required=True),
        _uuid("customer_id", required=True),
        _uuid("sales_invoice_id"),
        _uuid("location_id", required=True),
        *_document_columns(),
        _text("reason"),
        sa.Column("credit_amount", QTY, nullable=False, server_default="0"),
        _uuid("created_by"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["sales_invoice_id"], ["sales_invoices.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("tenant_id", "return_number", name="uq_sales_returns_tenant_number"),
    )
    op.create_table(
        "sales_return_lines",
        *_base_columns(),
        _uuid("sales_return_id", required=True),
        sa.Column("line_no", sa.Integer(), nullable=False),
        _text("item_sku", required=True),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("unit_price", QTY, nullable=False, server_default="0"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["sales_return_id"], ["sales_returns.id"], ondelete="CASCADE"),
    )

    # MAINTENANCE / SAFETY
    op.create_table(
        "assets",
        *_base_columns(),
        _text("code", required=True),
        _text("name", required=True),
        _text("type"),
        _uuid("location_id"),
        _text("status"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_assets_tenant_code"),
    )
    op.create_table(
        "maintenance_work_orders",
        *_base_columns(),
        _uuid("asset_id"),
        _text("wo_number", required=True),
        _text("status", required=True),
        _text("priority"),
        _text("description"),
        sa.Column("requires_ptw", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("due_date", sa.Date()),
        _moment("started_at"),
        _moment("completed_at"),
        _uuid("created_by"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["asset_id"], ["assets.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "wo_number", name="uq_maintenance_work_orders_tenant_number"),
    )
    op.create_table(
        "loto_procedures",
        *_base_columns(),
        _text("code", required=True),
        _text("name", required=True),
        _uuid("asset_id"),
        sa.Column("energy_sources", postgresql.JSONB(), server_default=JSONB_EMPTY_LIST, nullable=False),
        sa.Column("isolation_points", postgresql.JSONB(), server_default=JSONB_EMPTY_LIST, nullable=False),
        sa.Column("lockout_steps", postgresql.JSONB(), server_default=JSONB_EMPTY_LIST, nullable=False),
        sa.Column("required_ppe", postgresql.JSONB(), server_default=JSONB_EMPTY_LIST, nullable=False),
        sa.Column("is_approved", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        _uuid("approved_by"),
        _moment("approved_at"),
        _uuid("created_by"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["asset_id"], ["assets.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_loto_procedures_tenant_code"),
    )
    op.create_table(
        "loto_executions",
        *_base_columns(),
        _uuid("procedure_id", required=True),
        _uuid("work_order_id"),
        _text("status", required=True),
        sa.Column("locks", postgresql.JSONB(), server_default=JSONB_EMPTY_LIST, nullable=False),
        sa.Column("zero_energy_verified", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        _moment("locked_at"),
        _moment("unlocked_at"),
        _uuid("executed_by"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["procedure_id"], ["loto_procedures.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["work_order_id"], ["maintenance_work_orders.id"], ondelete="SET NULL"),
    )
    op.create_table(
        "permits_to_work",
        *_base_columns(),
        _text("permit_number", required=True),
        _text("permit_type", required=True),
        _text("status", required=True),
        _text("title", required=True),
        _text("description"),
        _text("work_location"),
        sa.Column("hazards_identified", postgresql.JSONB(), server_default=JSONB_EMPTY_LIST, nullable=False),
        sa.Column("control_measures", postgresql.JSONB(), server_default=JSONB_EMPTY_LIST, nullable=False),
        sa.Column("required_ppe", postgresql.JSONB(), server_default=JSONB_EMPTY_LIST, nullable=False),
        _text("emergency_procedures"),
        sa.Column("emergency_contacts", postgresql.JSONB(), server_default=JSONB_EMPTY_LIST, nullable=False),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_to", sa.DateTime(timezone=True), nullable=False),
        sa.Column("requires_loto", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        _uuid("loto_execution_id"),
        _uuid("work_order_id"),
        _uuid("requested_by"),
        _uuid("approved_by"),
        _moment("activated_at"),
        _moment("closed_at"),
        _text("closing_notes"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["loto_execution_id"], ["loto_executions.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["work_order_id"], ["maintenance_work_orders.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "permit_number", name="uq_permits_to_work_tenant_number"),
        sa.CheckConstraint("valid_to > valid_from", name="validity_window"),
    )

    # ENGINE
    op.create_table(
        "state_transition_logs",
        *_base_columns(updated_at=False),
        _text("entity_type", required=True),
        _uuid("entity_id", required=True),
        _text("action", required=True),
        _text("from_state"),
        _text("to_state", required=True),
        _uuid("user_id", required=True),
        _text("reason_code"),
        _text("reason_text"),
        *_doc_type(),
        sa.Column("details", postgresql.JSONB(), server_default=JSONB_EMPTY, nullable=False),
        sa.Column("sod_check", postgresql.JSONB(), server_default=JSONB_EMPTY, nullable=False),
        sa.Column("eligibility", postgresql.JSONB(), nullable=True),
        _text("prev_hash"),
        _text("integrity_hash", required=True),
        _tenant_fk(),
        sa.Index("ix_state_transition_logs_entity", "tenant_id", "entity_type", "entity_id", "created_at"),
        sa.Index("ix_state_transition_logs_user_action", "tenant_id", "user_id", "entity_type", "action"),
    )
    # The transition log is append-only
    op.execute(
        """
        CREATE OR REPLACE FUNCTION forbid_transition_log_mutation()
        RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'state_transition_logs is append-only';
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER state_transition_logs_append_only
        BEFORE UPDATE OR DELETE ON state_transition_logs
        FOR EACH ROW EXECUTE FUNCTION forbid_transition_log_mutation();
        """
    )

    op.create_table(
        "idempotency_keys",
        *_base_columns(),
        _text("key", required=True),
        _text("operation", required=True),
        _text("entity_type", required=True),
        _uuid("entity_id"),
        _text("status", required=True),
        sa.Column("response", postgresql.JSONB(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _tenant_fk(),
        sa.UniqueConstraint("tenant_id", "key", name="uq_idempotency_keys_tenant_key"),
        sa.Index("ix_idempotency_keys_expires_at", "expires_at"),
    )
    op.create_table(
        "sod_rules",
        *_base_columns(),
        _text("code", required=True),
        _text("entity_type", required=True),
        sa.Column("first_actions", postgresql.ARRAY(sa.Text()), nullable=False),
        _text("second_action", required=True),
        sa.Column("scope", sa.Text(), nullable=False, server_default="SAME_DOCUMENT"),
        _text("description"),
        sa.Column("is_enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _tenant_fk(),
        sa.UniqueConstraint("tenant_id", "code", name="uq_sod_rules_tenant_code"),
    )
    op.create_table(
        "audit_log",
        *_base_columns(),
        _text("entity_type", required=True),
        _uuid("entity_id"),
        _text("action", required=True),
        _uuid("user_id"),
        sa.Column("changes", postgresql.JSONB(), server_default=JSONB_EMPTY, nullable=False),
        _tenant_fk(),
        sa.Index("ix_audit_log_entity", "tenant_id", "entity_type", "entity_id"),
    )

    for table in STATUS_TABLES:
        op.create_index(f"ix_{table}_tenant_status", table, ["tenant_id", "status"])
    for table in TENANT_SCOPED:
        _isolate(table)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS state_transition_logs_append_only ON state_transition_logs;")
    op.execute("DROP FUNCTION IF EXISTS forbid_transition_log_mutation();")

    for table in reversed(TENANT_SCOPED):
        op.drop_table(table)
