"""esquema inicial: productos, clientes, cajas, ventas, devoluciones y compras

Revision ID: 20261019_initial_schema
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "stockmovementtype": ("ENTRADA", "SALIDA", "AJUSTE", "TRANSFERENCIA"),
    "clientstatus": ("ACTIVE", "DELINQUENT"),
    "cashregisterstatus": ("OPEN", "CLOSED"),
    "cashmovementtype": ("APERTURA", "CIERRE", "INGRESO", "EGRESO"),
    "cashmovementconcept": ("VENTA", "ANULACION_VENTA", "DEVOLUCION", "MANUAL", "APERTURA", "CIERRE"),
    "salestatus": ("COMPLETADO", "CANCELADO", "REEMBOLSADO", "PARCIALMENTE_REEMBOLSADO"),
    "paymentmethod": (
        "EFECTIVO", "TARJETA_DEBITO", "TARJETA_CREDITO", "TRANSFERENCIA",
        "QR", "CUENTA_CORRIENTE", "MIXTO", "OTRO",
    ),
    "discounttype": ("FIXED", "PERCENTAGE"),
    "refundtype": ("TOTAL", "PARCIAL"),
    "purchasestatus": ("RECIBIDA", "ANULADA"),
}


def enum(name):
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def uuid_pk():
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def uuid_col(name, nullable=False, fk=None, index=False):
    args = [sa.ForeignKey(fk)] if fk else []
    return sa.Column(name, postgresql.UUID(as_uuid=True), *args, nullable=nullable, index=index)


def money(name, nullable=False, default="0"):
    return sa.Column(name, sa.Numeric(15, 2), nullable=nullable,
                     server_default=default if not nullable else None)


def tenant_and_timestamps():
    return [
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "products",
        uuid_pk(),
        sa.Column("name", sa.String(150), nullable=False),
        sa.Column("sku", sa.String(50), nullable=False),
        sa.Column("barcode", sa.String(50), nullable=True),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_stock", sa.Integer(), nullable=False, server_default="0"),
        money("cost"),
        money("price"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *tenant_and_timestamps(),
        sa.UniqueConstraint("tenant_id", "sku", name="uq_product_tenant_sku"),
        sa.CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
    )

    op.create_table(
        "product_variants",
        uuid_pk(),
        uuid_col("product_id", fk="products.id", index=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("sku", sa.String(50), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_stock", sa.Integer(), nullable=False, server_default="0"),
        money("price", nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *tenant_and_timestamps(),
        sa.UniqueConstraint("tenant_id", "sku", name="uq_variant_tenant_sku"),
        sa.CheckConstraint("stock >= 0", name="ck_variant_stock_non_negative"),
    )

    op.create_table(
        "stock_movements",
        uuid_pk(),
        uuid_col("product_id", fk="products.id", index=True),
        uuid_col("variant_id", nullable=True, fk="product_variants.id", index=True),
        sa.Column("type", enum("stockmovementtype"), nullable=False, index=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("previous_stock", sa.Integer(), nullable=False),
        sa.Column("new_stock", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("reference", sa.String(100), nullable=True, index=True),
        uuid_col("user_id", nullable=True),
        *tenant_and_timestamps(),
    )

    op.create_table(
        "clients",
        uuid_pk(),
        sa.Column("name", sa.String(150), nullable=False, index=True),
        sa.Column("email", sa.String(150), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("tax_id", sa.String(30), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("has_credit_account", sa.Boolean(), nullable=False, server_default=sa.false()),
        money("credit_limit"),
        money("current_debt"),
        sa.Column("status", enum("clientstatus"), nullable=False, server_default="ACTIVE", index=True),
        *tenant_and_timestamps(),
        sa.CheckConstraint("current_debt >= 0", name="ck_client_debt_non_negative"),
        sa.CheckConstraint("credit_limit >= 0", name="ck_client_credit_limit_non_negative"),
    )

    op.create_table(
        "client_payments",
        uuid_pk(),
        uuid_col("client_id", fk="clients.id", index=True),
        money("amount", default=None),
        sa.Column("payment_method", sa.String(30), nullable=False),
        sa.Column("reference", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        uuid_col("user_id"),
        *tenant_and_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_client_payment_amount_positive"),
    )

    op.create_table(
        "client_activity_logs",
        uuid_pk(),
        uuid_col("client_id", fk="clients.id", index=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        uuid_col("user_id", nullable=True),
        *tenant_and_timestamps(),
    )

    op.create_table(
        "cash_registers",
        uuid_pk(),
        uuid_col("user_id", index=True),
        sa.Column("status", enum("cashregisterstatus"), nullable=False, server_default="OPEN", index=True),
        money("opening_amount"),
        money("closing_amount", nullable=True),
        money("expected_amount", nullable=True),
        money("difference", nullable=True),
        money("total_cash"),
        money("total_card"),
        money("total_transfer"),
        money("total_other"),
        sa.Column("sales_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *tenant_and_timestamps(),
        sa.CheckConstraint("opening_amount >= 0", name="ck_cash_register_opening_non_negative"),
    )
    op.create_index(
        "uq_cash_register_open_per_user",
        "cash_registers",
        ["tenant_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    op.create_table(
        "cash_movements",
        uuid_pk(),
        uuid_col("cash_register_id", nullable=True, fk="cash_registers.id", index=True),
        sa.Column("type", enum("cashmovementtype"), nullable=False, index=True),
        sa.Column("concept", enum("cashmovementconcept"), nullable=False, server_default="MANUAL"),
        money("amount", default=None),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("reference", sa.String(100), nullable=True, index=True),
        uuid_col("user_id"),
        *tenant_and_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_cash_movement_amount_non_negative"),
    )

    op.create_table(
        "sales",
        uuid_pk(),
        sa.Column("ticket_number", sa.Integer(), nullable=False),
        uuid_col("user_id", index=True),
        uuid_col("cash_register_id", nullable=True, fk="cash_registers.id", index=True),
        uuid_col("client_id", nullable=True, fk="clients.id", index=True),
        sa.Column("status", enum("salestatus"), nullable=False, server_default="COMPLETADO", index=True),
        money("subtotal", default=None),
        money("discount"),
        sa.Column("discount_type", enum("discounttype"), nullable=False, server_default="FIXED"),
        money("total", default=None),
        sa.Column("payment_method", enum("paymentmethod"), nullable=False, index=True),
        sa.Column("has_mixed_payment", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        uuid_col("canceled_by", nullable=True),
        *tenant_and_timestamps(),
        sa.UniqueConstraint("tenant_id", "ticket_number", name="uq_sale_tenant_ticket"),
        sa.CheckConstraint("total >= 0", name="ck_sale_total_non_negative"),
    )

    op.create_table(
        "sale_items",
        uuid_pk(),
        uuid_col("sale_id", fk="sales.id", index=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        uuid_col("product_id", fk="products.id", index=True),
        uuid_col("variant_id", nullable=True, fk="product_variants.id"),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        money("price", default=None),
        money("subtotal", default=None),
        *tenant_and_timestamps(),
        sa.CheckConstraint("quantity > 0", name="ck_sale_item_quantity_positive"),
    )

    op.create_table(
        "sale_payments",
        uuid_pk(),
        uuid_col("sale_id", fk="sales.id", index=True),
        sa.Column("payment_method", enum("paymentmethod"), nullable=False),
        money("amount", default=None),
        sa.Column("reference", sa.String(100), nullable=True),
        *tenant_and_timestamps(),
    )

    op.create_table(
        "refunds",
        uuid_pk(),
        uuid_col("sale_id", fk="sales.id", index=True),
        sa.Column("type", enum("refundtype"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        money("refund_amount", default=None),
        sa.Column("restock_items", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text(), nullable=True),
        uuid_col("user_id"),
        *tenant_and_timestamps(),
        sa.CheckConstraint("refund_amount > 0", name="ck_refund_amount_positive"),
    )

    op.create_table(
        "refund_items",
        uuid_pk(),
        uuid_col("refund_id", fk="refunds.id", index=True),
        uuid_col("sale_item_id", fk="sale_items.id", index=True),
        uuid_col("product_id", fk="products.id"),
        sa.Column("quantity", sa.Integer(), nullable=False),
        money("price", default=None),
        money("subtotal", default=None),
        *tenant_and_timestamps(),
        sa.CheckConstraint("quantity > 0", name="ck_refund_item_quantity_positive"),
    )

    op.create_table(
        "purchases",
        uuid_pk(),
        sa.Column("supplier_name", sa.String(255), nullable=False),
        sa.Column("invoice_number", sa.String(50), nullable=True),
        sa.Column("status", enum("purchasestatus"), nullable=False, server_default="RECIBIDA", index=True),
        money("subtotal", default=None),
        money("tax"),
        money("total", default=None),
        sa.Column("notes", sa.Text(), nullable=True),
        uuid_col("user_id"),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        uuid_col("voided_by", nullable=True),
        *tenant_and_timestamps(),
    )

    op.create_table(
        "purchase_items",
        uuid_pk(),
        uuid_col("purchase_id", fk="purchases.id", index=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        uuid_col("product_id", fk="products.id", index=True),
        uuid_col("variant_id", nullable=True, fk="product_variants.id"),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        money("cost", default=None),
        money("subtotal", default=None),
        *tenant_and_timestamps(),
        sa.CheckConstraint("quantity > 0", name="ck_purchase_item_quantity_positive"),
    )


def downgrade() -> None:
    for table in (
        "purchase_items", "purchases",
        "refund_items", "refunds",
        "sale_payments", "sale_items", "sales",
        "cash_movements",
    ):
        op.drop_table(table)
    op.drop_index("uq_cash_register_open_per_user", table_name="cash_registers")
    for table in (
        "cash_registers",
        "client_activity_logs", "client_payments", "clients",
        "stock_movements", "product_variants", "products",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for name in ENUMS:
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
