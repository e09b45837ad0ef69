"""Initial schema: stores, customers, conversations, messages, products, orders.

Revision ID: 001
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _enum(name: str, *values: str) -> postgresql.ENUM:
    return postgresql.ENUM(*values, name=name, create_type=False)


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def upgrade() -> None:
    op.execute("CREATE TYPE payment_method AS ENUM ('qpay', 'cash', 'bank_transfer')")
    op.execute(
        "CREATE TYPE conversation_status AS ENUM "
        "('active', 'waiting_for_info', 'order_created', 'closed')"
    )
    op.execute(
        "CREATE TYPE conversation_intent AS ENUM "
        "('browsing', 'inquiry', 'ordering', 'order_status')"
    )
    op.execute("CREATE TYPE message_sender AS ENUM ('customer', 'bot', 'admin')")
    op.execute(
        "CREATE TYPE order_status AS ENUM ('pending', 'confirmed', 'processing', "
        "'shipped', 'delivered', 'completed', 'cancelled')"
    )
    op.execute("CREATE TYPE payment_status AS ENUM ('pending', 'paid', 'failed', 'refunded')")

    op.create_table(
        "stores",
        *_base_columns(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("facebook_page_id", sa.String(64), nullable=True),
        sa.Column("instagram_business_id", sa.String(64), nullable=True),
        sa.Column("page_access_token", sa.Text(), nullable=True),
        sa.Column("google_sheet_id", sa.String(255), nullable=True),
        sa.Column("column_mapping", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("sheet_headers", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("has_delivery", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("pickup_address", sa.Text(), nullable=True),
        sa.Column(
            "payment_method",
            _enum("payment_method", "qpay", "cash", "bank_transfer"),
            nullable=False,
            server_default="qpay",
        ),
        sa.Column("custom_instructions", sa.Text(), nullable=True),
        sa.Column("currency", sa.String(8), nullable=False, server_default="MNT"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("settings", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_stores")),
        sa.UniqueConstraint("facebook_page_id", name=op.f("uq_stores_facebook_page_id")),
        sa.UniqueConstraint(
            "instagram_business_id", name=op.f("uq_stores_instagram_business_id")
        ),
    )

    op.create_table(
        "customers",
        *_base_columns(),
        sa.Column("channel_user_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default="Unknown User"),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("total_orders", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_customers")),
        sa.UniqueConstraint("channel_user_id", name=op.f("uq_customers_channel_user_id")),
    )

    op.create_table(
        "conversations",
        *_base_columns(),
        sa.Column("store_id", sa.UUID(), nullable=False),
        sa.Column("customer_id", sa.UUID(), nullable=False),
        sa.Column("channel_conversation_id", sa.String(64), nullable=False),
        sa.Column(
            "status",
            _enum("conversation_status", "active", "waiting_for_info", "order_created", "closed"),
            nullable=False,
            server_default="active",
        ),
        sa.Column(
            "intent",
            _enum("conversation_intent", "browsing", "inquiry", "ordering", "order_status"),
            nullable=True,
        ),
        sa.Column("is_manual_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("message_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "last_activity",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("extra_data", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.ForeignKeyConstraint(
            ["store_id"],
            ["stores.id"],
            name=op.f("fk_conversations_store_id_stores"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["customer_id"],
            ["customers.id"],
            name=op.f("fk_conversations_customer_id_customers"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_conversations")),
        sa.UniqueConstraint(
            "store_id",
            "channel_conversation_id",
            name=op.f("uq_conversations_store_id_channel_conversation_id"),
        ),
    )
    op.create_index(op.f("ix_conversations_store_id"), "conversations", ["store_id"])
    op.create_index(op.f("ix_conversations_customer_id"), "conversations", ["customer_id"])

    op.create_table(
        "messages",
        *_base_columns(),
        sa.Column("conversation_id", sa.UUID(), nullable=False),
        sa.Column(
            "sender",
            _enum("message_sender", "customer", "bot", "admin"),
            nullable=False,
        ),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("extra_data", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.ForeignKeyConstraint(
            ["conversation_id"],
            ["conversations.id"],
            name=op.f("fk_messages_conversation_id_conversations"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_messages")),
        sa.UniqueConstraint(
            "conversation_id", "position", name=op.f("uq_messages_conversation_id_position")
        ),
        sa.UniqueConstraint(
            "conversation_id",
            "external_id",
            name=op.f("uq_messages_conversation_id_external_id"),
        ),
    )
    op.create_index(op.f("ix_messages_conversation_id"), "messages", ["conversation_id"])

    op.create_table(
        "products",
        *_base_columns(),
        sa.Column("store_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("category", sa.String(255), nullable=False, server_default=""),
        sa.Column("price", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("attributes", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["store_id"],
            ["stores.id"],
            name=op.f("fk_products_store_id_stores"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_products")),
        sa.UniqueConstraint(
            "store_id", "name", "category", name=op.f("uq_products_store_id_name_category")
        ),
    )
    op.create_index(op.f("ix_products_store_id"), "products", ["store_id"])

    op.create_table(
        "orders",
        *_base_columns(),
        sa.Column("store_id", sa.UUID(), nullable=False),
        sa.Column("customer_id", sa.UUID(), nullable=False),
        sa.Column("conversation_id", sa.UUID(), nullable=True),
        sa.Column("items", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("phone_number", sa.String(32), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("has_delivery", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("pickup_address", sa.Text(), nullable=True),
        sa.Column(
            "status",
            _enum(
                "order_status",
                "pending",
                "confirmed",
                "processing",
                "shipped",
                "delivered",
                "completed",
                "cancelled",
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("total_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "payment_status",
            _enum("payment_status", "pending", "paid", "failed", "refunded"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "payment_method",
            _enum("payment_method", "qpay", "cash", "bank_transfer"),
            nullable=True,
        ),
        sa.Column("invoice_id", sa.String(255), nullable=True),
        sa.Column("invoice_qr", sa.Text(), nullable=True),
        sa.Column("invoice_url", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ai_extraction", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ["store_id"],
            ["stores.id"],
            name=op.f("fk_orders_store_id_stores"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["customer_id"],
            ["customers.id"],
            name=op.f("fk_orders_customer_id_customers"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["conversation_id"],
            ["conversations.id"],
            name=op.f("fk_orders_conversation_id_conversations"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_orders")),
    )
    op.create_index(op.f("ix_orders_store_id"), "orders", ["store_id"])
    op.create_index(op.f("ix_orders_customer_id"), "orders", ["customer_id"])
    op.create_index(op.f("ix_orders_conversation_id"), "orders", ["conversation_id"])
    op.create_index(op.f("ix_orders_invoice_id"), "orders", ["invoice_id"])


def downgrade() -> None:
    op.drop_table("orders")
    op.drop_table("products")
    op.drop_table("messages")
    op.drop_table("conversations")
    op.drop_table("customers")
    op.drop_table("stores")

    op.execute("DROP TYPE IF EXISTS payment_status")
    op.execute("DROP TYPE IF EXISTS order_status")
    op.execute("DROP TYPE IF EXISTS message_sender")
    op.execute("DROP TYPE IF EXISTS conversation_intent")
    op.execute("DROP TYPE IF EXISTS conversation_status")
    op.execute("DROP TYPE IF EXISTS payment_method")
