"""Initial marketplace schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates tables for:
- user_accounts, business_profiles: profile store mirror
- products: catalog with commission rates
- referral_links: one link per affiliate and product
- sales, payment_transactions, settlement_issues: checkout and settlement
- wallets, wallet_transactions: balances and their ledger
- withdrawal_requests: payouts
- notifications, processed_webhook_events
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(12, 2)

user_role = sa.Enum("AFFILIATE", "BUSINESS", "ADMIN", name="userrole")
sale_status = sa.Enum("PENDING", "COMPLETED", "CANCELLED", name="salestatus")
payment_status = sa.Enum("PENDING", "COMPLETED", "FAILED", name="paymentstatus")
settlement_step = sa.Enum(
    "AFFILIATE_CREDIT", "BUSINESS_CREDIT", "CONVERSION", "PAID_AFTER_CANCEL", name="settlementstep"
)
withdrawal_status = sa.Enum("PENDING", "APPROVED", "REJECTED", "COMPLETED", name="withdrawalstatus")


def upgrade() -> None:
    """Create marketplace tables."""

    # Profiles
    op.create_table(
        "user_accounts",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("role", user_role, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_accounts_email", "user_accounts", ["email"], unique=True)

    op.create_table(
        "business_profiles",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("verified_by", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    # Catalog
    op.create_table(
        "products",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("business_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("price", MONEY, nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("price > 0", name="ck_products_price_positive"),
        sa.CheckConstraint("commission_rate >= 0 AND commission_rate <= 100", name="ck_products_commission_rate"),
        sa.ForeignKeyConstraint(["business_id"], ["business_profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_products_business_id", "products", ["business_id"])

    # Referral links
    op.create_table(
        "referral_links",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("affiliate_id", sa.String(36), nullable=False),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("clicks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("conversions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("clicks >= 0", name="ck_referral_links_clicks"),
        sa.CheckConstraint("conversions >= 0", name="ck_referral_links_conversions"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["affiliate_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("affiliate_id", "product_id", name="uq_referral_links_affiliate_product"),
    )
    op.create_index("ix_referral_links_code", "referral_links", ["code"], unique=True)
    op.create_index("ix_referral_links_product_id", "referral_links", ["product_id"])
    op.create_index("ix_referral_links_affiliate_id", "referral_links", ["affiliate_id"])

    # Sales
    op.create_table(
        "sales",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("referral_link_id", sa.String(36), nullable=False),
        sa.Column("binding_id", sa.String(64), nullable=True),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("commission_amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sale_status, nullable=False),
        sa.Column("transaction_reference", sa.String(64), nullable=False),
        sa.Column("conversion_recorded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_sales_amount_positive"),
        sa.CheckConstraint("commission_amount >= 0", name="ck_sales_commission_non_negative"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["referral_link_id"], ["referral_links.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sales_transaction_reference", "sales", ["transaction_reference"], unique=True)
    op.create_index("ix_sales_product_id", "sales", ["product_id"])
    op.create_index("ix_sales_referral_link_id", "sales", ["referral_link_id"])
    op.create_index("ix_sales_binding_id", "sales", ["binding_id"])
    op.create_index("ix_sales_status", "sales", ["status"])
    op.create_index("ix_sales_created_at", "sales", ["created_at"])

    op.create_table(
        "payment_transactions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("sale_id", sa.String(36), nullable=True),
        sa.Column("transaction_reference", sa.String(64), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("processor_transaction_id", sa.String(64), nullable=True),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("status", payment_status, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_payment_transactions_transaction_reference",
        "payment_transactions",
        ["transaction_reference"],
        unique=True,
    )
    op.create_index("ix_payment_transactions_sale_id", "payment_transactions", ["sale_id"])
    op.create_index(
        "ix_payment_transactions_processor_transaction_id", "payment_transactions", ["processor_transaction_id"]
    )

    op.create_table(
        "settlement_issues",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("sale_id", sa.String(36), nullable=False),
        sa.Column("step", settlement_step, nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_settlement_issues_sale_id", "settlement_issues", ["sale_id"])
    op.create_index("ix_settlement_issues_resolved", "settlement_issues", ["resolved"])

    # Withdrawals (referenced by wallet_transactions)
    op.create_table(
        "withdrawal_requests",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("bank_name", sa.String(255), nullable=False),
        sa.Column("account_number", sa.String(20), nullable=False),
        sa.Column("account_name", sa.String(255), nullable=False),
        sa.Column("status", withdrawal_status, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("completion_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("processed_by", sa.String(36), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("approved_by", sa.String(36), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("completed_by", sa.String(36), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["user_accounts.id"]),
        sa.ForeignKeyConstraint(["processed_by"], ["user_accounts.id"]),
        sa.ForeignKeyConstraint(["approved_by"], ["user_accounts.id"]),
        sa.ForeignKeyConstraint(["completed_by"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_withdrawal_requests_user_id", "withdrawal_requests", ["user_id"])
    op.create_index("ix_withdrawal_requests_status", "withdrawal_requests", ["status"])

    # Wallets
    op.create_table(
        "wallets",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("balance", MONEY, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_wallets_user_id", "wallets", ["user_id"], unique=True)

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("wallet_id", sa.String(36), nullable=False),
        sa.Column("sale_id", sa.String(36), nullable=True),
        sa.Column("withdrawal_request_id", sa.String(36), nullable=True),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("balance_after", MONEY, nullable=False),
        sa.Column("transaction_type", sa.String(50), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["wallet_id"], ["wallets.id"]),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["withdrawal_request_id"], ["withdrawal_requests.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("wallet_id", "sale_id", "transaction_type", name="uq_wallet_tx_sale_type"),
        sa.UniqueConstraint(
            "wallet_id", "withdrawal_request_id", "transaction_type", name="uq_wallet_tx_withdrawal_type"
        ),
    )
    op.create_index("ix_wallet_transactions_wallet_id", "wallet_transactions", ["wallet_id"])
    op.create_index("ix_wallet_transactions_sale_id", "wallet_transactions", ["sale_id"])
    op.create_index("ix_wallet_transactions_created_at", "wallet_transactions", ["created_at"])

    # Notifications
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    # Webhook idempotency
    op.create_table(
        "processed_webhook_events",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_processed_webhook_events_event_id", "processed_webhook_events", ["event_id"], unique=True)


def downgrade() -> None:
    """Drop marketplace tables."""
    op.drop_table("processed_webhook_events")
    op.drop_table("notifications")
    op.drop_table("wallet_transactions")
    op.drop_table("wallets")
    op.drop_table("withdrawal_requests")
    op.drop_table("settlement_issues")
    op.drop_table("payment_transactions")
    op.drop_table("sales")
    op.drop_table("referral_links")
    op.drop_table("products")
    op.drop_table("business_profiles")
    op.drop_table("user_accounts")

    for enum in (withdrawal_status, settlement_step, payment_status, sale_status, user_role):
        enum.drop(op.get_bind(), checkfirst=True)
