"""Tests for the maintenance CLI."""

from datetime import timedelta
from decimal import Decimal

from typer.testing import CliRunner

from pauaffiliate.cli import app
from pauaffiliate.referral.models import ReferralLink
from pauaffiliate.sales.models import Sale, SaleStatus
from pauaffiliate.sales.service import sale_service
from pauaffiliate.storage.db import db
from pauaffiliate.storage.models import utcnow
from pauaffiliate.wallet.models import Wallet, WalletTransactionType
from pauaffiliate.wallet.service import wallet_service

runner = CliRunner()


class TestCli:
    def test_init(self):
        result = runner.invoke(app, ["init"])

        assert result.exit_code == 0
        assert "Database initialized" in result.output

    def test_expire_sales(self, binding, product):
        pending = sale_service.create_pending_sale(binding, product.id)
        with db.session() as session:
            session.query(Sale).update({Sale.created_at: utcnow() - timedelta(hours=30)})

        result = runner.invoke(app, ["expire-sales"])

        assert result.exit_code == 0
        assert "Expired 1 pending sale" in result.output
        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.CANCELLED

    def test_retry_with_nothing_open(self):
        result = runner.invoke(app, ["retry-settlements"])

        assert result.exit_code == 0
        assert "No open settlement issues" in result.output

    def test_audit_flags_mismatch(self, affiliate):
        wallet_service.credit(affiliate.id, Decimal("500"), WalletTransactionType.COMMISSION)
        assert runner.invoke(app, ["audit-wallets"]).exit_code == 0

        with db.session() as session:
            session.query(Wallet).update({Wallet.balance: Decimal("900.00")})

        result = runner.invoke(app, ["audit-wallets"])
        assert result.exit_code == 1
        assert "MISMATCH" in result.output

    def test_purge_needs_confirmation(self, referral_link):
        refused = runner.invoke(app, ["purge-referral-links"])
        assert refused.exit_code == 1

        purged = runner.invoke(app, ["purge-referral-links", "--yes"])
        assert purged.exit_code == 0
        with db.session() as session:
            assert session.query(ReferralLink).count() == 0

    def test_cleanup_webhook_events(self):
        result = runner.invoke(app, ["cleanup-webhook-events", "--days", "7"])

        assert result.exit_code == 0
        assert "Deleted 0 processed webhook event(s)" in result.output
