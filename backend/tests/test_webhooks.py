"""
Tests for the Flutterwave webhook endpoint

Tests cover:
1. Signature checks
2. Settlement of successful charges
3. Redelivery and events that are only acknowledged
4. Processed-event cleanup
"""

import json
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import charge_data
from pauaffiliate.api.main import create_app
from pauaffiliate.api.v1.webhooks import cleanup_old_events, is_event_processed, mark_event_processed
from pauaffiliate.auth.models import ProcessedWebhookEvent
from pauaffiliate.payments.flutterwave import flutterwave_gateway
from pauaffiliate.sales.models import SaleStatus
from pauaffiliate.sales.service import sale_service
from pauaffiliate.storage.db import db
from pauaffiliate.storage.models import utcnow
from pauaffiliate.wallet.service import wallet_service

# Test constants
URL = "/api/v1/webhooks/flutterwave"
SIGNED = {"verif-hash": "webhook-hash-for-tests", "Content-Type": "application/json"}


def event_body(data: dict, event: str = "charge.completed") -> str:
    return json.dumps({"event": event, "data": data})


@pytest.fixture
def client():
    return TestClient(create_app())


@pytest.fixture
def pending(binding, product):
    return sale_service.create_pending_sale(binding, product.id)


class TestSignature:
    """Tests for webhook authentication."""

    def test_missing_signature(self, client, pending):
        response = client.post(URL, content=event_body(charge_data(pending.tx_ref)))

        assert response.status_code == 401
        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.PENDING

    def test_wrong_signature(self, client, pending):
        response = client.post(
            URL, content=event_body(charge_data(pending.tx_ref)), headers={"verif-hash": "guess"}
        )

        assert response.status_code == 401

    def test_unconfigured_secret(self, client, pending, monkeypatch):
        monkeypatch.setattr(flutterwave_gateway, "webhook_secret", None)

        response = client.post(URL, content=event_body(charge_data(pending.tx_ref)), headers=SIGNED)

        assert response.status_code == 503

    def test_malformed_body(self, client):
        response = client.post(URL, content="{not json", headers=SIGNED)

        assert response.status_code == 400


class TestSettlement:
    """Tests for settling sales from webhook events."""

    def test_successful_charge_settles_sale(self, client, pending, affiliate, business):
        response = client.post(URL, content=event_body(charge_data(pending.tx_ref)), headers=SIGNED)

        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "settled": True,
            "sale_id": pending.sale.id,
            "issues": [],
        }
        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.COMPLETED
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("500.00")
        assert wallet_service.get_balance(business.id).balance == Decimal("4250.00")
        assert is_event_processed("4821337", "flutterwave")

    def test_redelivery_is_acknowledged_once(self, client, pending, affiliate):
        client.post(URL, content=event_body(charge_data(pending.tx_ref)), headers=SIGNED)

        response = client.post(URL, content=event_body(charge_data(pending.tx_ref)), headers=SIGNED)

        assert response.status_code == 200
        assert response.json() == {"received": True, "duplicate": True}
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("500.00")

    def test_new_event_for_settled_sale(self, client, pending, affiliate):
        client.post(URL, content=event_body(charge_data(pending.tx_ref)), headers=SIGNED)

        response = client.post(
            URL, content=event_body(charge_data(pending.tx_ref, transaction_id=4821338)), headers=SIGNED
        )

        assert response.status_code == 200
        assert response.json()["already_settled"] is True
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("500.00")

    def test_failed_charge_ignored(self, client, pending):
        response = client.post(
            URL, content=event_body(charge_data(pending.tx_ref, status="failed")), headers=SIGNED
        )

        assert response.status_code == 200
        assert response.json() == {"received": True, "message": "Event ignored"}
        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.PENDING

    def test_transfer_event_acknowledged(self, client, pending):
        transfer = {"id": 123, "reference": "payout_1", "amount": 5000, "currency": "NGN", "status": "SUCCESSFUL"}

        response = client.post(URL, content=event_body(transfer, event="transfer.completed"), headers=SIGNED)

        assert response.status_code == 200
        assert response.json() == {"received": True, "message": "Event ignored"}
        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.PENDING
        assert not is_event_processed("123", "flutterwave")

    def test_malformed_successful_charge(self, client, pending):
        response = client.post(
            URL, content=event_body({"id": 4821337, "status": "successful"}), headers=SIGNED
        )

        assert response.status_code == 400
        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.PENDING

    def test_unknown_reference(self, client):
        response = client.post(URL, content=event_body(charge_data("sale_missing")), headers=SIGNED)

        assert response.status_code == 404
        assert not is_event_processed("4821337", "flutterwave")

    def test_underpayment_acknowledged_unsettled(self, client, pending):
        response = client.post(
            URL, content=event_body(charge_data(pending.tx_ref, amount="100.00")), headers=SIGNED
        )

        assert response.status_code == 200
        assert response.json()["settled"] is False
        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.PENDING
        assert is_event_processed("4821337", "flutterwave")

    def test_payment_after_cancellation(self, client, pending):
        sale_service.cancel_sale(pending.tx_ref, "expired")

        response = client.post(URL, content=event_body(charge_data(pending.tx_ref)), headers=SIGNED)

        assert response.status_code == 200
        assert response.json()["settled"] is False
        assert response.json()["issues"] == ["paid_after_cancel"]


class TestProcessedEvents:
    """Tests for the processed-event table."""

    def test_marking_twice_is_harmless(self):
        mark_event_processed("evt-1", "charge.completed", "flutterwave")
        mark_event_processed("evt-1", "charge.completed", "flutterwave")

        with db.session() as session:
            assert session.query(ProcessedWebhookEvent).count() == 1

    def test_cleanup_removes_old_events(self):
        mark_event_processed("old", "charge.completed", "flutterwave")
        mark_event_processed("new", "charge.completed", "flutterwave")
        with db.session() as session:
            session.query(ProcessedWebhookEvent).filter(ProcessedWebhookEvent.event_id == "old").update(
                {ProcessedWebhookEvent.processed_at: utcnow() - timedelta(days=31)}
            )

        assert cleanup_old_events() == 1
        assert not is_event_processed("old", "flutterwave")
        assert is_event_processed("new", "flutterwave")
