"""
Invoice lifecycle tests.

Verifies:
- Totals are derived from the lines (VAT rounded half-up to the cent)
- First confirmation deducts lot stock exactly once
- Reverting to draft keeps the deduction; re-confirming does not deduct again
- A confirmation that fails part-way leaves stock and status untouched
- Confirmed invoices and deliveries cannot be deleted
"""

import pytest

from invoicing.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from invoicing.models import ActivityLog, Invoice, InvoiceItem, ProductGroup
from invoicing.services import delivery_service, invoice_service, lot_service

from conftest import auth_headers, get_token, invoice_payload, lot_payload


@pytest.fixture
def lot_with_products(db_session, admin_user, products):
    """Sample Group (current 9000) holding PROD001 (500) and PROD002 (750)."""
    lot = lot_service.create_lot(lot_payload(), actor_id=admin_user.id)
    lot_service.add_product(lot.id, products[0].id, actor_id=admin_user.id)
    lot_service.add_product(lot.id, products[1].id, actor_id=admin_user.id)
    return lot


def _current(db_session, lot_id):
    db_session.expire_all()
    return db_session.get(ProductGroup, lot_id).current_quantity


class TestTotals:

    def test_compute_totals(self):
        lines = [
            {"quantity": 2, "unit_price_cents": 10000},
            {"quantity": 1, "unit_price_cents": 15000},
        ]
        assert invoice_service.compute_totals(lines, 20) == (35000, 7000, 42000)

    def test_vat_rounds_half_up(self):
        # 0.5 cent of VAT rounds up
        assert invoice_service.compute_totals([{"quantity": 1, "unit_price_cents": 5}], 10) == (5, 1, 6)

    def test_decimal_unit_price_converted_to_cents(self, db_session, admin_user, sample_client, products):
        payload = invoice_payload(sample_client.id, [(products[0], 2)], vat_rate=0)
        payload["items"] = [
            {"product_id": products[0].id, "quantity": 2, "unit_price": "100.50"},
            {"product_id": products[1].id, "quantity": 1, "unit_price": 12.345},
        ]

        invoice = invoice_service.create_invoice(payload, actor_id=admin_user.id)

        prices = sorted(item.unit_price_cents for item in invoice.items)
        assert prices == [1235, 10050]
        assert invoice.subtotal_cents == 2 * 10050 + 1235

    @pytest.mark.parametrize("bad_price", ["abc", "NaN", True])
    def test_decimal_unit_price_rejects_garbage(self, db_session, admin_user, sample_client, products, bad_price):
        payload = invoice_payload(sample_client.id, [(products[0], 1)])
        payload["items"] = [{"product_id": products[0].id, "quantity": 1, "unit_price": bad_price}]

        with pytest.raises(ValidationError):
            invoice_service.create_invoice(payload, actor_id=admin_user.id)

    def test_create_invoice_stores_totals(self, db_session, admin_user, sample_client, products):
        invoice = invoice_service.create_invoice(
            invoice_payload(sample_client.id, [(products[0], 2), (products[1], 1)]),
            actor_id=admin_user.id,
        )

        assert invoice.status == "draft"
        assert invoice.subtotal_cents == 35000
        assert invoice.vat_amount_cents == 7000
        assert invoice.total_cents == 42000
        assert db_session.query(InvoiceItem).filter_by(invoice_id=invoice.id).count() == 2

    def test_duplicate_number(self, db_session, admin_user, sample_client, products):
        payload = invoice_payload(sample_client.id, [(products[0], 1)])
        invoice_service.create_invoice(payload, actor_id=admin_user.id)

        with pytest.raises(ConflictError):
            invoice_service.create_invoice(payload, actor_id=admin_user.id)

    def test_requires_items(self, db_session, admin_user, sample_client):
        payload = invoice_payload(sample_client.id, [])

        with pytest.raises(ValidationError):
            invoice_service.create_invoice(payload, actor_id=admin_user.id)

    def test_unknown_product(self, db_session, admin_user, sample_client, products):
        payload = invoice_payload(sample_client.id, [(products[0], 1)])
        payload["items"][0]["product_id"] = 9999

        with pytest.raises(NotFoundError):
            invoice_service.create_invoice(payload, actor_id=admin_user.id)
        assert db_session.query(Invoice).count() == 0

    def test_vat_rate_out_of_range(self, db_session, admin_user, sample_client, products):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(
                invoice_payload(sample_client.id, [(products[0], 1)], vat_rate=120),
                actor_id=admin_user.id,
            )


class TestConfirmation:

    def test_confirm_deducts_once(self, db_session, admin_user, sample_client, products, lot_with_products):
        invoice = invoice_service.create_invoice(
            invoice_payload(sample_client.id, [(products[0], 2), (products[1], 4)]),
            actor_id=admin_user.id,
        )

        _, updates = invoice_service.set_invoice_status(invoice.id, "confirmed", actor_id=admin_user.id)

        # 2 * 500 + 4 * 750 = 4000
        assert [u.weight_used for u in updates] == [1000, 3000]
        assert _current(db_session, lot_with_products.id) == pytest.approx(5000)
        assert db_session.query(ActivityLog).filter_by(action="UPDATE_STOCK_ON_INVOICE_CONFIRMATION").count() == 1
        assert db_session.query(ActivityLog).filter_by(action="UPDATE_INVOICE_STATUS_CONFIRMED").count() == 1

    def test_second_confirm_is_noop_for_stock(self, db_session, admin_user, sample_client, products, lot_with_products):
        invoice = invoice_service.create_invoice(
            invoice_payload(sample_client.id, [(products[0], 2)]),
            actor_id=admin_user.id,
        )
        invoice_service.set_invoice_status(invoice.id, "confirmed", actor_id=admin_user.id)

        _, updates = invoice_service.set_invoice_status(invoice.id, "confirmed", actor_id=admin_user.id)

        assert updates == []
        assert _current(db_session, lot_with_products.id) == pytest.approx(8000)

    def test_revert_keeps_deduction(self, db_session, admin_user, sample_client, products, lot_with_products):
        invoice = invoice_service.create_invoice(
            invoice_payload(sample_client.id, [(products[0], 2)]),
            actor_id=admin_user.id,
        )
        invoice_service.set_invoice_status(invoice.id, "confirmed", actor_id=admin_user.id)

        reverted, updates = invoice_service.set_invoice_status(invoice.id, "draft", actor_id=admin_user.id)

        assert reverted.status == "draft"
        assert updates == []
        assert _current(db_session, lot_with_products.id) == pytest.approx(8000)

    def test_ungrouped_lines_do_not_touch_stock(self, db_session, admin_user, sample_client, products, lot_with_products):
        invoice = invoice_service.create_invoice(
            invoice_payload(sample_client.id, [(products[2], 3)]),
            actor_id=admin_user.id,
        )

        _, updates = invoice_service.set_invoice_status(invoice.id, "confirmed", actor_id=admin_user.id)

        assert updates == []
        assert _current(db_session, lot_with_products.id) == pytest.approx(9000)

    def test_failed_confirmation_rolls_back(self, db_session, admin_user, sample_client, products, lot_with_products, monkeypatch):
        invoice = invoice_service.create_invoice(
            invoice_payload(sample_client.id, [(products[0], 2)]),
            actor_id=admin_user.id,
        )
        deduct = lot_service.apply_consumption

        def deduct_then_fail(lines):
            deduct(lines)
            raise RuntimeError("ledger write failed")

        monkeypatch.setattr(lot_service, "apply_consumption", deduct_then_fail)

        with pytest.raises(RuntimeError):
            invoice_service.set_invoice_status(invoice.id, "confirmed", actor_id=admin_user.id)

        assert _current(db_session, lot_with_products.id) == pytest.approx(9000)
        assert db_session.get(Invoice, invoice.id).status == "draft"
        assert db_session.query(ActivityLog).filter_by(action="UPDATE_STOCK_ON_INVOICE_CONFIRMATION").count() == 0
        assert db_session.query(ActivityLog).filter_by(action="UPDATE_INVOICE_STATUS_CONFIRMED").count() == 0

    def test_invalid_status(self, db_session, admin_user, sample_client, products):
        invoice = invoice_service.create_invoice(
            invoice_payload(sample_client.id, [(products[0], 1)]),
            actor_id=admin_user.id,
        )

        with pytest.raises(ValidationError):
            invoice_service.set_invoice_status(invoice.id, "paid", actor_id=admin_user.id)

    def test_status_route_returns_stock_updates(self, client, db_session, admin_user, sample_client, products, lot_with_products):
        invoice = invoice_service.create_invoice(
            invoice_payload(sample_client.id, [(products[1], 2)]),
            actor_id=admin_user.id,
        )
        headers = auth_headers(get_token(admin_user))

        resp = client.patch(f"/api/invoices/{invoice.id}/status", json={"status": "confirmed"}, headers=headers)

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["invoice"]["status"] == "confirmed"
        assert body["stock_updates"][0]["weight_used"] == 1500
        assert body["stock_updates"][0]["new_stock"] == pytest.approx(7500)


class TestDeleteGuards:

    def test_delete_draft_invoice(self, db_session, admin_user, sample_client, products):
        invoice = invoice_service.create_invoice(
            invoice_payload(sample_client.id, [(products[0], 1)]),
            actor_id=admin_user.id,
        )

        invoice_service.delete_invoice(invoice.id, actor_id=admin_user.id)

        assert db_session.query(Invoice).count() == 0
        assert db_session.query(InvoiceItem).count() == 0

    def test_cannot_delete_confirmed_invoice(self, db_session, admin_user, sample_client, products):
        invoice = invoice_service.create_invoice(
            invoice_payload(sample_client.id, [(products[0], 1)]),
            actor_id=admin_user.id,
        )
        invoice_service.set_invoice_status(invoice.id, "confirmed", actor_id=admin_user.id)

        with pytest.raises(InvalidStateError):
            invoice_service.delete_invoice(invoice.id, actor_id=admin_user.id)
        assert db_session.query(Invoice).count() == 1

    def test_cannot_delete_confirmed_delivery(self, db_session, admin_user, sample_client, products):
        delivery = delivery_service.create_delivery(
            {
                "number": "DEL-001",
                "date": "2026-03-10",
                "due_date": "2026-03-20",
                "client_id": sample_client.id,
                "items": [{"product_id": products[0].id, "quantity": 3}],
            },
            actor_id=admin_user.id,
        )
        delivery_service.set_delivery_status(delivery.id, "confirmed", actor_id=admin_user.id)

        with pytest.raises(InvalidStateError):
            delivery_service.delete_delivery(delivery.id, actor_id=admin_user.id)

    def test_delivery_unit_defaults(self, db_session, admin_user, sample_client, products):
        delivery = delivery_service.create_delivery(
            {
                "number": "DEL-002",
                "date": "2026-03-10",
                "due_date": "2026-03-20",
                "client_id": sample_client.id,
                "items": [{"product_id": products[0].id, "quantity": 1}],
            },
            actor_id=admin_user.id,
        )

        assert delivery.items[0].unit == "ком"
