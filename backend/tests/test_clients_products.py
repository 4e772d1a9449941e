"""
Client and product tests.

Verifies:
- MB/PIB uniqueness and the delete guard while documents reference a client
- Client purchase statistics over confirmed invoices
- Products referenced by documents are deactivated instead of deleted
"""

from datetime import date

import pytest

from invoicing.errors import ConflictError, NotFoundError, ValidationError
from invoicing.models import Client, Product
from invoicing.services import client_service, delivery_service, invoice_service, product_service

from conftest import auth_headers, get_token, invoice_payload


def client_payload(**overrides) -> dict:
    payload = {
        "name": "Acme",
        "legal_name": "Acme LLC",
        "mb": "11111111",
        "pib": "222222222",
        "address": "Main Street 1",
    }
    payload.update(overrides)
    return payload


class TestClients:

    def test_create_and_list(self, db_session, admin_user):
        client_service.create_client(client_payload(), actor_id=admin_user.id)
        client_service.create_client(client_payload(name="Beta", mb="33333333", pib="444444444"), actor_id=admin_user.id)

        result = client_service.list_clients(search="Acm")

        assert [c["name"] for c in result["clients"]] == ["Acme"]
        assert result["pagination"]["total"] == 1

    @pytest.mark.parametrize("field", ["mb", "pib"])
    def test_duplicate_identifier(self, db_session, admin_user, field):
        client_service.create_client(client_payload(), actor_id=admin_user.id)
        other = client_payload(name="Other", mb="99999999", pib="888888888")
        other[field] = client_payload()[field]

        with pytest.raises(ConflictError):
            client_service.create_client(other, actor_id=admin_user.id)

    def test_missing_required(self, db_session, admin_user):
        payload = client_payload()
        del payload["pib"]

        with pytest.raises(ValidationError):
            client_service.create_client(payload, actor_id=admin_user.id)

    def test_update_partial(self, db_session, admin_user):
        client = client_service.create_client(client_payload(), actor_id=admin_user.id)

        updated = client_service.update_client(client.id, {"phone": "+381 11 123"}, actor_id=admin_user.id)

        assert updated.phone == "+381 11 123"
        assert updated.mb == "11111111"

    def test_delete_blocked_by_invoice(self, db_session, admin_user, sample_client, products):
        invoice_service.create_invoice(invoice_payload(sample_client.id, [(products[0], 1)]), actor_id=admin_user.id)

        with pytest.raises(ConflictError) as exc:
            client_service.delete_client(sample_client.id, actor_id=admin_user.id)

        assert exc.value.details == {"invoices": 1, "deliveries": 0}
        assert db_session.get(Client, sample_client.id) is not None

    def test_delete_blocked_by_delivery(self, db_session, admin_user, sample_client, products):
        delivery_service.create_delivery(
            {
                "number": "DEL-001",
                "date": "2026-03-10",
                "due_date": "2026-03-20",
                "client_id": sample_client.id,
                "items": [{"product_id": products[0].id, "quantity": 1}],
            },
            actor_id=admin_user.id,
        )

        with pytest.raises(ConflictError) as exc:
            client_service.delete_client(sample_client.id, actor_id=admin_user.id)

        assert exc.value.details == {"invoices": 0, "deliveries": 1}
        assert db_session.get(Client, sample_client.id) is not None

    def test_delete_unreferenced(self, db_session, admin_user, sample_client):
        client_service.delete_client(sample_client.id, actor_id=admin_user.id)

        with pytest.raises(NotFoundError):
            client_service.get_client(sample_client.id)

    def test_statistics(self, db_session, admin_user, sample_client, products):
        first = invoice_service.create_invoice(
            invoice_payload(sample_client.id, [(products[0], 2)], number="INV-1", vat_rate=0),
            actor_id=admin_user.id,
        )
        second = invoice_service.create_invoice(
            invoice_payload(sample_client.id, [(products[1], 1)], number="INV-2", vat_rate=0),
            actor_id=admin_user.id,
        )
        # Drafts do not count
        invoice_service.create_invoice(
            invoice_payload(sample_client.id, [(products[2], 5)], number="INV-3", vat_rate=0),
            actor_id=admin_user.id,
        )
        invoice_service.set_invoice_status(first.id, "confirmed", actor_id=admin_user.id)
        invoice_service.set_invoice_status(second.id, "confirmed", actor_id=admin_user.id)

        stats = client_service.client_statistics(sample_client.id, "year", today=date(2026, 6, 1))

        assert stats["invoice_count"] == 2
        assert stats["total_revenue_cents"] == 35000
        assert stats["average_order_value_cents"] == 17500
        assert stats["most_popular_product"] == "Sample Product 1"
        assert stats["annual_consumption"] == 3

    def test_statistics_bad_period(self, db_session, sample_client):
        with pytest.raises(ValidationError):
            client_service.client_statistics(sample_client.id, "decade")

    def test_period_start(self):
        today = date(2026, 8, 17)
        assert client_service.period_start("month", today) == date(2026, 8, 1)
        assert client_service.period_start("quarter", today) == date(2026, 7, 1)
        assert client_service.period_start("year", today) == date(2026, 1, 1)

    def test_delete_route_conflict(self, client, db_session, admin_user, sample_client, products):
        invoice_service.create_invoice(invoice_payload(sample_client.id, [(products[0], 1)]), actor_id=admin_user.id)

        resp = client.delete(f"/api/clients/{sample_client.id}", headers=auth_headers(get_token(admin_user)))

        assert resp.status_code == 409
        assert resp.get_json()["details"]["invoices"] == 1


class TestProducts:

    def test_duplicate_code(self, db_session, admin_user, products):
        with pytest.raises(ConflictError):
            product_service.create_product(
                {"code": "PROD001", "name": "Copy", "price_cents": 100}, actor_id=admin_user.id
            )

    def test_negative_price(self, db_session, admin_user):
        with pytest.raises(ValidationError):
            product_service.create_product({"code": "X1", "name": "X", "price_cents": -1}, actor_id=admin_user.id)

    def test_float_price_rejected(self, db_session, admin_user):
        with pytest.raises(ValidationError):
            product_service.create_product({"code": "X1", "name": "X", "price_cents": 12.5}, actor_id=admin_user.id)

    def test_delete_unreferenced(self, db_session, admin_user, products):
        result = product_service.delete_product(products[2].id, actor_id=admin_user.id)

        assert result is None
        assert db_session.query(Product).filter_by(code="PROD003").first() is None

    def test_delete_referenced_deactivates(self, db_session, admin_user, sample_client, products):
        invoice_service.create_invoice(invoice_payload(sample_client.id, [(products[0], 1)]), actor_id=admin_user.id)

        result = product_service.delete_product(products[0].id, actor_id=admin_user.id)

        assert result is not None
        assert result.is_active is False
        assert db_session.get(Product, products[0].id) is not None

        reactivated = product_service.activate_product(products[0].id, actor_id=admin_user.id)
        assert reactivated.is_active is True

    def test_categories(self, db_session, admin_user):
        for code, category in (("A", "Tea"), ("B", "Coffee"), ("C", "Tea")):
            product_service.create_product(
                {"code": code, "name": code, "price_cents": 100, "category": category}, actor_id=admin_user.id
            )

        assert product_service.list_categories() == ["Coffee", "Tea"]
