"""
Unit tests for api/distribution_router.py using TestClient.
"""
import pytest

from core.voucher_book.models import utcnow

BASE = "/api/admin/distributions"


@pytest.fixture
def published_book(container):
    repo = container.repository
    book = repo.create_book(title="Spring Deals", year=2026, month=4, total_pages=2)
    repo.commit_generated_pdf(book.id, "http://testserver/files/book.pdf", utcnow())
    repo.set_status(book.id, "published")
    return book


def _create(client, book_id, **overrides):
    body = {"book_id": book_id, "business_name": "Cafe Central", "requested_quantity": 25}
    body.update(overrides)
    return client.post(BASE, json=body)


class TestDistributionRoutes:

    def test_create_requires_published_book(self, client, container):
        draft = container.repository.create_book(title="Draft", year=2026, total_pages=1)
        resp = _create(client, draft.id)
        assert resp.status_code == 409

    def test_create_validation(self, client, published_book):
        assert _create(client, published_book.id, contact_email="nope").status_code == 422
        assert _create(client, published_book.id, requested_quantity=0).status_code == 422

    def test_lifecycle(self, client, published_book):
        dist = _create(client, published_book.id).json()
        assert dist["status"] == "pending"

        shipped = client.post(f"{BASE}/{dist['id']}/ship", json={"shipped_quantity": 20, "carrier": "Post"})
        assert shipped.json()["status"] == "shipped"

        over = client.post(f"{BASE}/{dist['id']}/ship", json={"shipped_quantity": 5})
        assert over.status_code == 409

        delivered = client.post(f"{BASE}/{dist['id']}/deliver", json={"confirmed_by": "Owner"})
        assert delivered.json()["delivery_confirmed_by"] == "Owner"

        assert client.delete(f"{BASE}/{dist['id']}").status_code == 409

    def test_ship_more_than_requested(self, client, published_book):
        dist = _create(client, published_book.id, requested_quantity=5).json()
        resp = client.post(f"{BASE}/{dist['id']}/ship", json={"shipped_quantity": 6})
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation"

    def test_cancel_and_list(self, client, published_book):
        first = _create(client, published_book.id).json()
        _create(client, published_book.id, business_name="Bakery B")

        cancelled = client.post(f"{BASE}/{first['id']}/cancel", json={"reason": "Closed"})
        assert cancelled.json()["notes"] == "Cancelled: Closed"

        listed = client.get(BASE, params={"status": "pending"}).json()
        assert listed["total"] == 1
        assert listed["distributions"][0]["business_name"] == "Bakery B"

    def test_update_and_statistics(self, client, published_book):
        dist = _create(client, published_book.id).json()
        resp = client.put(f"{BASE}/{dist['id']}", json={"requested_quantity": 40})
        assert resp.json()["requested_quantity"] == 40

        stats = client.get(f"{BASE}/statistics/businesses").json()
        assert stats == [{
            "business_name": "Cafe Central",
            "total_distributions": 1,
            "total_requested": 40,
            "total_shipped": 0,
            "by_status": {"pending": 1},
        }]

    def test_book_with_distributions_cannot_be_deleted(self, client, container):
        repo = container.repository
        book = repo.create_book(title="Draft", year=2026, total_pages=1)
        repo.create_distribution(book_id=book.id, business_name="Cafe A", requested_quantity=1)

        resp = client.delete(f"/api/admin/voucher-books/{book.id}")
        assert resp.status_code == 409

    def test_not_found(self, client):
        assert client.get(f"{BASE}/missing").status_code == 404
