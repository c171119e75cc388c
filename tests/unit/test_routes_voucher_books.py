"""
Unit tests for api/voucher_book_router.py using TestClient.
"""
from api.rate_limiter import GenerationRateLimiter

BASE = "/api/admin/voucher-books"


def _create_book(client, **overrides):
    body = {"title": "Spring Deals", "year": 2026, "month": 4, "total_pages": 2}
    body.update(overrides)
    resp = client.post(BASE, json=body, headers={"X-User-Id": "admin-1"})
    assert resp.status_code == 201, resp.text
    return resp.json()


def _add_voucher(client, book_id, **overrides):
    body = {"size": "single", "content": {"content_type": "voucher", "voucher_id": "voucher-1"}}
    body.update(overrides)
    return client.post(f"{BASE}/{book_id}/placements", json=body)


class TestBooks:

    def test_create_and_get(self, client):
        book = _create_book(client)
        assert book["status"] == "draft"
        assert book["created_by"] == "user:admin-1"

        resp = client.get(f"{BASE}/{book['id']}")
        assert resp.status_code == 200
        assert resp.json()["title"] == "Spring Deals"

    def test_create_validation(self, client):
        resp = client.post(BASE, json={"title": "", "year": 2026})
        assert resp.status_code == 422

    def test_not_found(self, client):
        resp = client.get(f"{BASE}/missing")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    def test_list_with_filters(self, client):
        _create_book(client, title="Spring Deals", month=4)
        _create_book(client, title="Summer Deals", month=7)

        data = client.get(BASE, params={"month": 7}).json()
        assert data["total"] == 1
        assert data["books"][0]["title"] == "Summer Deals"

    def test_update_and_delete(self, client):
        book = _create_book(client)

        resp = client.put(f"{BASE}/{book['id']}", json={"edition": "North"})
        assert resp.json()["edition"] == "North"

        resp = client.delete(f"{BASE}/{book['id']}")
        assert resp.json() == {"status": "deleted", "id": book["id"]}
        assert client.get(f"{BASE}/{book['id']}").status_code == 404

    def test_publish_without_pdf_conflicts(self, client):
        book = _create_book(client)
        client.post(f"{BASE}/{book['id']}/status", json={"status": "ready_for_print"})

        resp = client.post(f"{BASE}/{book['id']}/status", json={"status": "published"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "precondition"

    def test_bulk_archive(self, client):
        book = _create_book(client)
        resp = client.post(f"{BASE}/bulk-archive", json={"book_ids": [book["id"], "missing"]})
        data = resp.json()
        assert data["archived"] == [book["id"]]
        assert data["errors"][0]["kind"] == "not_found"


class TestPagesAndPlacements:

    def test_pages(self, client):
        book = _create_book(client, include_cover=True)
        pages = client.get(f"{BASE}/{book['id']}/pages").json()
        assert [p["capacity"] for p in pages] == [4, 8]

        resp = client.put(f"{BASE}/{book['id']}/pages/2", json={"layout_type": "cover"})
        assert resp.json()["layout_type"] == "cover"

    def test_pinned_conflict(self, client):
        book = _create_book(client)
        assert _add_voucher(client, book["id"], page_number=1, position=1, size="half").status_code == 201

        resp = _add_voucher(client, book["id"], page_number=1, position=2)
        assert resp.status_code == 422
        assert resp.json()["error"] == "layout"
        assert resp.json()["conflicting_ids"]

    def test_content_is_discriminated(self, client):
        book = _create_book(client)
        resp = client.post(
            f"{BASE}/{book['id']}/placements",
            json={"content": {"content_type": "image"}},
        )
        assert resp.status_code == 422

    def test_placement_crud(self, client):
        book = _create_book(client)
        placement = _add_voucher(client, book["id"]).json()
        url = f"{BASE}/{book['id']}/placements/{placement['id']}"

        assert client.get(url).json()["content"]["voucher_id"] == "voucher-1"

        moved = client.put(url, json={"page_number": 2, "position": 3}).json()
        assert (moved["page_number"], moved["position"]) == (2, 3)

        listed = client.get(f"{BASE}/{book['id']}/placements").json()
        assert [p["id"] for p in listed] == [placement["id"]]

        assert client.delete(url).status_code == 200
        assert client.get(url).status_code == 404

    def test_suggestions_and_statistics(self, client):
        book = _create_book(client)
        _add_voucher(client, book["id"], page_number=1, position=1, size="full")

        suggestions = client.get(
            f"{BASE}/{book['id']}/placement-suggestions", params={"size": "half"}
        ).json()
        assert [(s["page_number"], s["position"]) for s in suggestions] == [(2, 1)]

        stats = client.get(f"{BASE}/{book['id']}/statistics").json()
        assert stats["used_spaces"] == 8
        assert stats["available_spaces"] == 8


class TestGeneratePdf:

    def test_generate_then_download(self, client):
        book = _create_book(client)
        _add_voucher(client, book["id"], size="half")
        _add_voucher(client, book["id"], size="quarter")

        resp = client.post(f"{BASE}/{book['id']}/generate-pdf")

        assert resp.status_code == 200, resp.text
        result = resp.json()
        assert result["success"] is True
        assert f"/voucher-books/{book['id']}/" in result["pdf_url"]

        pdf = client.get(result["pdf_url"].replace("http://testserver", ""))
        assert pdf.status_code == 200
        assert pdf.content.startswith(b"%PDF")

        assert client.get(f"{BASE}/{book['id']}").json()["status"] == "ready_for_print"

    def test_existing_pdf_conflicts_unless_forced(self, client):
        book = _create_book(client)
        _add_voucher(client, book["id"])
        client.post(f"{BASE}/{book['id']}/generate-pdf")

        resp = client.post(f"{BASE}/{book['id']}/generate-pdf")
        assert resp.status_code == 409
        assert resp.json()["error_kind"] == "precondition"

        forced = client.post(f"{BASE}/{book['id']}/generate-pdf", json={"force": True})
        assert forced.status_code == 200

    def test_no_placements(self, client):
        book = _create_book(client)
        resp = client.post(f"{BASE}/{book['id']}/generate-pdf")
        assert resp.status_code == 502
        assert resp.json()["error"] == "No vouchers found for this voucher book"

    def test_missing_book(self, client):
        assert client.post(f"{BASE}/missing/generate-pdf").status_code == 404

    def test_rate_limited(self, client, container):
        container.generator.rate_limiter = GenerationRateLimiter("1/minute")
        first = _create_book(client)
        second = _create_book(client)
        for book in (first, second):
            _add_voucher(client, book["id"])

        headers = {"X-User-Id": "busy"}
        assert client.post(f"{BASE}/{first['id']}/generate-pdf", headers=headers).status_code == 200

        resp = client.post(f"{BASE}/{second['id']}/generate-pdf", headers=headers)
        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) > 0
        assert resp.json()["error_kind"] == "rate_limited"
