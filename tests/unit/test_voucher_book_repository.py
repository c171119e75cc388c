"""Tests for VoucherBookRepository."""

import pytest
from sqlalchemy.exc import IntegrityError

from core.voucher_book.models import utcnow


class TestBooks:

    def test_create_book_creates_pages(self, repo, make_book):
        book = make_book(total_pages=4)

        loaded = repo.get_book(book.id)
        assert loaded.status == "draft"
        assert loaded.pdf_url is None
        pages = repo.list_pages(book.id)
        assert [p.page_number for p in pages] == [1, 2, 3, 4]
        assert {p.layout_type for p in pages} == {"standard"}

    def test_create_with_cover(self, repo, make_book):
        book = make_book(total_pages=3, include_cover=True)
        layouts = [p.layout_type for p in repo.list_pages(book.id)]
        assert layouts == ["cover", "standard", "standard"]

    def test_get_nonexistent(self, repo):
        assert repo.get_book("nope") is None

    def test_list_books_filters(self, repo, make_book):
        make_book(title="Spring Deals", month=4)
        make_book(title="Summer Deals", month=7)
        make_book(title="Autumn", month=10, edition="Regional")

        books, total = repo.list_books(search="deals")
        assert total == 2
        assert [b.month for b in books] == [7, 4]

        books, total = repo.list_books(month=10)
        assert total == 1 and books[0].edition == "Regional"

        books, total = repo.list_books(offset=1, limit=1)
        assert total == 3 and len(books) == 1

    def test_count_books(self, repo, make_book):
        assert repo.count_books() == 0
        make_book()
        assert repo.count_books() == 1

    def test_update_grows_and_shrinks_pages(self, repo, make_book):
        book = make_book(total_pages=2)

        repo.update_book(book.id, updated_by="user:1", total_pages=5, title="Renamed")
        assert [p.page_number for p in repo.list_pages(book.id)] == [1, 2, 3, 4, 5]

        updated = repo.update_book(book.id, total_pages=3, metadata={"region": "north"})
        assert updated.total_pages == 3
        assert updated.extra_metadata == {"region": "north"}
        assert updated.title == "Renamed"
        assert len(repo.list_pages(book.id)) == 3

    def test_update_nonexistent(self, repo):
        assert repo.update_book("nope", title="x") is None

    def test_set_status_conditional(self, repo, make_book):
        book = make_book()
        assert repo.set_status(book.id, "ready_for_print", expected_status="published") is None
        assert repo.get_book(book.id).status == "draft"

        moved = repo.set_status(book.id, "archived", updated_by="user:1", expected_status="draft")
        assert moved.status == "archived"
        assert moved.archived_at is not None

    def test_delete_cascades_pages_and_placements(self, repo, make_book, add_placement):
        book = make_book()
        add_placement(book.id, page_number=1, position=1)
        add_placement(book.id)

        assert repo.delete_book(book.id) is True
        assert repo.get_book(book.id) is None
        assert repo.list_pages(book.id) == []
        assert repo.list_placements(book.id, active_only=False) == []

    def test_delete_with_distribution_is_restricted(self, repo, make_book):
        book = make_book()
        repo.create_distribution(book_id=book.id, business_name="Cafe A", requested_quantity=10)

        with pytest.raises(IntegrityError):
            repo.delete_book(book.id)


class TestCommitGeneratedPdf:

    def test_first_commit_lands(self, repo, make_book):
        book = make_book()
        now = utcnow()

        assert repo.commit_generated_pdf(book.id, "http://files.test/a.pdf", now, updated_by="user:1")

        loaded = repo.get_book(book.id)
        assert loaded.status == "ready_for_print"
        assert loaded.pdf_url == "http://files.test/a.pdf"
        assert loaded.pdf_generated_at == now

    def test_second_commit_without_previous_url_loses(self, repo, make_book):
        book = make_book()
        assert repo.commit_generated_pdf(book.id, "http://files.test/a.pdf", utcnow())
        assert not repo.commit_generated_pdf(book.id, "http://files.test/b.pdf", utcnow())
        assert repo.get_book(book.id).pdf_url == "http://files.test/a.pdf"

    def test_replace_with_matching_previous_url(self, repo, make_book):
        book = make_book()
        repo.commit_generated_pdf(book.id, "http://files.test/a.pdf", utcnow())

        assert repo.commit_generated_pdf(
            book.id, "http://files.test/b.pdf", utcnow(), previous_pdf_url="http://files.test/a.pdf"
        )
        assert not repo.commit_generated_pdf(
            book.id, "http://files.test/c.pdf", utcnow(), previous_pdf_url="http://files.test/a.pdf"
        )

    def test_ineligible_book(self, repo, make_book):
        book = make_book()
        repo.set_status(book.id, "archived")
        assert not repo.commit_generated_pdf(book.id, "http://files.test/a.pdf", utcnow())
        loaded = repo.get_book(book.id)
        assert loaded.pdf_url is None and loaded.pdf_generated_at is None

    def test_pdf_pair_constraint(self, repo, make_book):
        book = make_book()
        with pytest.raises(IntegrityError):
            repo.update_book(book.id, pdf_url="http://files.test/a.pdf")


class TestPlacements:

    def test_create_and_get(self, repo, make_book, add_placement):
        book = make_book()
        created = add_placement(book.id, page_number=2, position=3, size="quarter")

        assert created["page_number"] == 2
        assert created["position"] == 3
        assert created["voucher_id"] == "voucher-1"
        assert repo.get_placement(created["id"]) == created

    def test_list_order_unpinned_last(self, repo, make_book, add_placement):
        book = make_book()
        auto = add_placement(book.id, content_type="ad")
        second = add_placement(book.id, page_number=2, position=1)
        first = add_placement(book.id, page_number=1, position=5)

        ids = [p["id"] for p in repo.list_placements(book.id)]
        assert ids == [first["id"], second["id"], auto["id"]]

    def test_inactive_filtered(self, repo, make_book, add_placement):
        book = make_book()
        placement = add_placement(book.id)
        repo.update_placement(placement["id"], is_active=False)

        assert repo.list_placements(book.id) == []
        assert len(repo.list_placements(book.id, active_only=False)) == 1

    def test_list_by_page(self, repo, make_book, add_placement):
        book = make_book()
        add_placement(book.id, page_number=1, position=1)
        add_placement(book.id, page_number=2, position=1)
        assert len(repo.list_placements(book.id, page_number=2)) == 1

    def test_count_after_page(self, repo, make_book, add_placement):
        book = make_book(total_pages=3)
        add_placement(book.id, page_number=1, position=1)
        add_placement(book.id, page_number=3, position=1)
        add_placement(book.id)
        assert repo.count_placements_after_page(book.id, 1) == 1
        assert repo.count_placements_after_page(book.id, 3) == 0

    def test_delete(self, repo, make_book, add_placement):
        book = make_book()
        placement = add_placement(book.id)
        assert repo.delete_placement(placement["id"]) is True
        assert repo.delete_placement(placement["id"]) is False


class TestDistributions:

    def test_conditional_update(self, repo, make_book):
        book = make_book()
        dist = repo.create_distribution(book_id=book.id, business_name="Cafe A", requested_quantity=10)

        assert repo.update_distribution(dist.id, ["shipped"], status="delivered") is None
        updated = repo.update_distribution(dist.id, ["pending"], status="shipped", shipped_quantity=8)
        assert updated.status == "shipped"
        assert updated.shipped_quantity == 8

    def test_list_filters_and_count(self, repo, make_book):
        book = make_book()
        repo.create_distribution(book_id=book.id, business_name="Cafe A", requested_quantity=10)
        repo.create_distribution(book_id=book.id, business_name="Cafe B", requested_quantity=5)

        assert repo.count_distributions(book.id) == 2
        assert len(repo.list_distributions(business_name="Cafe B")) == 1
        assert repo.list_distributions(status="shipped") == []
