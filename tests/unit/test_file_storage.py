"""Tests for FileStorage."""

import pytest

from core.voucher_book.exceptions import StorageError


class TestSave:

    @pytest.mark.asyncio
    async def test_save_and_url(self, storage, tmp_path):
        stored = await storage.save_file(b"%PDF-1.4 test", "voucher-books/book-1", filename="a.pdf")

        assert stored.url == "http://files.test/voucher-books/book-1/a.pdf"
        assert stored.size == 13
        assert stored.mimetype == "application/pdf"
        assert (tmp_path / "files" / "voucher-books" / "book-1" / "a.pdf").read_bytes() == b"%PDF-1.4 test"

    @pytest.mark.asyncio
    async def test_generated_names_are_unique(self, storage):
        first = await storage.save_file(b"one", "voucher-books/book-1")
        second = await storage.save_file(b"two", "voucher-books/book-1")
        assert first.url != second.url
        assert first.url.endswith(".pdf")

    @pytest.mark.asyncio
    async def test_empty_content_rejected(self, storage):
        with pytest.raises(StorageError):
            await storage.save_file(b"", "voucher-books")

    @pytest.mark.asyncio
    async def test_traversal_rejected(self, storage):
        with pytest.raises(StorageError, match="outside storage"):
            await storage.save_file(b"x", "../escape", filename="a.pdf")

    @pytest.mark.asyncio
    async def test_unsafe_characters_rejected(self, storage):
        with pytest.raises(StorageError):
            await storage.save_file(b"x", "voucher-books", filename="a?.pdf")


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete(self, storage):
        stored = await storage.save_file(b"data", "voucher-books", filename="a.pdf")

        assert await storage.delete_file(stored.url) is True
        assert not stored.path.exists()
        assert await storage.delete_file(stored.url) is False

    @pytest.mark.asyncio
    async def test_foreign_url(self, storage):
        with pytest.raises(StorageError):
            await storage.delete_file("http://elsewhere.test/a.pdf")

    def test_relative_from_url(self, storage):
        assert storage.relative_from_url("http://files.test/x/y.pdf") == "x/y.pdf"
        assert storage.relative_from_url("http://files.test.evil/x.pdf") is None
