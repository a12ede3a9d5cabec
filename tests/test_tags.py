"""
Tests for the tag index.

Tag writes go straight to the gateway, so these tests are async and
inspect the in-memory gateway afterwards.
"""

import pytest

from pocket_ledger.ledger import ConflictError, NotFoundError, TagIndex, ValidationError
from pocket_ledger.models import SyncStatus, TagDraft, TagPatch
from pocket_ledger.services.storage import PersistenceError
from pocket_ledger.sync import SyncOutbox


TAGS = "books/book-1/tags"


@pytest.fixture
def tags(store):
    return store.tags


class TestTagIndex:
    """Tests for tag CRUD against a healthy gateway."""

    @pytest.mark.asyncio
    async def test_create_generates_time_based_id(self, tags, gateway):
        """Test that a tag without an id gets a `tag-<millis>` id and is saved."""
        tag = await tags.create(TagDraft(name="Groceries", color="#00aa00"))

        assert tag.id.startswith("tag-")
        assert tag.id[4:].isdigit()
        assert tag.book_id == "book-1"
        assert tag.user_id == "user-1"
        assert gateway.snapshot(TAGS)[tag.id]["name"] == "Groceries"

    @pytest.mark.asyncio
    async def test_generated_ids_are_unique(self, tags):
        first = await tags.create({"name": "a"})
        second = await tags.create({"name": "b"})
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_caller_supplied_id(self, tags):
        tag = await tags.create({"id": "travel", "name": "Travel"})
        assert tag.id == "travel"
        assert tags.get("travel").name == "Travel"

    @pytest.mark.asyncio
    async def test_duplicate_id_conflicts(self, tags):
        await tags.create({"id": "travel", "name": "Travel"})
        with pytest.raises(ConflictError):
            await tags.create({"id": "travel", "name": "Trips"})
        assert tags.get("travel").name == "Travel"

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, tags, outbox):
        with pytest.raises(ValidationError):
            await tags.create(TagDraft(name="   "))
        assert tags.list() == []
        assert outbox.entries == []

    @pytest.mark.asyncio
    async def test_update(self, tags, gateway):
        """Test that only the patched fields change."""
        tag = await tags.create({"id": "t", "name": "Food", "color": "red"})
        updated = await tags.update(tag.id, TagPatch(color="blue"))

        assert updated.name == "Food"
        assert updated.color == "blue"
        assert gateway.snapshot(TAGS)["t"]["color"] == "blue"
        assert gateway.snapshot(TAGS)["t"]["name"] == "Food"

    @pytest.mark.asyncio
    async def test_update_blank_name(self, tags):
        await tags.create({"id": "t", "name": "Food"})
        with pytest.raises(ValidationError):
            await tags.update("t", {"name": ""})

    @pytest.mark.asyncio
    async def test_unknown_id(self, tags):
        with pytest.raises(NotFoundError):
            await tags.update("missing", {"name": "x"})
        with pytest.raises(NotFoundError):
            await tags.delete("missing")

    @pytest.mark.asyncio
    async def test_delete(self, tags, gateway):
        await tags.create({"id": "t", "name": "Food"})
        removed = await tags.delete("t")
        assert removed.id == "t"
        assert tags.get("t") is None
        assert "t" not in gateway.snapshot(TAGS)

    @pytest.mark.asyncio
    async def test_refresh_loads_remote_tags(self, tags, gateway):
        """Test that tags written elsewhere show up after a refresh."""
        await gateway.create(TAGS, "remote", {"name": "From phone", "color": ""})
        loaded = await tags.refresh()
        assert [t.id for t in loaded] == ["remote"]
        assert tags.get("remote").book_id == "book-1"


class TestOptimisticWrites:
    """Tests for tag writes when the gateway fails."""

    @pytest.fixture
    def failing(self, flaky_gateway_cls, sync_settings):
        gateway = flaky_gateway_cls(healthy=False)
        outbox = SyncOutbox(gateway, sync_settings)
        return gateway, outbox, TagIndex("book-1", "user-1", outbox)

    @pytest.mark.asyncio
    async def test_failed_create_keeps_local_tag(self, failing):
        """Test that a failed write raises but does not roll back."""
        gateway, outbox, tags = failing

        with pytest.raises(PersistenceError):
            await tags.create({"id": "t", "name": "Food"})

        assert tags.get("t").name == "Food"
        assert outbox.status_for("t") == SyncStatus.FAILED
        assert gateway.calls == 3

    @pytest.mark.asyncio
    async def test_failed_write_can_be_retried(self, failing):
        gateway, outbox, tags = failing
        with pytest.raises(PersistenceError):
            await tags.create({"id": "t", "name": "Food"})

        gateway.healthy = True
        outbox.retry_failed()
        report = await outbox.flush()

        assert report.ok
        assert outbox.status_for("t") == SyncStatus.SYNCED
        assert "t" in gateway.snapshot(TAGS)

    @pytest.mark.asyncio
    async def test_update_waits_behind_failed_create(self, failing):
        """Test that a rename is not sent before the tag's failed create."""
        gateway, outbox, tags = failing
        with pytest.raises(PersistenceError):
            await tags.create({"id": "t", "name": "Food"})

        gateway.healthy = True
        with pytest.raises(PersistenceError):
            await tags.update("t", {"name": "Groceries"})
        assert gateway.snapshot(TAGS) == {}

        outbox.retry_failed()
        await outbox.flush()
        assert gateway.snapshot(TAGS)["t"]["name"] == "Groceries"

    @pytest.mark.asyncio
    async def test_refresh_keeps_unsaved_local_changes(self, failing):
        """Test that a refresh doesn't discard a tag that hasn't reached the gateway."""
        gateway, outbox, tags = failing
        with pytest.raises(PersistenceError):
            await tags.create({"id": "local", "name": "Unsaved"})

        gateway.healthy = True
        await gateway.create(TAGS, "remote", {"name": "Remote"})
        assert outbox.status_for("local") == SyncStatus.FAILED
        await tags.refresh()

        assert {t.id for t in tags.list()} == {"local", "remote"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
