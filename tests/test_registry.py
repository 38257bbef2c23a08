"""Tests for the category registry."""

import asyncio
import random
import re

import pytest

from pocket_planner.config import LedgerSettings
from pocket_planner.errors import CommitFailed, DuplicateCategory, InvalidCategoryName, UnknownCategory
from pocket_planner.ledger import DEFAULT_CATEGORIES, CategoryRegistry, random_color, slugify
from pocket_planner.models.audit import AuditEventType
from pocket_planner.services.storage import StorageError

from tests.conftest import PERIOD


DEFAULT_IDS = {c.id for c in DEFAULT_CATEGORIES}


class TestSlugs:
    """Tests for category id generation."""

    def test_slugify(self):
        """Test lower-casing and whitespace handling."""
        assert slugify("Groceries") == "groceries"
        assert slugify("Eating  Out") == "eating_out"
        assert slugify("  Pet Food ") == "pet_food"

    def test_slugify_drops_path_characters(self):
        """Test that ids stay valid path segments."""
        assert slugify("Cars/Bikes") == "carsbikes"
        assert slugify("a.b#c$d[e]") == "abcde"

    def test_random_color_format(self):
        """Test generated colors."""
        color = random_color(random.Random(0))
        assert re.fullmatch(r"#[0-9a-f]{6}", color)


class TestEnsureSeeded:
    """Tests for default category seeding."""

    @pytest.mark.asyncio
    async def test_seeds_defaults_on_empty_registry(self, registry):
        """Test that exactly the default set is installed."""
        assert await registry.ensure_seeded() is True

        categories = await registry.list_categories()
        assert set(categories) == DEFAULT_IDS
        assert categories["groceries"].icon == "🛒"
        assert categories["groceries"].color == "#4A6E52"
        assert categories["education"].name == "Education"

    @pytest.mark.asyncio
    async def test_second_call_is_noop(self, registry, store):
        """Test idempotency."""
        await registry.ensure_seeded()
        before = store.snapshot()
        writes = store.write_count

        assert await registry.ensure_seeded() is False
        assert store.snapshot() == before
        assert store.write_count == writes

    @pytest.mark.asyncio
    async def test_existing_categories_are_kept(self, registry):
        """Test that a registry with categories is not reseeded."""
        await registry.add("Pets")
        assert await registry.ensure_seeded() is False
        assert set(await registry.list_categories()) == {"pets"}

    @pytest.mark.asyncio
    async def test_concurrent_seeding_installs_once(self, registry):
        """Test two sessions seeding at once."""
        results = await asyncio.gather(registry.ensure_seeded(), registry.ensure_seeded())
        assert sorted(results) == [False, True]
        assert set(await registry.list_categories()) == DEFAULT_IDS

    @pytest.mark.asyncio
    async def test_seeding_is_audited(self, registry, audit_storage):
        """Test the audit trail."""
        await registry.ensure_seeded()
        events = await audit_storage.get_recent_events()
        assert events[0].event_type == AuditEventType.CATEGORIES_SEEDED
        assert events[0].user_id == "user-1"


class TestAddCategory:
    """Tests for adding categories."""

    @pytest.mark.asyncio
    async def test_add_uses_slug_and_defaults(self, registry):
        """Test id, default icon and generated color."""
        category = await registry.add("Eating Out")

        assert category.id == "eating_out"
        assert category.name == "Eating Out"
        assert category.icon == "📦"
        assert re.fullmatch(r"#[0-9a-f]{6}", category.color)
        assert await registry.contains("eating_out")
        assert (await registry.get("eating_out")) == category

    @pytest.mark.asyncio
    async def test_add_with_icon_and_color(self, registry):
        """Test explicit icon and color."""
        category = await registry.add("Pets", icon="🐶", color="#112233")
        assert category.icon == "🐶"
        assert category.color == "#112233"

    @pytest.mark.asyncio
    async def test_add_initialises_current_period_spend(self, registry, store):
        """Test that the current aggregate gets a zero key."""
        await registry.add("Pets")
        assert await store.get(f"budgets/{PERIOD}/spentByCategory/pets") == "0"

    @pytest.mark.asyncio
    async def test_add_keeps_existing_spend_key(self, registry, store):
        """Test that a leftover spend value is not reset."""
        await store.atomic_update({f"budgets/{PERIOD}/spentByCategory/pets": "30"})
        await registry.add("Pets")
        assert await store.get(f"budgets/{PERIOD}/spentByCategory/pets") == "30"

    @pytest.mark.asyncio
    async def test_add_is_one_write(self, registry, store):
        """Test that definition and spend key are written together."""
        await registry.add("Pets")
        assert store.write_count == 1

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, registry, store):
        """Test that blank names are refused without writing."""
        for name in ("", "   ", "./#"):
            with pytest.raises(InvalidCategoryName):
                await registry.add(name)
        assert store.write_count == 0

    @pytest.mark.asyncio
    async def test_duplicate_slug_rejected(self, registry):
        """Test that colliding names raise DuplicateCategory."""
        await registry.add("Eating Out", color="#111111")
        with pytest.raises(DuplicateCategory) as exc_info:
            await registry.add("eating   out", color="#222222")

        assert exc_info.value.category_id == "eating_out"
        assert (await registry.get("eating_out")).color == "#111111"

    @pytest.mark.asyncio
    async def test_duplicate_overwrites_when_allowed(self, store, audit_logger, clock, audit_storage):
        """Test last-write-wins when duplicates are allowed."""
        registry = CategoryRegistry(
            store,
            audit_logger,
            settings=LedgerSettings(reject_duplicate_categories=False),
            clock=clock,
        )
        await registry.add("Eating Out", color="#111111")
        await registry.add("eating out", color="#222222")

        category = await registry.get("eating_out")
        assert category.color == "#222222"
        assert category.name == "eating out"

        events = await audit_storage.get_recent_events()
        assert events[0].details["overwritten"] is True


class TestRemoveCategory:
    """Tests for removing categories."""

    @pytest.mark.asyncio
    async def test_remove_deletes_definition_and_current_spend(self, registry, store):
        """Test the atomic removal."""
        await registry.ensure_seeded()
        await store.atomic_update({
            f"budgets/{PERIOD}": {
                "totalBudget": "500",
                "spentTotal": "100",
                "spentByCategory": {"rent": "100", "groceries": "0"},
            },
        })
        writes = store.write_count

        await registry.remove("rent")

        assert not await registry.contains("rent")
        aggregate = await store.get_aggregate(PERIOD)
        assert "rent" not in aggregate.spent_by_category
        assert "groceries" in aggregate.spent_by_category
        assert store.write_count == writes + 1

    @pytest.mark.asyncio
    async def test_remove_leaves_entries_and_other_periods(self, registry, store):
        """Test that history is not rewritten."""
        await registry.ensure_seeded()
        await store.atomic_update({
            "budgets/2024-04/spentByCategory/rent": "900",
            "expenses/e1": {
                "amount": "900",
                "categoryId": "rent",
                "description": "",
                "timestamp": "2024-04-01T00:00:00+00:00",
            },
        })

        await registry.remove("rent")

        assert await store.get("budgets/2024-04/spentByCategory/rent") == "900"
        assert (await store.get_entry("e1")).category_id == "rent"

    @pytest.mark.asyncio
    async def test_remove_unknown_raises(self, registry, store):
        """Test removing a category that does not exist."""
        with pytest.raises(UnknownCategory):
            await registry.remove("nope")
        assert store.write_count == 0

    @pytest.mark.asyncio
    async def test_remove_is_audited(self, registry, audit_storage):
        """Test the audit trail."""
        await registry.ensure_seeded()
        await registry.remove("rent")

        events = await audit_storage.get_recent_events(limit=1)
        assert events[0].event_type == AuditEventType.CATEGORY_REMOVED
        assert events[0].entity_id == "rent"

    @pytest.mark.asyncio
    async def test_storage_fault_is_commit_failed(self, store, audit_logger, audit_storage, clock):
        """Test that a failed write is wrapped and audited."""
        registry = CategoryRegistry(store, audit_logger, clock=clock)
        await registry.ensure_seeded()

        async def broken_update(updates, expected_versions=None):
            raise StorageError("sheet unavailable")

        store.atomic_update = broken_update
        with pytest.raises(CommitFailed):
            await registry.remove("rent")

        assert await registry.contains("rent")
        events = await audit_storage.get_recent_events(limit=1)
        assert events[0].event_type == AuditEventType.SYSTEM_ERROR
        assert events[0].details["operation"] == "remove_category"
