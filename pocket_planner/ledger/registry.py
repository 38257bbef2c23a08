"""
Category Registry

Owns the user's spending categories. Knows nothing about spend,
except that adding or removing a category also touches the current
period's spentByCategory key in the same atomic write.

DESIGN DECISION: Category ids are slugs of the display name
("Eating Out" -> "eating_out"). Two names with the same slug collide;
by default that raises DuplicateCategory instead of silently
overwriting. Set LEDGER_REJECT_DUPLICATE_CATEGORIES=false to get
last-write-wins.

Removing a category does NOT rewrite past entries or other periods.
Those keep a dangling reference that analytics render under a
fallback label.
"""

import random
import re
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError as SchemaError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from pocket_planner.audit import AuditLogger
from pocket_planner.config import LedgerSettings, get_settings
from pocket_planner.errors import (
    CommitFailed,
    DuplicateCategory,
    InvalidCategoryName,
    UnknownCategory,
    ValidationError,
)
from pocket_planner.models.ledger import (
    CategoryDefinition,
    current_period,
)
from pocket_planner.services.storage import (
    CATEGORIES,
    TOMBSTONE,
    ConflictError,
    LedgerStoreInterface,
    StorageError,
    budget_path,
    category_path,
)


DEFAULT_CATEGORIES: tuple[CategoryDefinition, ...] = (
    CategoryDefinition(id="groceries", name="Groceries", icon="🛒", color="#4A6E52"),
    CategoryDefinition(id="rent", name="Rent", icon="🏠", color="#C8B08C"),
    CategoryDefinition(id="utilities", name="Utilities", icon="💡", color="#FF6B6B"),
    CategoryDefinition(id="entertainment", name="Entertainment", icon="🎬", color="#6B66FF"),
    CategoryDefinition(id="transportation", name="Transportation", icon="🚌", color="#66D7D1"),
    CategoryDefinition(id="education", name="Education", icon="📚", color="#FF66D7"),
)

_SLUG_UNSAFE = re.compile(r"[.#$\[\]/]")


def slugify(name: str) -> str:
    """Lower-case, whitespace runs to "_", path-unsafe characters dropped."""
    slug = re.sub(r"\s+", "_", name.strip().lower())
    return _SLUG_UNSAFE.sub("", slug)


def random_color(rng: Optional[random.Random] = None) -> str:
    """Random #rrggbb display color."""
    return f"#{(rng or random).randrange(0x1000000):06x}"


def spent_key_path(period: str, category_id: str) -> str:
    """Path of spentByCategory[category_id] inside a period's aggregate."""
    return f"{budget_path(period)}/spentByCategory/{category_id}"


class CategoryRegistry:
    """
    The set of categories available to one user.

    Args:
        store: The user's ledger store
        audit_logger: Optional audit sink
        settings: Ledger settings (defaults to environment)
        rng: Random source for generated colors
        clock: "Now" for picking the current period
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().ledger
        self._rng = rng
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    # ─── Reads ───────────────────────────────────────────────────────────────

    async def list_categories(self) -> dict[str, CategoryDefinition]:
        return await self._store.list_categories()

    async def get(self, category_id: str) -> Optional[CategoryDefinition]:
        return (await self.list_categories()).get(category_id)

    async def contains(self, category_id: str) -> bool:
        return await self.get(category_id) is not None

    # ─── Writes ──────────────────────────────────────────────────────────────

    async def ensure_seeded(self) -> bool:
        """
        Install the default categories if the user has none.

        Idempotent. Safe to call on every start, including from two
        sessions at once (the collection version guards the write).

        Returns:
            True if the defaults were installed by this call
        """
        try:
            async for attempt in self._attempts():
                with attempt:
                    version = await self._store.version(CATEGORIES)
                    if await self._store.get(CATEGORIES):
                        return False
                    await self._store.atomic_update(
                        {category_path(c.id): c.to_store() for c in DEFAULT_CATEGORIES},
                        expected_versions={CATEGORIES: version},
                    )
        except (ConflictError, StorageError) as e:
            await self._fail("seed_categories", e)
            raise CommitFailed(f"Failed to seed categories: {e}") from e

        if self._audit_logger:
            await self._audit_logger.log_categories_seeded([c.id for c in DEFAULT_CATEGORIES])
        return True

    async def add(
        self,
        name: str,
        icon: Optional[str] = None,
        color: Optional[str] = None,
    ) -> CategoryDefinition:
        """
        Add a category named `name`.

        Also initialises spentByCategory[id] = 0 in the current period
        if that key is missing.

        Raises:
            InvalidCategoryName: Blank name, or nothing left after slugging
            DuplicateCategory: Slug already taken (unless overwrites are allowed)
            CommitFailed: Storage fault
        """
        name = (name or "").strip()
        category_id = slugify(name)
        if not name or not category_id:
            raise InvalidCategoryName(name)

        try:
            definition = CategoryDefinition(
                id=category_id,
                name=name,
                icon=icon or self._settings.default_category_icon,
                color=color or random_color(self._rng),
            )
        except SchemaError as e:
            raise ValidationError(f"Invalid category: {e}", field="category") from e

        period = current_period(self._clock())
        overwritten = False
        try:
            async for attempt in self._attempts():
                with attempt:
                    overwritten = await self._write_category(definition, period)
        except (ConflictError, StorageError) as e:
            await self._fail("add_category", e, category_id)
            raise CommitFailed(f"Failed to add category {category_id!r}: {e}") from e

        if self._audit_logger:
            await self._audit_logger.log_category_added(category_id, name, overwritten)
        return definition

    async def remove(self, category_id: str) -> None:
        """
        Delete a category and the current period's spentByCategory key.

        Past entries and other periods keep their references.

        Raises:
            UnknownCategory: Not in the registry
            CommitFailed: Storage fault
        """
        if await self._store.get(category_path(category_id)) is None:
            raise UnknownCategory(category_id)

        period = current_period(self._clock())
        try:
            await self._store.atomic_update({
                category_path(category_id): TOMBSTONE,
                spent_key_path(period, category_id): TOMBSTONE,
            })
        except StorageError as e:
            await self._fail("remove_category", e, category_id)
            raise CommitFailed(f"Failed to remove category {category_id!r}: {e}") from e

        if self._audit_logger:
            await self._audit_logger.log_category_removed(category_id, period)

    # ─── Helpers ─────────────────────────────────────────────────────────────

    async def _fail(self, operation: str, error: Exception, category_id: Optional[str] = None) -> None:
        if self._audit_logger:
            await self._audit_logger.log_error(
                type(error).__name__,
                str(error),
                details={"operation": operation, "category_id": category_id},
            )

    def _attempts(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._settings.commit_max_attempts),
            retry=retry_if_exception_type(ConflictError),
            reraise=True,
        )

    async def _write_category(self, definition: CategoryDefinition, period: str) -> bool:
        """One guarded write. Returns True if an existing definition was replaced."""
        path = category_path(definition.id)
        aggregate_path = budget_path(period)

        category_version = await self._store.version(path)
        aggregate_version = await self._store.version(aggregate_path)
        existing = await self._store.get(path)
        if existing is not None and self._settings.reject_duplicate_categories:
            raise DuplicateCategory(definition.id)

        updates = {path: definition.to_store()}
        aggregate = await self._store.get_aggregate(period)
        if definition.id not in aggregate.spent_by_category:
            updates[spent_key_path(period, definition.id)] = "0"

        await self._store.atomic_update(
            updates,
            expected_versions={path: category_version, aggregate_path: aggregate_version},
        )
        return existing is not None
