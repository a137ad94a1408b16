"""
Optimistic Resource Store

A local cache of one household list, kept in sync with the remote store.

Two kinds of writes:

1. Optimistic (toggle, mutate, remove, bulk_remove): the cache changes
   first, the remote write follows, and a failure puts back exactly what
   was changed.
2. Write-then-reflect (add, edit): the cache only changes once the store
   returns the canonical row.

DESIGN DECISIONS:
- Failures never raise. Every failed write emits one destructive
  notification and returns None/False, leaving the cache as it was.
- A load that finishes after a newer load (or a reset) started is
  discarded, so switching months quickly can't show the wrong month.
- Cache order comes from the last load. add() prepends, rollbacks splice
  back, field updates never re-sort.
"""

from typing import Callable, Generic, Iterable, Optional, Union

import structlog
from pydantic import BaseModel, ValidationError

from src.models.notification import NotificationBuilder
from src.notifications import Notifier, create_correlation_id
from src.services.storage import Filter, NotFoundError, Repository, StorageError
from src.services.storage.repository import ModelT
from src.sync.resources import ResourceDefinition
from src.sync.scopes import Scope


logger = structlog.get_logger(__name__)

READ_ONLY_FIELDS = {"id", "family_id", "created_at"}


class OptimisticResourceStore(Generic[ModelT]):
    """Cache plus optimistic writes for one resource."""

    def __init__(
        self,
        repository: Repository[ModelT],
        definition: ResourceDefinition,
        notifier: Notifier,
    ):
        self._repo = repository
        self._definition = definition
        self._notifier = notifier
        self._items: list[ModelT] = []
        self._scope: Optional[Scope] = None
        self._loading = False
        self._generation = 0

    # =========================================================================
    # Read-only state
    # =========================================================================

    @property
    def definition(self) -> ResourceDefinition:
        return self._definition

    @property
    def items(self) -> tuple[ModelT, ...]:
        return tuple(self._items)

    @property
    def scope(self) -> Optional[Scope]:
        return self._scope

    @property
    def loading(self) -> bool:
        return self._loading

    def get(self, entity_id: str) -> Optional[ModelT]:
        return next((item for item in self._items if item.id == entity_id), None)

    def _index_of(self, entity_id: str) -> Optional[int]:
        return next((i for i, item in enumerate(self._items) if item.id == entity_id), None)

    # =========================================================================
    # Loading
    # =========================================================================

    async def load(self, scope: Scope) -> bool:
        """
        Replace the cache with every row of the scope.

        On failure the previous cache (and scope) stay in place.
        """
        self._generation += 1
        generation = self._generation
        self._loading = True

        try:
            items = await self._repo.find_all(
                scope.filters(self._definition.date_column),
                self._definition.order,
            )
        except StorageError as e:
            if generation == self._generation:
                self._loading = False
                await self._notifier.notify(
                    NotificationBuilder.resource_load_failed(
                        self._definition.name, self._definition.label, str(e)
                    )
                )
            return False

        if generation != self._generation:
            logger.debug(
                "stale_load_discarded",
                resource=self._definition.name,
                generation=generation,
            )
            return False

        self._items = items
        self._scope = scope
        self._loading = False
        await self._notifier.notify(
            NotificationBuilder.resource_loaded(self._definition.name, len(items))
        )
        return True

    def reset(self) -> None:
        """Forget the cache; any load still in flight is discarded."""
        self._generation += 1
        self._items = []
        self._scope = None
        self._loading = False

    # =========================================================================
    # Write-then-reflect
    # =========================================================================

    async def add(
        self,
        draft: Union[BaseModel, dict],
        created_by: Optional[str] = None,
    ) -> Optional[ModelT]:
        """
        Create an entity from a draft.

        The stored row is prepended to the cache only if it falls inside
        the current scope (a bill due next month doesn't show up in this
        month's list).
        """
        scope = self._scope
        if scope is None:
            await self._fail("add", "No active scope")
            return None

        try:
            draft = self._definition.draft.model_validate(
                draft.model_dump() if isinstance(draft, BaseModel) else draft
            )
        except ValidationError as e:
            await self._fail("add", str(e))
            return None

        values = draft.model_dump()
        values.update(scope.owner_values())
        if self._definition.tracks_creator and created_by and not values.get("created_by"):
            values["created_by"] = created_by

        try:
            entity = await self._repo.create(values)
        except StorageError as e:
            await self._fail("add", str(e))
            return None

        if self._scope == scope and scope.contains(entity, self._definition.date_column):
            self._items.insert(0, entity)

        await self._notifier.notify(
            NotificationBuilder.resource_added(
                self._definition.name,
                self._definition.label,
                entity.id,
                self._definition.summary(entity),
            )
        )
        return entity

    async def edit(self, entity_id: str, patch: dict) -> Optional[ModelT]:
        """
        Update an entity and reflect the canonical row.

        An entity edited out of the scope window leaves the cache.
        """
        if self.get(entity_id) is None:
            await self._fail("update", f"Not loaded: {entity_id}", entity_id)
            return None
        problem = self._check_patch(patch)
        if problem:
            await self._fail("update", problem, entity_id)
            return None

        try:
            updated = await self._repo.update(entity_id, patch)
        except StorageError as e:
            await self._fail("update", str(e), entity_id)
            return None

        index = self._index_of(entity_id)
        if index is not None:
            if self._scope is not None and self._scope.contains(updated, self._definition.date_column):
                self._items[index] = updated
            else:
                del self._items[index]

        await self._notifier.notify(
            NotificationBuilder.resource_updated(
                self._definition.name, self._definition.label, entity_id, patch
            )
        )
        return updated

    # =========================================================================
    # Optimistic
    # =========================================================================

    async def toggle(self, entity_id: str) -> bool:
        """Flip the resource's main field (completed, paid)."""
        if self._definition.toggle is None:
            await self._fail("update", f"{self._definition.label} can't be toggled", entity_id)
            return False
        entity = self.get(entity_id)
        if entity is None:
            await self._fail("update", f"Not loaded: {entity_id}", entity_id)
            return False
        return await self._apply(entity, self._definition.toggle(entity), toggled=True)

    async def mutate(self, entity_id: str, patch: dict) -> bool:
        """Optimistically update some fields of an entity."""
        entity = self.get(entity_id)
        if entity is None:
            await self._fail("update", f"Not loaded: {entity_id}", entity_id)
            return False
        return await self._apply(entity, patch, toggled=False)

    async def _apply(self, entity: ModelT, patch: dict, toggled: bool) -> bool:
        problem = self._check_patch(patch)
        if problem:
            await self._fail("update", problem, entity.id)
            return False
        try:
            optimistic = type(entity).model_validate({**entity.model_dump(), **patch})
        except ValidationError as e:
            await self._fail("update", str(e), entity.id)
            return False

        correlation_id = create_correlation_id()
        previous = {field: getattr(entity, field) for field in patch}
        self._replace(entity.id, optimistic)

        try:
            await self._repo.update(entity.id, patch)
        except StorageError as e:
            current = self.get(entity.id)
            if current is not None:
                # Only the patched fields go back; anything else changed since stays
                self._replace(entity.id, current.model_copy(update=previous))
            await self._fail("update", str(e), entity.id, rolled_back=True, correlation_id=correlation_id)
            return False

        if toggled:
            notification = NotificationBuilder.resource_toggled(
                self._definition.name,
                self._definition.label,
                entity.id,
                self._definition.summary(optimistic),
                patch,
            )
        else:
            notification = NotificationBuilder.resource_updated(
                self._definition.name, self._definition.label, entity.id, patch
            )
        notification.correlation_id = correlation_id
        await self._notifier.notify(notification)
        return True

    async def remove(self, entity_id: str) -> bool:
        """Optimistically delete an entity."""
        index = self._index_of(entity_id)
        if index is None:
            await self._fail("remove", f"Not loaded: {entity_id}", entity_id)
            return False

        entity = self._items.pop(index)
        try:
            await self._repo.delete(entity_id)
        except NotFoundError:
            logger.info("already_removed", resource=self._definition.name, entity_id=entity_id)
        except StorageError as e:
            self._splice_back([(index, entity)])
            await self._fail("remove", str(e), entity_id, rolled_back=True)
            return False

        await self._notifier.notify(
            NotificationBuilder.resource_removed(
                self._definition.name,
                self._definition.label,
                entity_id,
                self._definition.summary(entity),
            )
        )
        return True

    async def bulk_remove(
        self,
        selector: Union[Iterable[str], Callable[[ModelT], bool]],
    ) -> Optional[int]:
        """
        Optimistically delete several entities with one remote call.

        selector is either ids or a predicate over cached entities.
        Returns how many were removed, or None on failure.
        """
        if callable(selector):
            removed = [(i, item) for i, item in enumerate(self._items) if selector(item)]
        else:
            wanted = set(selector)
            removed = [(i, item) for i, item in enumerate(self._items) if item.id in wanted]
        if not removed:
            return 0

        ids = {item.id for _, item in removed}
        self._items = [item for item in self._items if item.id not in ids]

        try:
            await self._delete_batch([item.id for _, item in removed])
        except StorageError as e:
            self._splice_back(removed)
            await self._fail("remove", str(e), rolled_back=True)
            return None

        await self._notifier.notify(
            NotificationBuilder.resources_removed(
                self._definition.name, self._definition.label, len(removed)
            )
        )
        return len(removed)

    async def _delete_batch(self, entity_ids: list[str]) -> None:
        """Delete a batch; rows already deleted elsewhere count as removed."""
        try:
            await self._repo.delete_many(entity_ids)
        except NotFoundError:
            remaining = await self._repo.find_all([Filter.is_in("id", entity_ids)])
            logger.info(
                "bulk_remove_already_gone",
                resource=self._definition.name,
                missing=len(entity_ids) - len(remaining),
            )
            if remaining:
                await self._repo.delete_many([entity.id for entity in remaining])

    # =========================================================================
    # Helpers
    # =========================================================================

    def _replace(self, entity_id: str, entity: ModelT) -> None:
        index = self._index_of(entity_id)
        if index is not None:
            self._items[index] = entity

    def _splice_back(self, removed: list[tuple[int, ModelT]]) -> None:
        """Re-insert removed entities at (at most) their old positions."""
        for index, entity in sorted(removed, key=lambda pair: pair[0]):
            if self._index_of(entity.id) is None:
                self._items.insert(min(index, len(self._items)), entity)

    def _check_patch(self, patch: dict) -> Optional[str]:
        if not patch:
            return "Nothing to update"
        writable = set(self._definition.model.model_fields) - READ_ONLY_FIELDS
        unknown = set(patch) - writable
        if unknown:
            return f"Unknown or read-only fields: {', '.join(sorted(unknown))}"
        return None

    async def _fail(
        self,
        action: str,
        error: str,
        entity_id: Optional[str] = None,
        rolled_back: bool = False,
        correlation_id=None,
    ) -> None:
        await self._notifier.notify(
            NotificationBuilder.mutation_failed(
                entity_type=self._definition.name,
                action=action,
                label=self._definition.label,
                error=error,
                entity_id=entity_id,
                rolled_back=rolled_back,
                correlation_id=correlation_id,
            )
        )
