"""
In-memory model store with lifecycle hooks.

A minimal stand-in for an ORM: named model collections holding dict
records, equality-predicate queries, and ``before save`` / ``after save`` /
``before delete`` / ``after delete`` observer dispatch with a shared
HookContext per operation. The relay publisher attaches to these hooks.
"""

import copy
import itertools
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from app.relay.models import HookContext, HookObserver

logger = logging.getLogger(__name__)

HOOK_EVENTS = ("before save", "after save", "before delete", "after delete")


class RecordNotFoundError(Exception):
    """Raised when a record id does not exist in a model collection."""

    pass


class ModelCollection:
    """
    Records of one model plus its lifecycle observers.

    Observers are awaited in registration order. An observer that raises
    aborts the operation, as it would in an ORM.
    """

    def __init__(self, name: str):
        self.name = name
        self._records: Dict[str, Dict[str, Any]] = {}
        self._observers: Dict[str, List[HookObserver]] = defaultdict(list)
        self._ids = itertools.count(1)

    def observe(self, event: str, observer: HookObserver) -> None:
        """Register an async observer for a lifecycle event."""
        if event not in HOOK_EVENTS:
            raise ValueError(f"Unknown hook event {event!r}; expected one of {HOOK_EVENTS}")
        self._observers[event].append(observer)

    async def _notify(self, event: str, ctx: HookContext) -> None:
        for observer in list(self._observers.get(event, [])):
            await observer(ctx)

    @staticmethod
    def _matches(record: Dict[str, Any], where: Optional[Dict[str, Any]]) -> bool:
        if not where:
            return True
        return all(record.get(key) == value for key, value in where.items())

    def _next_id(self) -> str:
        while True:
            candidate = str(next(self._ids))
            if candidate not in self._records:
                return candidate

    # ============================================================
    # Queries
    # ============================================================

    async def find(self, where: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Return copies of all records matching ``where`` (all when empty)."""
        return [
            copy.deepcopy(record)
            for record in self._records.values()
            if self._matches(record, where)
        ]

    async def find_by_id(self, record_id: str) -> Optional[Dict[str, Any]]:
        record = self._records.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def count(self, where: Optional[Dict[str, Any]] = None) -> int:
        return sum(1 for record in self._records.values() if self._matches(record, where))

    # ============================================================
    # Mutations
    # ============================================================

    async def create(self, data: Dict[str, Any], actor: Optional[str] = None) -> Dict[str, Any]:
        """Insert a record; assigns a string id when ``data`` has none."""
        record = copy.deepcopy(dict(data))
        if record.get("id") in (None, ""):
            record["id"] = self._next_id()

        ctx = HookContext(
            model_name=self.name,
            instance=record,
            is_new_instance=True,
            actor=actor,
        )
        await self._notify("before save", ctx)
        self._records[record["id"]] = copy.deepcopy(ctx.instance)
        await self._notify("after save", ctx)

        logger.debug(f"Created {self.name} {record['id']}")
        return copy.deepcopy(self._records[record["id"]])

    async def update(
        self, record_id: str, patch: Dict[str, Any], actor: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Apply a patch to one record.

        Raises:
            RecordNotFoundError: If the record does not exist.
        """
        existing = self._records.get(record_id)
        if existing is None:
            raise RecordNotFoundError(f"{self.name} {record_id} not found")

        ctx = HookContext(
            model_name=self.name,
            data=copy.deepcopy(dict(patch)),
            where={"id": record_id},
            current_instance=copy.deepcopy(existing),
            actor=actor,
        )
        await self._notify("before save", ctx)

        updated = {**existing, **ctx.data, "id": record_id}
        self._records[record_id] = updated
        ctx.instance = copy.deepcopy(updated)
        await self._notify("after save", ctx)

        return copy.deepcopy(updated)

    async def update_all(
        self,
        where: Optional[Dict[str, Any]],
        patch: Dict[str, Any],
        actor: Optional[str] = None,
    ) -> int:
        """Apply a patch to every record matching ``where``; returns the count."""
        ctx = HookContext(
            model_name=self.name,
            data=copy.deepcopy(dict(patch)),
            where=dict(where or {}),
            actor=actor,
        )
        await self._notify("before save", ctx)

        count = 0
        for record_id, record in list(self._records.items()):
            if self._matches(record, ctx.where):
                self._records[record_id] = {**record, **ctx.data, "id": record_id}
                count += 1

        await self._notify("after save", ctx)
        return count

    async def delete_all(
        self, where: Optional[Dict[str, Any]] = None, actor: Optional[str] = None
    ) -> int:
        """Delete every record matching ``where`` (all when empty); returns the count."""
        ctx = HookContext(model_name=self.name, where=dict(where or {}), actor=actor)
        await self._notify("before delete", ctx)

        doomed = [
            record_id
            for record_id, record in self._records.items()
            if self._matches(record, ctx.where)
        ]
        for record_id in doomed:
            del self._records[record_id]

        await self._notify("after delete", ctx)
        return len(doomed)

    async def delete(self, record_id: str, actor: Optional[str] = None) -> bool:
        """Delete one record by id; returns False when it did not exist."""
        return await self.delete_all({"id": record_id}, actor=actor) > 0


class ModelStore:
    """
    Application-level container of model collections.

    Exposes ``models`` (name -> ModelCollection), the shape the relay
    publisher expects from its ``app`` argument.
    """

    def __init__(self, model_names: Optional[List[str]] = None):
        self.models: Dict[str, ModelCollection] = {}
        for name in model_names or []:
            self.define(name)

    def define(self, name: str) -> ModelCollection:
        """Get or create the collection for ``name``."""
        collection = self.models.get(name)
        if collection is None:
            collection = ModelCollection(name)
            self.models[name] = collection
        return collection
