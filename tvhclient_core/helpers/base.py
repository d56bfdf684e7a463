"""Incremental entity cache shared by the data helpers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..correlator import ResponseCorrelator

_LOGGER = logging.getLogger(__name__)

_ENVELOPE_FIELDS = frozenset({"method", "seq"})


class EntityCache:
    """Identifier → attribute mapping built from add/update/delete deltas.

    Stored attribute dicts are never modified after insertion: every delta
    installs a new dict with a single assignment, so readers always see
    either the old or the new version of an entity.

    Policy for updates of unknown identifiers (including ones deleted
    earlier): the update becomes an add built from the update's fields
    alone, and ``unknown_updates`` is incremented.
    """

    def __init__(self, kind: str, id_field: str) -> None:
        self.kind = kind
        self.id_field = id_field
        self._entities: dict[Any, dict[str, Any]] = {}
        self.unknown_updates = 0
        self.unknown_deletes = 0

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    def get(self, entity_id: Any) -> dict[str, Any] | None:
        return self._entities.get(entity_id)

    def values(self) -> Iterator[dict[str, Any]]:
        """Iterate over a point-in-time copy of the stored entities."""
        return iter(list(self._entities.values()))

    def clean(self) -> None:
        self._entities = {}

    def _entity_id(self, message: dict[str, Any]) -> Any:
        entity_id = message.get(self.id_field)
        if entity_id is None:
            raise KeyError(f"{self.kind} message without '{self.id_field}'")
        return entity_id

    @staticmethod
    def _attributes(message: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in message.items() if k not in _ENVELOPE_FIELDS}

    def add(self, message: dict[str, Any]) -> Any:
        entity_id = self._entity_id(message)
        self._entities[entity_id] = self._attributes(message)
        return entity_id

    def update(self, message: dict[str, Any]) -> Any:
        entity_id = self._entity_id(message)
        current = self._entities.get(entity_id)
        if current is None:
            self.unknown_updates += 1
            _LOGGER.debug("%s update for unknown id %s treated as add", self.kind, entity_id)
            self._entities[entity_id] = self._attributes(message)
            return entity_id
        self._entities[entity_id] = {**current, **self._attributes(message)}
        return entity_id

    def delete(self, message: dict[str, Any]) -> Any:
        entity_id = self._entity_id(message)
        if self._entities.pop(entity_id, None) is None:
            self.unknown_deletes += 1
            _LOGGER.debug("%s delete for unknown id %s", self.kind, entity_id)
        return entity_id


class EntityDataHelper:
    """Owns one EntityCache and applies the push events of one entity kind."""

    kind = ""
    id_field = "id"
    add_method = ""
    update_method = ""
    delete_method = ""

    def __init__(self) -> None:
        self._cache = EntityCache(self.kind, self.id_field)

    @property
    def cache(self) -> EntityCache:
        return self._cache

    @property
    def methods(self) -> tuple[str, str, str]:
        return (self.add_method, self.update_method, self.delete_method)

    def subscribe(self, correlator: ResponseCorrelator) -> None:
        correlator.subscribe(self.methods, self.handle)

    def handle(self, message: dict[str, Any]) -> None:
        """Route one push event to the matching mutation."""
        method = message.get("method")
        if method == self.add_method:
            self.entity_add(message)
        elif method == self.update_method:
            self.entity_update(message)
        elif method == self.delete_method:
            self.entity_delete(message)
        else:
            _LOGGER.debug("%s helper ignoring %s", self.kind, method)

    def clean(self) -> None:
        self._cache.clean()

    def entity_add(self, message: dict[str, Any]) -> None:
        self._cache.add(message)

    def entity_update(self, message: dict[str, Any]) -> None:
        self._cache.update(message)

    def entity_delete(self, message: dict[str, Any]) -> None:
        self._cache.delete(message)

    @staticmethod
    def is_cancelled(cancel_event: asyncio.Event | None) -> bool:
        return cancel_event is not None and cancel_event.is_set()
