"""Translator interface shared by all entity types.

Translators are pure and synchronous. Anything they need from outside the
entity itself (remote ids of referenced customers/products) is resolved by
the caller up front and handed in as a ReferenceMap. Fallbacks on unmapped
codes never raise; they are reported in Translation.warnings for the
caller to log.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Generic, TypeVar

from src.erp_sync.sync.errors import TranslationError
from src.erp_sync.sync.schemas import EntityType, LocalEntity, MappingRecord

T = TypeVar("T")

MAX_NOTES_LENGTH = 2000


@dataclass
class Translation(Generic[T]):
    value: T
    warnings: list[str] = field(default_factory=list)


@dataclass
class ReferenceMap:
    """Known local <-> remote id pairs for entities referenced by a payload."""

    _to_remote: dict[tuple[EntityType, str], str] = field(default_factory=dict, init=False)
    _to_local: dict[tuple[EntityType, str], str] = field(default_factory=dict, init=False)

    def add(self, entity_type: EntityType, local_id: str, remote_id: str) -> None:
        self._to_remote[(entity_type, local_id)] = remote_id
        self._to_local[(entity_type, remote_id)] = local_id

    def remote_id(self, entity_type: EntityType, local_id: str | None) -> str | None:
        if local_id is None:
            return None
        return self._to_remote.get((entity_type, local_id))

    def local_id(self, entity_type: EntityType, remote_id: str | None) -> str | None:
        if remote_id is None:
            return None
        return self._to_local.get((entity_type, str(remote_id)))


class EntityTranslator(ABC):
    """Bidirectional converter for one entity type."""

    entity_type: EntityType

    @abstractmethod
    def to_remote(
        self,
        entity: Any,
        refs: ReferenceMap | None = None,
        mapping: MappingRecord | None = None,
    ) -> Translation[dict[str, Any]]:
        """Convert a local entity into the remote payload."""
        ...

    @abstractmethod
    def to_local(
        self,
        payload: dict[str, Any],
        refs: ReferenceMap | None = None,
        local_id: str | None = None,
    ) -> Translation[LocalEntity]:
        """Convert a remote payload into a local entity."""
        ...

    def local_references(self, entity: Any) -> list[tuple[EntityType, str]]:
        """Local ids this entity references, resolved before to_remote()."""
        return []

    def remote_references(self, payload: dict[str, Any]) -> list[tuple[EntityType, str]]:
        """Remote ids this payload references, resolved before to_local()."""
        return []

    def _required(self, value: Any, field_name: str) -> Any:
        if value is None or (isinstance(value, (str, list)) and not value):
            raise TranslationError(
                f"{self.entity_type.value} is missing required field '{field_name}'",
                field=field_name,
                entity_type=self.entity_type.value,
            )
        return value


def to_decimal(value: Any, default: Decimal | None = None) -> Decimal | None:
    """Parse a remote amount ("12.50", 12.5, None) into a Decimal.

    Missing or unparseable values give ``default``; a parsed zero is kept.
    """
    if value in (None, ""):
        return default
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return default
