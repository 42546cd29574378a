"""Canonical descriptor and render option types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping

from .identifiers import ObjectClass, ObjectId


@dataclass(frozen=True)
class Descriptor:
    """Class-agnostic view of one object's metadata.

    Built once by the normalizer and shared by every renderer, so JSON and
    text output always agree on which fields exist.
    """

    id: ObjectId
    name: str | None = None
    state: str | None = None
    created_at: datetime | None = None
    modified_at: datetime | None = None
    context: ObjectId | None = None
    properties: Mapping[str, Any] = field(default_factory=dict)
    references: tuple[ObjectId, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))
        object.__setattr__(self, "references", tuple(self.references))

    @property
    def object_class(self) -> ObjectClass:
        return self.id.object_class


@dataclass(frozen=True)
class RenderOptions:
    json: bool = False
    debug: bool = False


@dataclass(frozen=True)
class FetchTrace:
    """Diagnostics gathered while fetching one payload."""

    elapsed_ms: int
    attempts: int
    payload_bytes: int = 0
    payload_keys: tuple[str, ...] = ()
    nested_objects: int = 0
    nested_arrays: int = 0

    @property
    def retries(self) -> int:
        return max(self.attempts - 1, 0)
