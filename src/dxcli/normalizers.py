"""Map class-specific describe payloads onto the canonical Descriptor.

Each object class has a small schema entry saying where its project
back-link lives, which fields carry references to other objects, and which
extra fields are timestamps. Everything the schema does not consume is kept
verbatim in ``Descriptor.properties`` so new platform fields survive.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping, Sequence

from .errors import NormalizeError
from .identifiers import ObjectClass, ObjectId, try_parse
from .models import Descriptor

LINK_KEY = "$dnanexus_link"

# Raw keys consumed into Descriptor fields for every class.
_CANONICAL_KEYS = ("id", "class", "name", "state", "created", "modified")

BASE_REQUIRED = ("id", "class")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class ClassSchema:
    context_key: str | None = "project"
    # Keys holding ids directly (strings, lists, nested {"id": ...} objects).
    reference_keys: tuple[str, ...] = ()
    # Keys where only explicit {"$dnanexus_link": ...} values count.
    link_keys: tuple[str, ...] = ()
    timestamp_keys: tuple[str, ...] = ()


_EXECUTION_IO = ("input", "runInput", "originalInput", "output")

SCHEMAS: dict[ObjectClass, ClassSchema] = {
    ObjectClass.ANALYSIS: ClassSchema(
        reference_keys=(
            "workflow",
            "executable",
            "rootExecution",
            "parentJob",
            "parentAnalysis",
            "analysis",
            "detachedFrom",
            "dependsOn",
            "workspace",
            "stages",
        ),
        link_keys=_EXECUTION_IO,
        timestamp_keys=("egressComputedAt", "priceComputedAt"),
    ),
    ObjectClass.JOB: ClassSchema(
        reference_keys=(
            "applet",
            "app",
            "analysis",
            "parentAnalysis",
            "parentJob",
            "originJob",
            "rootExecution",
            "detachedFrom",
            "outputReusedFrom",
            "dependsOn",
            "projectCache",
            "workspace",
        ),
        link_keys=_EXECUTION_IO,
        timestamp_keys=(
            "tryCreated",
            "startedRunning",
            "stoppedRunning",
            "egressComputedAt",
            "priceComputedAt",
        ),
    ),
    ObjectClass.FILE: ClassSchema(reference_keys=("links",)),
    ObjectClass.RECORD: ClassSchema(reference_keys=("links",)),
    ObjectClass.DATABASE: ClassSchema(reference_keys=("links",)),
    ObjectClass.APPLET: ClassSchema(reference_keys=("links",), link_keys=("runSpec",)),
    ObjectClass.APP: ClassSchema(
        context_key=None,
        reference_keys=("applet",),
        link_keys=("runSpec",),
        timestamp_keys=("published",),
    ),
    ObjectClass.PROJECT: ClassSchema(context_key=None),
    ObjectClass.CONTAINER: ClassSchema(context_key=None, reference_keys=("app",)),
}

_unmapped = set(ObjectClass) - set(SCHEMAS)
if _unmapped:
    raise RuntimeError(f"no normalizer schema for: {sorted(c.value for c in _unmapped)}")


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def parse_timestamp(value: Any, field: str) -> datetime | None:
    """Parse epoch milliseconds (number or digit string) or ISO-8601 text."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise NormalizeError(NormalizeError.BAD_TIMESTAMP, f"{field}: unrecognized timestamp {value!r}")

    if isinstance(value, str) and value.isascii() and value.isdigit():
        value = int(value)

    if isinstance(value, (int, float)):
        try:
            return _EPOCH + timedelta(milliseconds=value)
        except (OverflowError, OSError, ValueError) as exc:
            raise NormalizeError(NormalizeError.BAD_TIMESTAMP, f"{field}: timestamp out of range {value!r}") from exc

    if isinstance(value, str) and value:
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise NormalizeError(NormalizeError.BAD_TIMESTAMP, f"{field}: unrecognized timestamp {value!r}") from exc
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    raise NormalizeError(NormalizeError.BAD_TIMESTAMP, f"{field}: unrecognized timestamp {value!r}")


def _link_target(link: Any) -> ObjectId | None:
    if isinstance(link, Mapping):
        link = link.get("id")
    found = try_parse(link)
    return found.unqualified() if found is not None else None


def find_links(value: Any) -> Iterable[ObjectId]:
    """Yield ids wrapped in ``$dnanexus_link`` objects anywhere in ``value``."""
    if isinstance(value, Mapping):
        if LINK_KEY in value:
            target = _link_target(value[LINK_KEY])
            if target is not None:
                yield target
            return
        for item in value.values():
            yield from find_links(item)
    elif isinstance(value, list):
        for item in value:
            yield from find_links(item)


def find_ids(value: Any) -> Iterable[ObjectId]:
    """Yield every identifier string (or link) nested in ``value``."""
    if isinstance(value, str):
        found = try_parse(value)
        if found is not None:
            yield found.unqualified()
    elif isinstance(value, Mapping):
        if LINK_KEY in value:
            yield from find_links(value)
            return
        for item in value.values():
            yield from find_ids(item)
    elif isinstance(value, list):
        for item in value:
            yield from find_ids(item)


def resolve_references(raw: Mapping[str, Any], schema: ClassSchema) -> tuple[ObjectId, ...]:
    """Collect referenced ids without fetching them, first-seen order."""
    seen: dict[ObjectId, None] = {}
    for key, value in raw.items():
        if key in schema.reference_keys:
            found = find_ids(value)
        elif key in schema.link_keys:
            found = find_links(value)
        else:
            continue
        for object_id in found:
            seen.setdefault(object_id, None)
    return tuple(seen)


def _optional_text(raw: Mapping[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


class ClassNormalizer:
    """Normalize raw payloads, with a configurable required-field contract."""

    def __init__(self, required_fields: Mapping[str, Sequence[str]] | None = None):
        self._required: dict[ObjectClass, tuple[str, ...]] = {c: BASE_REQUIRED for c in ObjectClass}
        for class_name, fields in (required_fields or {}).items():
            try:
                object_class = ObjectClass(class_name)
            except ValueError as exc:
                raise ValueError(f"unknown object class in required_fields: {class_name}") from exc
            extra = tuple(f for f in fields if f not in BASE_REQUIRED)
            self._required[object_class] = BASE_REQUIRED + extra

    def required_for(self, object_class: ObjectClass) -> tuple[str, ...]:
        return self._required[object_class]

    def normalize(self, object_class: ObjectClass, object_id: ObjectId, raw: Mapping[str, Any]) -> Descriptor:
        schema = SCHEMAS[object_class]

        for key in self.required_for(object_class):
            if raw.get(key) is None:
                raise NormalizeError.missing(key)

        if raw["class"] != object_class.value:
            raise NormalizeError(
                NormalizeError.CLASS_MISMATCH,
                f"expected class {object_class.value!r}, payload has {raw['class']!r}",
            )
        expected_id = object_id.dxid
        if raw["id"] != expected_id:
            raise NormalizeError(
                NormalizeError.ID_MISMATCH,
                f"requested {expected_id}, payload describes {raw['id']!r}",
            )

        context = None
        if schema.context_key is not None and raw.get(schema.context_key) is not None:
            context = try_parse(raw[schema.context_key])
            if context is None:
                raise NormalizeError(
                    NormalizeError.BAD_REFERENCE,
                    f"{schema.context_key}: not an object id: {raw[schema.context_key]!r}",
                )
            context = context.unqualified()

        consumed = set(_CANONICAL_KEYS)
        if schema.context_key is not None:
            consumed.add(schema.context_key)

        properties: dict[str, Any] = {}
        for key, value in raw.items():
            if key in consumed:
                continue
            if key in schema.timestamp_keys:
                value = parse_timestamp(value, key)
            properties[key] = value

        return Descriptor(
            id=object_id.unqualified(),
            name=_optional_text(raw, "name"),
            state=_optional_text(raw, "state"),
            created_at=parse_timestamp(raw.get("created"), "created"),
            modified_at=parse_timestamp(raw.get("modified"), "modified"),
            context=context,
            properties=properties,
            references=resolve_references(raw, schema),
        )


_default = ClassNormalizer()


def normalize(object_class: ObjectClass, object_id: ObjectId, raw: Mapping[str, Any]) -> Descriptor:
    """Normalize with the default required-field contract."""
    return _default.normalize(object_class, object_id, raw)
