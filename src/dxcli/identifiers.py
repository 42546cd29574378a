"""Class-prefixed platform identifiers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re

from .errors import ParseError

DELIMITER = "-"
PROJECT_QUALIFIER = ":"

_LOCAL_ID_RE = re.compile(r"[A-Za-z0-9]+")


class ObjectClass(str, Enum):
    """Closed set of describable object classes. Values are id prefixes."""

    ANALYSIS = "analysis"
    JOB = "job"
    FILE = "file"
    APP = "app"
    APPLET = "applet"
    DATABASE = "database"
    RECORD = "record"
    PROJECT = "project"
    CONTAINER = "container"

    @property
    def is_data_object(self) -> bool:
        return self in _DATA_OBJECT_CLASSES


_DATA_OBJECT_CLASSES = frozenset(
    {ObjectClass.FILE, ObjectClass.RECORD, ObjectClass.DATABASE, ObjectClass.APPLET}
)

_CLASS_BY_PREFIX = {c.value: c for c in ObjectClass}


@dataclass(frozen=True)
class ObjectId:
    object_class: ObjectClass
    local_id: str
    project: ObjectId | None = None

    @property
    def dxid(self) -> str:
        """Unqualified identifier, e.g. ``file-XXXX``."""
        return f"{self.object_class.value}{DELIMITER}{self.local_id}"

    def unqualified(self) -> ObjectId:
        if self.project is None:
            return self
        return ObjectId(self.object_class, self.local_id)

    def __str__(self) -> str:
        if self.project is not None:
            return f"{self.project.dxid}{PROJECT_QUALIFIER}{self.dxid}"
        return self.dxid


def _parse_simple(raw: str) -> ObjectId:
    prefix, sep, local_id = raw.partition(DELIMITER)
    if not prefix:
        raise ParseError(ParseError.MALFORMED, f"missing class prefix in {raw!r}")
    object_class = _CLASS_BY_PREFIX.get(prefix)
    if object_class is None:
        raise ParseError(ParseError.UNKNOWN_CLASS, f"unknown object class {prefix!r}")
    if not sep or not local_id:
        raise ParseError(ParseError.MALFORMED, f"missing local id in {raw!r}")
    if not _LOCAL_ID_RE.fullmatch(local_id):
        raise ParseError(ParseError.MALFORMED, f"invalid local id {local_id!r}")
    return ObjectId(object_class, local_id)


def parse(raw: str) -> ObjectId:
    """Parse ``class-localid`` or ``project-XXXX:class-localid``."""
    if not raw:
        raise ParseError(ParseError.MALFORMED, "empty identifier")

    qualifier, sep, rest = raw.partition(PROJECT_QUALIFIER)
    if not sep:
        return _parse_simple(raw)

    project = _parse_simple(qualifier)
    target = _parse_simple(rest)
    if project.object_class is not ObjectClass.PROJECT:
        raise ParseError(ParseError.MALFORMED, f"qualifier must be a project id, got {qualifier!r}")
    if not target.object_class.is_data_object:
        raise ParseError(
            ParseError.MALFORMED,
            f"{target.object_class.value} ids cannot be project-qualified",
        )
    return ObjectId(target.object_class, target.local_id, project)


def try_parse(raw: object) -> ObjectId | None:
    """Parse ``raw`` if it is an identifier string, else None."""
    if not isinstance(raw, str):
        return None
    try:
        return parse(raw)
    except ParseError:
        return None
