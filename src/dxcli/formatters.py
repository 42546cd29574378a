"""Descriptor renderers.

JSON and text are both projections of the same Descriptor: every text line
comes from a Descriptor field that is also emitted in JSON, and vice versa.
"""

from __future__ import annotations

from datetime import datetime, timezone
import json
from typing import Any

from .models import Descriptor, FetchTrace, RenderOptions

PLACEHOLDER = "-"
TEXT_SEPARATOR = "---"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_LABELS = (
    "ID",
    "Class",
    "Name",
    "State",
    "Created",
    "Last Modified",
    "Context",
    "Properties",
    "References",
)
_LABEL_WIDTH = max(len(label) for label in _LABELS) + 4
_INDENT = "  "
_LINE_BREAKING = ("\n", "\r", "\t", "\x0b", "\x0c", "\x1c", "\x1d", "\x1e", "\x85", "\u2028", "\u2029")


def format_json(data: dict) -> str:
    """Full JSON passthrough."""
    return json.dumps(data, indent=2)


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return _iso(value)
    if isinstance(value, dict):
        return {k: _json_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_json_value(v) for v in value]
    return value


def descriptor_document(d: Descriptor) -> dict:
    """Canonical JSON document. ``None`` fields are omitted, never null."""
    doc: dict[str, Any] = {
        "id": d.id.dxid,
        "class": d.object_class.value,
        "name": d.name,
        "state": d.state,
        "created_at": _iso(d.created_at) if d.created_at is not None else None,
        "modified_at": _iso(d.modified_at) if d.modified_at is not None else None,
        "context": d.context.dxid if d.context is not None else None,
    }
    doc = {k: v for k, v in doc.items() if v is not None}
    doc["properties"] = {k: _json_value(v) for k, v in d.properties.items()}
    doc["references"] = [ref.dxid for ref in d.references]
    return doc


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------


def _text_value(value: Any) -> str:
    if isinstance(value, str):
        # One line per field: quote anything that would break the line.
        if any(ch in value for ch in _LINE_BREAKING):
            return json.dumps(value)
        return value
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)
    return json.dumps(_json_value(value), separators=(", ", ": "))


def _line(prefix: str, value: str) -> str:
    return prefix.rstrip() if value == "" else prefix + value


def _row(label: str, value: str | None) -> str:
    return _line(f"{label:<{_LABEL_WIDTH}}", PLACEHOLDER if value is None else value)


def _optional_text(value: Any) -> str | None:
    return _text_value(value) if value is not None else None


def format_text(d: Descriptor) -> str:
    lines = [
        _row("ID", d.id.dxid),
        _row("Class", d.object_class.value),
        _row("Name", _optional_text(d.name)),
        _row("State", _optional_text(d.state)),
        _row("Created", _optional_text(d.created_at)),
        _row("Last Modified", _optional_text(d.modified_at)),
        _row("Context", d.context.dxid if d.context is not None else None),
    ]

    if d.properties:
        lines.append("Properties")
        width = max(len(k) for k in d.properties) + 2
        for key, value in d.properties.items():
            lines.append(_line(f"{_INDENT}{key:<{width}}", _text_value(value)))
    else:
        lines.append(_row("Properties", None))

    if d.references:
        lines.append("References")
        lines.extend(f"{_INDENT}{ref.dxid}" for ref in d.references)
    else:
        lines.append(_row("References", None))

    return "\n".join(lines)


def render(d: Descriptor, opts: RenderOptions) -> str:
    """Render one descriptor. The debug trace is rendered separately."""
    if opts.json:
        return format_json(descriptor_document(d))
    return format_text(d)


# ---------------------------------------------------------------------------
# Debug trace
# ---------------------------------------------------------------------------


def render_trace(label: str, trace: FetchTrace) -> str:
    """Operator-facing diagnostics block; not a stable format."""
    keys = ", ".join(trace.payload_keys) if trace.payload_keys else PLACEHOLDER
    return "\n".join(
        [
            f"--- debug: {label} ---",
            f"fetch_ms: {trace.elapsed_ms}",
            f"attempts: {trace.attempts}",
            f"retries: {trace.retries}",
            f"payload_bytes: {trace.payload_bytes}",
            f"payload_keys: {len(trace.payload_keys)} ({keys})",
            f"nested: objects={trace.nested_objects} arrays={trace.nested_arrays}",
        ]
    )
