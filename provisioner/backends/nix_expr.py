"""
Nix expression documents — build, merge and render.

A declarative configuration is handled as plain Python data (dicts,
lists, scalars) until the very end, so contributions from several
services can be merged and checked for conflicts before anything is
written. Only ``render`` produces Nix text.

Conventions for values coming from YAML:
    - dotted keys expand to nesting: ``services.ollama`` → services → ollama
      (only when every part is a plain identifier)
    - ``{"_raw": "pkgs.curl"}`` is a raw Nix expression, emitted verbatim
    - every other string is a literal and is escaped
"""

from __future__ import annotations

import re
from typing import Any

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_'-]*$")
_IDENT_PATH = re.compile(r"^[A-Za-z_][A-Za-z0-9_'.-]*$")
_RAW_KEY = "_raw"
_INDENT = "  "


class NixExpr(str):
    """A raw Nix expression (``pkgs.curl``), rendered without quoting."""

    def __repr__(self) -> str:
        return f"NixExpr({str(self)!r})"


class MergeConflict(ValueError):
    """Two contributions set the same attribute to different values."""

    def __init__(self, path: list[str], existing: Any, incoming: Any):
        self.path = path
        self.existing = existing
        self.incoming = incoming
        super().__init__(
            f"conflicting values for {'.'.join(path)}: {existing!r} vs {incoming!r}"
        )


# ── Normalization ───────────────────────────────────────────────────


def normalize(value: Any) -> Any:
    """Turn YAML-shaped data into a document: expand dotted keys, mark raw exprs."""
    if isinstance(value, dict):
        if set(value) == {_RAW_KEY}:
            return NixExpr(str(value[_RAW_KEY]))
        doc: dict[str, Any] = {}
        for key, item in value.items():
            key = str(key)
            parts = key.split(".")
            if len(parts) > 1 and all(_IDENT.match(p) for p in parts):
                nested: Any = normalize(item)
                for part in reversed(parts[1:]):
                    nested = {part: nested}
                doc = merge(doc, {parts[0]: nested})
            else:
                doc = merge(doc, {key: normalize(item)})
        return doc
    if isinstance(value, (list, tuple)):
        return [normalize(v) for v in value]
    return value


def set_path(doc: dict[str, Any], path: list[str], value: Any) -> dict[str, Any]:
    """Merge ``value`` at ``path`` into ``doc`` and return the result."""
    nested: Any = value
    for part in reversed(path):
        nested = {part: nested}
    return merge(doc, nested)


# ── Merge ───────────────────────────────────────────────────────────


def merge(base: dict[str, Any], overlay: dict[str, Any], _path: list[str] | None = None) -> dict[str, Any]:
    """Deep-merge two documents without mutating either.

    Attribute sets merge recursively, lists concatenate without
    duplicates, equal scalars are fine.

    Raises:
        MergeConflict: Same attribute, different non-mergeable values.
    """
    path = _path or []
    result = dict(base)
    for key, incoming in overlay.items():
        if key not in result:
            result[key] = incoming
            continue
        existing = result[key]
        here = path + [key]
        if isinstance(existing, dict) and isinstance(incoming, dict):
            result[key] = merge(existing, incoming, here)
        elif isinstance(existing, list) and isinstance(incoming, list):
            result[key] = existing + [v for v in incoming if v not in existing]
        elif _same(existing, incoming):
            continue
        else:
            raise MergeConflict(here, existing, incoming)
    return result


def _same(a: Any, b: Any) -> bool:
    # NixExpr("x") must not equal the literal "x"
    return type(a) is type(b) and a == b


# ── Rendering ───────────────────────────────────────────────────────


def escape_string(value: str) -> str:
    """Nix double-quoted string literal."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("${", "\\${")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def _attr_name(key: str) -> str:
    return key if _IDENT.match(key) else escape_string(key)


def render(value: Any, level: int = 0) -> str:
    """Render a document value as Nix source."""
    pad = _INDENT * level
    inner = _INDENT * (level + 1)

    if isinstance(value, NixExpr):
        return str(value)
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return escape_string(value)
    if isinstance(value, list):
        if not value:
            return "[ ]"
        items = "\n".join(f"{inner}{_list_item(v, level + 1)}" for v in value)
        return f"[\n{items}\n{pad}]"
    if isinstance(value, dict):
        if not value:
            return "{ }"
        lines = [
            f"{inner}{_attr_name(str(k))} = {render(v, level + 1)};"
            for k, v in value.items()
        ]
        return "{\n" + "\n".join(lines) + f"\n{pad}}}"
    raise TypeError(f"cannot render {type(value).__name__} as Nix")


def _list_item(value: Any, level: int) -> str:
    # List elements are whitespace-separated; compound exprs need parens.
    text = render(value, level)
    if isinstance(value, NixExpr) and not _IDENT_PATH.match(str(value)):
        return f"({text})"
    return text


def render_module(doc: dict[str, Any], header: str = "") -> str:
    """A complete NixOS module file taking ``pkgs`` and friends."""
    lines = []
    if header:
        lines += [f"# {line}" if line else "#" for line in header.splitlines()]
    lines.append("{ config, lib, pkgs, ... }:")
    lines.append("")
    lines.append(render(doc))
    return "\n".join(lines) + "\n"
