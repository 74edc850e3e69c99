"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into the typed
``approval_config.schema`` dataclasses.  The single public entry point
for runtime config is ``approval_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required keys.
* Every parsed object is a frozen dataclass.
* ``compute_checksum`` is a deterministic SHA-256 of the raw document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown field kind / approver kind  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from approval_config.schema import ActiveConfig, CatalogSeed, EngineSettings, TemplateSeed
from approval_kernel.domain.workflow import (
    GLOBAL_SCOPE,
    ApproverCandidate,
    ApproverKind,
    FieldDescriptor,
    FieldKind,
    LevelDefinition,
    Scope,
)

_SETTINGS_KEYS = frozenset(EngineSettings.__dataclass_fields__)


def load_yaml_text(text: str) -> dict[str, Any]:
    """Parse a YAML document; an empty document yields an empty dict."""
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping, got {type(data).__name__}")
    return data


def compute_checksum(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _enum(enum_cls: type, value: Any, what: str):
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValueError(f"Unknown {what} {value!r} (expected one of: {allowed})") from None


def _uuid(value: Any, what: str) -> UUID | None:
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        raise ValueError(f"{what} is not a valid UUID: {value!r}") from None


def parse_settings(data: dict[str, Any]) -> EngineSettings:
    """
    Parse ``EngineSettings``.  Unknown keys are rejected so typos do not
    silently fall back to defaults.
    """
    unknown = set(data) - _SETTINGS_KEYS
    if unknown:
        raise ValueError(f"Unknown settings keys: {', '.join(sorted(unknown))}")
    return EngineSettings(**data)


def parse_field(data: dict[str, Any], index: int) -> FieldDescriptor:
    options = data.get("options") or ()
    default_value = data.get("default_value")
    return FieldDescriptor(
        name=data["name"],
        label=data["label"],
        kind=_enum(FieldKind, data.get("kind", "TEXT"), "field kind"),
        required=bool(data.get("required", False)),
        options=tuple(str(o) for o in options),
        placeholder=data.get("placeholder"),
        help_text=data.get("help_text"),
        validation=data.get("validation"),
        default_value=str(default_value) if default_value is not None else None,
        sort_order=int(data.get("sort_order", index)),
        depends_on_field=data.get("depends_on_field"),
        depends_on_value=(
            str(data["depends_on_value"]) if data.get("depends_on_value") is not None else None
        ),
        is_active=bool(data.get("is_active", True)),
    )


def parse_candidate(data: dict[str, Any], index: int) -> ApproverCandidate:
    return ApproverCandidate(
        kind=_enum(ApproverKind, data["kind"], "approver kind"),
        user_id=_uuid(data.get("user_id"), "approver user_id"),
        role=data.get("role"),
        sort_order=int(data.get("sort_order", index)),
        is_active=bool(data.get("is_active", True)),
    )


def parse_scope(data: dict[str, Any] | None) -> Scope:
    """``None`` or an empty mapping is the global scope."""
    if not data:
        return GLOBAL_SCOPE
    return Scope(
        project_id=_uuid(data.get("project_id"), "scope project_id"),
        cohort_id=_uuid(data.get("cohort_id"), "scope cohort_id"),
    )


def parse_level(data: dict[str, Any], scope: Scope) -> LevelDefinition:
    approvers = data.get("approvers") or []
    return LevelDefinition(
        level_number=int(data["level_number"]),
        candidates=tuple(parse_candidate(a, i) for i, a in enumerate(approvers)),
        level_name=data.get("level_name"),
        sla_hours=data.get("sla_hours"),
        escalate_after_hours=data.get("escalate_after_hours"),
        escalate_to_user_id=_uuid(data.get("escalate_to_user_id"), "escalate_to_user_id"),
        is_active=bool(data.get("is_active", True)),
        scope=scope,
    )


def parse_template(data: dict[str, Any]) -> TemplateSeed:
    """
    Parse a ``TemplateSeed``.

    ``chains`` is a list of ``{scope, levels}`` blocks; a block without a
    scope is the global chain.
    """
    levels: list[LevelDefinition] = []
    for chain in data.get("chains") or []:
        scope = parse_scope(chain.get("scope"))
        levels.extend(parse_level(lv, scope) for lv in chain.get("levels") or [])

    return TemplateSeed(
        name=data["name"],
        display_name=data["display_name"],
        description=data.get("description"),
        icon=data.get("icon"),
        color=data.get("color"),
        default_sla_hours=data.get("default_sla_hours"),
        fields=tuple(parse_field(f, i) for i, f in enumerate(data.get("fields") or [])),
        levels=tuple(levels),
    )


def parse_config(
    data: dict[str, Any],
    checksum: str = "",
    source_path: str | None = None,
) -> ActiveConfig:
    templates = tuple(parse_template(t) for t in data.get("templates") or [])
    names = [t.name for t in templates]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Duplicate template names in catalog: {', '.join(duplicates)}")

    return ActiveConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        settings=parse_settings(data.get("settings") or {}),
        catalog=CatalogSeed(templates=templates),
        checksum=checksum,
        source_path=source_path,
    )


def load_config_file(path: Path) -> ActiveConfig:
    """Load and parse one configuration document from disk."""
    text = Path(path).read_text(encoding="utf-8")
    return parse_config(load_yaml_text(text), compute_checksum(text), str(path))
