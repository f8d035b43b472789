"""
Desired-state loader.

Two input formats describe the same thing, a list of entities with their
prioritized assignment rules:

YAML
    resources:
      - kind: project
        key: PRJ
        assignment_version: "2"        # optional; a change forces a full push
        retain_on_delete: false        # optional, default true
        assignments:
          - priority: 1
            users: [alice]
            groups: [developers]
            permissions: [READ, BUILD]

XLSX
    sheet "Assignments": Kind | Key | Priority | Users | Groups | Permissions
    sheet "Resources" (optional): Kind | Key | AssignmentVersion | RetainOnDelete
    Lists are semicolon-separated.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd
import yaml

from .assignments import AssignmentRule
from .entities import EntityRef
from .errors import RuleValidationError
from .permissions import PermissionSpec
from .validators import require_allowed_permissions, require_columns, require_sheets

log = logging.getLogger("bsync.rules")

ASSIGNMENTS_SHEET = "Assignments"
RESOURCES_SHEET = "Resources"
ASSIGNMENT_COLUMNS = ("Kind", "Key", "Priority", "Users", "Groups", "Permissions")
RESOURCE_COLUMNS = ("Kind", "Key")

_TRUTHY = {"1", "true", "yes", "y", "on"}


def _split(value: Any, sep: str = ";") -> Tuple[str, ...]:
    """Split a cell or YAML scalar into trimmed, non-empty, de-duplicated pieces."""
    if value is None or (not isinstance(value, (list, tuple)) and pd.isna(value)):
        return ()
    if isinstance(value, (list, tuple)):
        pieces = [str(v).strip() for v in value]
    else:
        pieces = [p.strip() for p in str(value).split(sep)]
    return tuple(dict.fromkeys(p for p in pieces if p))


def _to_int(value: Any, where: str) -> int:
    s = str(value).strip()
    if s.endswith(".0"):
        s = s[:-2]
    if not s or not s.lstrip("-").isdigit():
        raise RuleValidationError(f"{where}: priority must be an integer, got {value!r}")
    return int(s)


def _to_bool(value: Any, default: bool) -> bool:
    if value is None or (not isinstance(value, bool) and pd.isna(value)):
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def _optional_str(value: Any) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    s = str(value).strip()
    if s.endswith(".0") and s[:-2].isdigit():
        s = s[:-2]
    return s or None


def build_rule(entity: EntityRef, data: Mapping[str, Any], where: str) -> AssignmentRule:
    if "priority" not in data or data.get("priority") is None:
        raise RuleValidationError(f"{where}: missing 'priority'")
    permissions = _split(data.get("permissions"))
    require_allowed_permissions(entity, permissions)
    return AssignmentRule(
        users=_split(data.get("users")),
        groups=_split(data.get("groups")),
        permissions=permissions,
        priority=_to_int(data["priority"], where),
    )


def _check_unique(specs: List[PermissionSpec]) -> None:
    seen = set()
    for spec in specs:
        if spec.entity in seen:
            raise RuleValidationError(f"{spec.entity} is declared more than once")
        seen.add(spec.entity)


# ------------- YAML -------------

def parse_resources(data: Mapping[str, Any]) -> List[PermissionSpec]:
    """Build specs from an already-parsed YAML mapping."""
    resources = data.get("resources")
    if not isinstance(resources, list):
        raise RuleValidationError("Desired state must contain a 'resources' list")

    specs: List[PermissionSpec] = []
    for idx, res in enumerate(resources):
        if not isinstance(res, dict):
            raise RuleValidationError(f"resources[{idx}] must be a mapping")
        entity = EntityRef(str(res.get("kind", "")).strip(), str(res.get("key", "")).strip())
        rules = tuple(
            build_rule(entity, rule, f"{entity} assignments[{i}]")
            for i, rule in enumerate(res.get("assignments") or [])
        )
        version = res.get("assignment_version")
        specs.append(PermissionSpec(
            entity=entity,
            assignments=rules,
            assignment_version=None if version is None else str(version),
            retain_on_delete=_to_bool(res.get("retain_on_delete"), True),
        ))
    _check_unique(specs)
    return specs


def load_yaml(path: str) -> List[PermissionSpec]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise RuleValidationError(f"Top-level YAML must be a mapping: {path}")
    return parse_resources(data)


# ------------- XLSX -------------

def load_xlsx(path: str) -> List[PermissionSpec]:
    try:
        sheets = pd.read_excel(path, sheet_name=None, engine="openpyxl", dtype=object)
    except Exception as exc:
        raise RuleValidationError(f"Failed to read {path}: {exc}") from exc
    return parse_sheets(sheets)


def parse_sheets(sheets: Dict[str, pd.DataFrame]) -> List[PermissionSpec]:
    require_sheets(sheets, [ASSIGNMENTS_SHEET])
    df = sheets[ASSIGNMENTS_SHEET]
    require_columns(df, ASSIGNMENT_COLUMNS, context=ASSIGNMENTS_SHEET)

    options: Dict[EntityRef, Dict[str, Any]] = {}
    if RESOURCES_SHEET in sheets:
        res_df = sheets[RESOURCES_SHEET]
        require_columns(res_df, RESOURCE_COLUMNS, context=RESOURCES_SHEET)
        for _, row in res_df.iterrows():
            entity = EntityRef(str(row["Kind"]).strip(), str(row["Key"]).strip())
            options[entity] = {
                "assignment_version": _optional_str(row.get("AssignmentVersion")),
                "retain_on_delete": _to_bool(row.get("RetainOnDelete"), True),
            }

    rules: Dict[EntityRef, List[AssignmentRule]] = {}
    for idx, row in df.iterrows():
        if pd.isna(row["Kind"]) and pd.isna(row["Key"]):
            continue
        entity = EntityRef(str(row["Kind"]).strip(), _optional_str(row["Key"]) or "")
        where = f"{ASSIGNMENTS_SHEET} row {int(idx) + 2}"
        if pd.isna(row["Priority"]):
            raise RuleValidationError(f"{where}: missing 'priority'")
        rule = build_rule(
            entity,
            {
                "priority": row["Priority"],
                "users": row["Users"],
                "groups": row["Groups"],
                "permissions": row["Permissions"],
            },
            where,
        )
        rules.setdefault(entity, []).append(rule)

    for entity in options:
        rules.setdefault(entity, [])

    specs = [
        PermissionSpec(entity=entity, assignments=tuple(entity_rules), **options.get(entity, {}))
        for entity, entity_rules in rules.items()
    ]
    log.debug("Loaded %d resource(s) from workbook", len(specs))
    return specs


def load_desired(path: str) -> List[PermissionSpec]:
    """Auto-detect the reader by file extension."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Desired state file not found: {path}")
    if p.suffix.lower() in (".xlsx", ".xlsm"):
        return load_xlsx(str(p))
    return load_yaml(str(p))
