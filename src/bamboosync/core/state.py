"""
Recorded state: what was last applied for each entity.

The file is YAML with sorted keys and normalized computed lists, so saving
unchanged state twice produces identical bytes.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml

from .entities import EntityRef
from .errors import RuleValidationError, StateError
from .permissions import PermissionRecord

STATE_VERSION = 1


class StateStore:
    def __init__(self, path: str, logger: Optional[logging.LoggerAdapter] = None) -> None:
        self.path = Path(path)
        self.log = logger or logging.getLogger("bsync.state")

    def load(self) -> Dict[EntityRef, PermissionRecord]:
        if not self.path.exists():
            self.log.debug("No state file at %s; starting empty", self.path)
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise StateError(f"Cannot parse state file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StateError(f"State file {self.path} must contain a mapping")

        version = data.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            raise StateError(f"Unsupported state version {version!r} in {self.path}")

        records: Dict[EntityRef, PermissionRecord] = {}
        for item in data.get("resources") or []:
            try:
                record = PermissionRecord.from_dict(item)
            except (KeyError, TypeError, ValueError, RuleValidationError) as exc:
                raise StateError(f"Malformed state entry in {self.path}: {item!r}") from exc
            records[record.entity] = record
        return records

    def save(self, records: Iterable[PermissionRecord]) -> None:
        ordered: List[PermissionRecord] = sorted(records, key=lambda r: (r.entity.kind, r.entity.key))
        doc = {"version": STATE_VERSION, "resources": [r.to_dict() for r in ordered]}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            yaml.safe_dump(doc, f, sort_keys=True, default_flow_style=False)
        os.replace(tmp, self.path)
        self.log.debug("Saved %d record(s) to %s", len(ordered), self.path)
