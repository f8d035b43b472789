"""
Reporting helpers (table or JSON) for sync results and attestations.

`print_rows` keeps the columns that carry information and produces a compact
table for CLI usage. JSON output is also supported for machine consumption.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List

from .attestations import Attestation
from .syncer import STATUS_ORDER, SyncResult

_CANDIDATES = ["kind", "key", "status", "reason", "writes", "error"]
_MANDATORY = {"kind", "key", "status"}


def summarize_counts(counts: Dict[str, int]) -> str:
    """One line, statuses in a stable order, zero counts omitted."""
    parts = [f"{k}={counts[k]}" for k in STATUS_ORDER if counts.get(k)]
    return " | ".join(parts) if parts else "nothing to do"


def _fmt(v: Any) -> str:
    s = "" if v is None else str(v)
    return s or "—"


def print_rows(rows: List[Dict[str, Any]], fmt: str = "table") -> None:
    """Render result rows as a table or JSON.

    Args:
        rows: Dict rows as produced by ``SyncResult.to_row``.
        fmt: Either ``"table"`` (default) or ``"json"``.
    """
    norm_rows = []
    for r in rows:
        n = dict(r)
        err = n.get("error")
        n["error"] = str(err).strip()[:160] if err else ""
        norm_rows.append(n)

    if fmt == "json":
        print(json.dumps(norm_rows, indent=2))
        return

    cols = [
        c for c in _CANDIDATES
        if c in _MANDATORY or any(r.get(c) not in (None, "", 0) for r in norm_rows)
    ]

    widths = {c: len(c) for c in cols}
    for r in norm_rows:
        for c in cols:
            widths[c] = max(widths[c], len(_fmt(r.get(c))))

    print("| " + " | ".join(c.ljust(widths[c]) for c in cols) + " |")
    print("| " + " | ".join("-" * widths[c] for c in cols) + " |")
    for r in norm_rows:
        print("| " + " | ".join(_fmt(r.get(c)).ljust(widths[c]) for c in cols) + " |")


def print_results(results: Iterable[SyncResult], fmt: str = "table") -> None:
    print_rows([r.to_row() for r in results], fmt=fmt)


def print_attestation(entity: str, attestation: Attestation, fmt: str = "table") -> None:
    """Print who holds which permission on one entity."""
    if fmt == "json":
        print(json.dumps({"entity": entity, **attestation.to_dict()}, indent=2, sort_keys=True))
        return

    rows: List[Dict[str, Any]] = []
    for kind, buckets in (("user", attestation.users), ("group", attestation.groups)):
        for permission in sorted(buckets):
            rows.append({
                "principal_type": kind,
                "permission": permission,
                "principals": ", ".join(buckets[permission]),
            })
    print(f"# {entity}")
    if not rows:
        print("(no principals hold permissions)")
        return
    cols = ["principal_type", "permission", "principals"]
    widths = {c: max([len(c)] + [len(r[c]) for r in rows]) for c in cols}
    print("| " + " | ".join(c.ljust(widths[c]) for c in cols) + " |")
    print("| " + " | ".join("-" * widths[c] for c in cols) + " |")
    for r in rows:
        print("| " + " | ".join(r[c].ljust(widths[c]) for c in cols) + " |")
