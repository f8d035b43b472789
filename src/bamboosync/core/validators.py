"""
Desired-state validators (required sheets/columns, permission allow-lists).
"""
from __future__ import annotations

from typing import Dict, Iterable

import pandas as pd

from .entities import EntityRef
from .errors import RuleValidationError


def require_sheets(xlsx_sheets: Dict[str, pd.DataFrame], required: Iterable[str]) -> None:
    """Ensure that all required sheet names are present."""
    missing = [s for s in required if s not in xlsx_sheets]
    if missing:
        raise RuleValidationError(f"Missing required sheets: {', '.join(missing)}")


def require_columns(
    df: pd.DataFrame,
    required: Iterable[str],
    context: str | None = None,
) -> None:
    """Ensure that all required columns are present in a DataFrame.

    Parameters
    ----------
    df : pandas.DataFrame
        The DataFrame to validate.
    required : Iterable[str]
        Column names that must be present in ``df``.
    context : str, optional
        Extra information to prepend to the error message (e.g., the sheet
        name). If provided, it will be formatted as "{context}: ...".

    Raises
    ------
    RuleValidationError
        If one or more required columns are missing.
    """
    missing = [c for c in required if c not in df.columns]
    if missing:
        prefix = f"{context}: " if context else ""
        raise RuleValidationError(f"{prefix}Missing required columns: {', '.join(missing)}")


def require_allowed_permissions(entity: EntityRef, permissions: Iterable[str]) -> None:
    """Reject permission tokens the entity kind does not support."""
    allowed = set(entity.allowed_permissions)
    unknown = [p for p in permissions if p not in allowed]
    if unknown:
        raise RuleValidationError(
            f"{entity}: unsupported permission(s) {', '.join(unknown)} "
            f"(allowed: {', '.join(entity.allowed_permissions)})"
        )
