"""Typed readers for model-supplied tool arguments."""

from __future__ import annotations

import math
from typing import Any, Optional


class ToolArgumentError(ValueError):
    """Raised when a tool argument is missing or has the wrong shape."""


def read_string_param(
    params: dict[str, Any],
    key: str,
    *,
    required: bool = False,
    trim: bool = True,
    allow_empty: bool = False,
    default: Optional[str] = None,
) -> Optional[str]:
    raw = params.get(key)
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        raw = str(raw)
    if not isinstance(raw, str):
        if raw is not None:
            raise ToolArgumentError(f'Parameter "{key}" must be a string')
        if required:
            raise ToolArgumentError(f'Parameter "{key}" is required')
        return default

    value = raw.strip() if trim else raw
    if not value and not allow_empty:
        if required:
            raise ToolArgumentError(f'Parameter "{key}" cannot be empty')
        return default
    return value


def read_number_param(
    params: dict[str, Any],
    key: str,
    *,
    required: bool = False,
    integer: bool = False,
    minimum: float | None = None,
    maximum: float | None = None,
    default: float | None = None,
) -> Optional[float]:
    raw = params.get(key)
    value: float | None = None

    if isinstance(raw, bool):
        value = None
    elif isinstance(raw, (int, float)) and math.isfinite(raw):
        value = raw
    elif isinstance(raw, str):
        try:
            parsed = float(raw.strip())
        except ValueError:
            parsed = math.nan
        if math.isfinite(parsed):
            value = parsed

    if value is None:
        if raw is not None and required:
            raise ToolArgumentError(f'Parameter "{key}" must be a number')
        if required:
            raise ToolArgumentError(f'Parameter "{key}" is required')
        return default

    if integer:
        value = int(value)
    if minimum is not None and value < minimum:
        raise ToolArgumentError(f'Parameter "{key}" must be >= {minimum}')
    if maximum is not None and value > maximum:
        raise ToolArgumentError(f'Parameter "{key}" must be <= {maximum}')
    return value


def read_bool_param(params: dict[str, Any], key: str, *, default: bool = False) -> bool:
    raw = params.get(key)
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
    if isinstance(raw, int):
        return bool(raw)
    raise ToolArgumentError(f'Parameter "{key}" must be a boolean')


def read_mapping_param(params: dict[str, Any], key: str) -> dict[str, Any]:
    raw = params.get(key)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ToolArgumentError(f'Parameter "{key}" must be an object')
    return raw
