"""Helpers for reading string-typed tool arguments."""

from __future__ import annotations


def require(args: dict[str, str], name: str, hint: str = "") -> str:
    """Return a non-empty argument or raise ``ValueError`` naming it."""
    value = args.get(name)
    if value is None or value == "":
        message = f"Missing required argument: {name}"
        raise ValueError(f"{message}. {hint}" if hint else message)
    return value


def optional_int(args: dict[str, str], name: str) -> int | None:
    value = args.get(name)
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


def optional_float(args: dict[str, str], name: str, default: float) -> float:
    value = args.get(name)
    if value is None or str(value).strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def flag(args: dict[str, str], name: str) -> bool:
    return str(args.get(name, "")).strip().lower() in ("true", "1", "yes")
