"""Shared application context for reusable dependencies."""
from __future__ import annotations

from typing import Any, Callable, Optional

_get_conn: Optional[Callable[[], Any]] = None
_get_optional_current_user: Optional[Callable[..., Optional[Any]]] = None


def configure(
    *,
    get_conn: Callable[[], Any],
    get_optional_current_user: Callable[..., Optional[Any]],
) -> None:
    """Register application-wide dependencies required by modular routers."""

    global _get_conn
    global _get_optional_current_user

    _get_conn = get_conn
    _get_optional_current_user = get_optional_current_user


def _require(value: Optional[Any], name: str) -> Any:
    if value is None:
        raise RuntimeError(f"Application context has not been configured yet: {name}")
    return value


def get_conn() -> Any:
    conn_factory = _require(_get_conn, "get_conn")
    return conn_factory()


def get_optional_current_user(*args: Any, **kwargs: Any) -> Optional[Any]:
    dependency = _require(_get_optional_current_user, "get_optional_current_user")
    return dependency(*args, **kwargs)
