"""Junior Savers web application package with optional dependencies."""
from __future__ import annotations

from importlib import import_module
from types import ModuleType
from typing import Any, List

_IMPL_MODULE: ModuleType | None = None

_OPTIONAL_MODULES = {"fastapi", "starlette", "sqlmodel", "sqlalchemy", "dotenv", "itsdangerous", "multipart"}

__all__: List[str] = ["app", "create_app", "state_payload", "SQLDocumentStore", "StoredDocument", "create_store_engine", "ActiveSessions"]


def _import(name: str) -> ModuleType:
    try:
        return import_module(name, __name__)
    except ModuleNotFoundError as exc:
        if exc.name in _OPTIONAL_MODULES:
            raise RuntimeError(
                "juniorsavers.webapp requires the FastAPI/SQLModel dependencies. "
                "Reinstall the package with its declared dependencies."
            ) from exc
        raise


def _load_impl() -> ModuleType:
    global _IMPL_MODULE
    if _IMPL_MODULE is None:
        _IMPL_MODULE = _import(".application")
    return _IMPL_MODULE


def __getattr__(name: str) -> Any:
    if name in {"SQLDocumentStore", "StoredDocument", "create_store_engine"}:
        return getattr(_import(".persistence"), name)
    if name == "ActiveSessions":
        return getattr(_import(".sessions"), name)
    if name in __all__:
        return getattr(_load_impl(), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> List[str]:
    return sorted(set(globals()) | set(__all__))
