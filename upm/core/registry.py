# upm/core/registry.py
from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from upm.adapters.base import PackageManagerAdapter


class PackageManager(str, Enum):
    """Every supported package manager, in the order updates run."""

    WINGET = "winget"
    CHOCOLATEY = "chocolatey"
    SCOOP = "scoop"
    NPM = "npm"
    PIP = "pip"
    CONDA = "conda"

    @classmethod
    def parse(cls, name: str) -> PackageManager:
        key = name.strip().lower()
        if key == "choco":
            key = "chocolatey"
        return cls(key)


AdapterT = TypeVar("AdapterT", bound="PackageManagerAdapter")
_ADAPTER_REGISTRY: dict[PackageManager, type[PackageManagerAdapter]] = {}


def adapter(manager: PackageManager) -> Callable[[type[AdapterT]], type[AdapterT]]:
    """
    Class decorator registering an adapter for ``manager``.
    """

    def _decorator(cls: type[AdapterT]) -> type[AdapterT]:
        if manager in _ADAPTER_REGISTRY:
            raise RuntimeError(f"Duplicate adapter for: {manager.value}")
        cls.MANAGER = manager
        _ADAPTER_REGISTRY[manager] = cls
        return cls

    return _decorator


def load_adapters() -> None:
    """Import the adapter modules; registration happens at import time."""
    import upm.adapters.chocolatey
    import upm.adapters.conda
    import upm.adapters.npm
    import upm.adapters.pip
    import upm.adapters.scoop
    import upm.adapters.winget  # noqa: F401


def get_adapter_registry() -> dict[PackageManager, type[PackageManagerAdapter]]:
    """Registered adapters in PackageManager declaration order."""
    load_adapters()
    missing = [m.value for m in PackageManager if m not in _ADAPTER_REGISTRY]
    if missing:
        raise RuntimeError(f"No adapter registered for: {', '.join(missing)}")
    return {m: _ADAPTER_REGISTRY[m] for m in PackageManager}


def get_adapter(manager: PackageManager | str) -> PackageManagerAdapter:
    if not isinstance(manager, PackageManager):
        manager = PackageManager.parse(manager)
    return get_adapter_registry()[manager]()
