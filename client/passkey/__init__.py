"""Passkey ceremony client for WebAuthn relying parties."""
from __future__ import annotations

from importlib import import_module
from typing import Any, Dict, TYPE_CHECKING

__all__ = [
    "CeremonyOrchestrator",
    "CeremonyOutcome",
    "CeremonyState",
    "ClientConfig",
    "load_config",
    "perform_authentication",
    "perform_registration",
]

_EXPORTS: Dict[str, str] = {
    "CeremonyOrchestrator": ".ceremony",
    "CeremonyOutcome": ".ceremony",
    "CeremonyState": ".ceremony",
    "perform_authentication": ".ceremony",
    "perform_registration": ".ceremony",
    "ClientConfig": ".config",
    "load_config": ".config",
}


if TYPE_CHECKING:  # pragma: no cover - import only for static analysis.
    from .ceremony import (  # noqa: F401
        CeremonyOrchestrator,
        CeremonyOutcome,
        CeremonyState,
        perform_authentication,
        perform_registration,
    )
    from .config import ClientConfig, load_config  # noqa: F401


def __getattr__(name: str) -> Any:
    """Lazily import attributes exposed at the package level.

    The codec and authenticator data helpers are usable without python-fido2
    being importable, so the ceremony module (which pulls in the platform
    adapter) is only loaded when one of its names is requested.
    """

    module_name = _EXPORTS.get(name)
    if module_name is not None:
        module = import_module(module_name, __name__)
        return getattr(module, name)

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))
