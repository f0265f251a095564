"""Service registry used by business and decision steps."""

from __future__ import annotations

from typing import Any

from .registry import ServiceInvoker, ServiceRegistry

# Process-wide registry; the CLI and ``WorkflowEngine`` default to it.
REGISTRY = ServiceRegistry()


def register_service(name: str, service: Any) -> None:
    """Add ``service`` to ``REGISTRY`` under ``name``."""

    REGISTRY.register(name, service)


__all__ = ["ServiceInvoker", "ServiceRegistry", "REGISTRY", "register_service"]
