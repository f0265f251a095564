"""Named service lookup and invocation for business and decision steps."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Dict, Mapping, Protocol

from ..exceptions import ServiceInvocationError

logger = logging.getLogger(__name__)


class ServiceInvoker(Protocol):
    """Anything able to call ``service.method`` with named parameters."""

    async def invoke(
        self, service_name: str, method_name: str, parameters: Mapping[str, Any]
    ) -> Any:
        """Invoke ``method_name`` on ``service_name`` and return its result."""


class ServiceRegistry(ServiceInvoker):
    """Holds service objects by name and binds parameters by keyword.

    Service and method names are matched case-insensitively. Parameters the
    method does not accept are dropped unless it takes ``**kwargs``;
    parameters it requires but did not receive raise
    ``ServiceInvocationError``. Coroutine results are awaited.
    """

    def __init__(self) -> None:
        self._services: Dict[str, Any] = {}

    def register(self, service_name: str, service: Any) -> None:
        self._services[service_name.lower()] = service
        logger.debug(f"Registered service '{service_name}'")

    def unregister(self, service_name: str) -> None:
        self._services.pop(service_name.lower(), None)

    def get(self, service_name: str) -> Any:
        try:
            return self._services[service_name.lower()]
        except KeyError:
            raise ServiceInvocationError(
                service_name, None, f"Service '{service_name}' not found"
            ) from None

    def names(self) -> list[str]:
        return sorted(self._services)

    def _resolve_method(self, service_name: str, method_name: str) -> Any:
        service = self.get(service_name)
        method = getattr(service, method_name, None)
        if method is None:
            wanted = method_name.lower()
            method = next(
                (
                    getattr(service, attr)
                    for attr in dir(service)
                    if not attr.startswith("_") and attr.lower() == wanted
                ),
                None,
            )
        if method is None or not callable(method):
            raise ServiceInvocationError(
                service_name,
                method_name,
                f"Method '{method_name}' not found on service '{service_name}'",
            )
        return method

    @staticmethod
    def _bind(
        service_name: str, method_name: str, method: Any, parameters: Mapping[str, Any]
    ) -> Dict[str, Any]:
        signature = inspect.signature(method)
        accepts_kwargs = any(
            p.kind is inspect.Parameter.VAR_KEYWORD for p in signature.parameters.values()
        )
        lowered = {k.lower(): v for k, v in parameters.items()}
        kwargs: Dict[str, Any] = {}
        for name, param in signature.parameters.items():
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            if name in parameters:
                kwargs[name] = parameters[name]
            elif name.lower() in lowered:
                kwargs[name] = lowered[name.lower()]
            elif param.default is inspect.Parameter.empty:
                raise ServiceInvocationError(
                    service_name,
                    method_name,
                    f"Missing required parameter '{name}' for {service_name}.{method_name}",
                )
        if accepts_kwargs:
            for key, value in parameters.items():
                kwargs.setdefault(key, value)
        return kwargs

    async def invoke(
        self, service_name: str, method_name: str, parameters: Mapping[str, Any]
    ) -> Any:
        method = self._resolve_method(service_name, method_name)
        kwargs = self._bind(service_name, method_name, method, parameters or {})
        logger.debug(f"Invoking {service_name}.{method_name} with {sorted(kwargs)}")
        result = method(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result
