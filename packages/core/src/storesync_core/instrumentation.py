"""Instrumentation hooks wrapped around sync, lock and job operations.

Hooks receive the operation name (``sync.run.full``, ``lock.acquire``,
``job.submit.sync`` ...), a dict of attributes and a ``next_handler`` to
await. Tracing or metrics integrations register hooks here instead of
patching services.
"""

from __future__ import annotations

import fnmatch
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


@runtime_checkable
class InstrumentationHook(Protocol):
    async def __call__(
        self,
        operation: str,
        attributes: dict[str, Any],
        next_handler: Callable[[], Awaitable[Any]],
    ) -> Any: ...


@dataclass
class HookRegistration:
    """A hook plus the glob patterns of operations it wraps."""

    hook: InstrumentationHook
    priority: int = 0
    operations: list[str] = field(default_factory=list)
    enabled: bool = True

    def matches(self, operation: str) -> bool:
        if not self.enabled:
            return False
        if not self.operations:
            return True
        return any(fnmatch.fnmatchcase(operation, p) for p in self.operations)


class HookRegistry:
    """Ordered hooks; lower priority runs outermost."""

    def __init__(self) -> None:
        self._registrations: list[HookRegistration] = []

    def register(
        self,
        hook: InstrumentationHook,
        *,
        priority: int = 0,
        operations: list[str] | None = None,
    ) -> HookRegistration:
        registration = HookRegistration(
            hook=hook, priority=priority, operations=list(operations or [])
        )
        self._registrations.append(registration)
        self._registrations.sort(key=lambda r: r.priority)
        return registration

    def unregister(self, registration: HookRegistration) -> None:
        if registration in self._registrations:
            self._registrations.remove(registration)

    async def execute_all(
        self,
        operation: str,
        attributes: dict[str, Any],
        next_handler: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run *next_handler* wrapped by every hook matching *operation*."""
        matching = [r for r in self._registrations if r.matches(operation)]
        if not matching:
            return await next_handler()

        async def call(index: int) -> Any:
            if index == len(matching):
                return await next_handler()
            return await matching[index].hook(
                operation, attributes, lambda: call(index + 1)
            )

        return await call(0)

    def clear(self) -> None:
        self._registrations.clear()


_registry: ContextVar[HookRegistry | None] = ContextVar(
    "storesync_hook_registry", default=None
)


def get_hook_registry() -> HookRegistry:
    """Registry of the current context, created on first access."""
    registry = _registry.get()
    if registry is None:
        registry = HookRegistry()
        _registry.set(registry)
    return registry


def set_hook_registry(registry: HookRegistry) -> None:
    _registry.set(registry)
