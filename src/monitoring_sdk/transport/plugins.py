"""Plugin pipeline for intercepting outgoing payloads and observing responses.

A plugin is any object exposing one or both optional hooks:

* ``on_before_send(payload)`` returns the (possibly transformed) payload, or
  ``None`` to veto it.
* ``on_after_send(response)`` observes every :class:`TransportResponse`.

Hooks may be plain functions or coroutines. Plugins run in registration order.
A hook that raises is logged and skipped; it never interrupts delivery.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any

from monitoring_sdk.logging import get_logger
from monitoring_sdk.transport.models import Logger, TransportResponse

_log = get_logger("monitoring_sdk.transport.plugins")

BeforeSendHook = Callable[[Any], Any]  # payload, None, or an awaitable of either
AfterSendHook = Callable[[TransportResponse], Any]


class TransportPlugin:
    """Base class for transport plugins.

    Subclasses override ``name`` and define ``on_before_send`` and/or
    ``on_after_send``. Duck-typed objects with the same hooks work too.

    Example:
        >>> class DropDebugEvents(TransportPlugin):
        ...     name = "drop-debug"
        ...
        ...     def on_before_send(self, payload):
        ...         if payload.get("level") == "debug":
        ...             return None
        ...         return payload
    """

    name: str = "plugin"
    version: str = "1.0.0"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name}', version='{self.version}')>"


class FunctionPlugin(TransportPlugin):
    """Wrap plain callables as a plugin."""

    def __init__(
        self,
        name: str,
        *,
        before_send: BeforeSendHook | None = None,
        after_send: AfterSendHook | None = None,
    ) -> None:
        self.name = name
        if before_send is not None:
            self.on_before_send = before_send
        if after_send is not None:
            self.on_after_send = after_send


def plugin_name(plugin: object) -> str:
    return str(getattr(plugin, "name", plugin.__class__.__name__))


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class PluginPipeline:
    """Ordered collection of plugins applied around each send."""

    def __init__(self, plugins: list[Any] | None = None, logger: Logger | None = None) -> None:
        self._plugins: list[Any] = list(plugins or [])
        self.log: Logger = logger if logger is not None else _log

    @property
    def plugins(self) -> list[Any]:
        return list(self._plugins)

    def register(self, plugin: Any) -> None:
        """Append a plugin; it runs after those already registered."""
        self._plugins.append(plugin)
        self.log.debug("plugin_registered", plugin=plugin_name(plugin))

    def unregister(self, name: str) -> bool:
        """Remove every plugin called ``name``; returns whether any was removed."""
        before = len(self._plugins)
        self._plugins = [p for p in self._plugins if plugin_name(p) != name]
        return len(self._plugins) != before

    def __len__(self) -> int:
        return len(self._plugins)

    async def before_send(self, payload: Any) -> Any | None:
        """Run ``on_before_send`` hooks in order.

        Returns:
            The transformed payload, or ``None`` when a plugin vetoed it.
        """
        current = payload
        for plugin in self._plugins:
            hook = getattr(plugin, "on_before_send", None)
            if hook is None:
                continue
            try:
                result = await _resolve(hook(current))
            except Exception:
                self.log.exception("plugin_before_send_failed", plugin=plugin_name(plugin))
                continue
            if result is None:
                self.log.debug("payload_filtered", plugin=plugin_name(plugin))
                return None
            current = result
        return current

    async def before_send_many(self, payloads: list[Any]) -> list[Any]:
        """Run the pipeline over each payload, dropping vetoed ones."""
        processed: list[Any] = []
        for payload in payloads:
            result = await self.before_send(payload)
            if result is not None:
                processed.append(result)
        return processed

    async def after_send(self, response: TransportResponse) -> None:
        """Notify every ``on_after_send`` hook of ``response``."""
        for plugin in self._plugins:
            hook = getattr(plugin, "on_after_send", None)
            if hook is None:
                continue
            try:
                await _resolve(hook(response))
            except Exception:
                self.log.exception("plugin_after_send_failed", plugin=plugin_name(plugin))
