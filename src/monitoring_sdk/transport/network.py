"""Connectivity tracking for the transport.

:class:`NetworkMonitor` keeps an online/offline flag and notifies listeners on
transitions. The state can be driven by the host application through
:meth:`NetworkMonitor.set_online`, or by an optional probe loop that opens a
TCP connection to the ingestion host at a fixed interval.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Callable
from typing import Any

import httpx

from monitoring_sdk.logging import get_logger
from monitoring_sdk.transport.models import Logger

_log = get_logger("monitoring_sdk.transport.network")

DEFAULT_PROBE_TIMEOUT = 3.0

NetworkListener = Callable[[bool], Any]


class NetworkMonitor:
    """Observable online/offline state with an optional TCP probe."""

    def __init__(
        self,
        *,
        online: bool = True,
        probe_host: str | None = None,
        probe_port: int | None = None,
        probe_interval: float = 0.0,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        logger: Logger | None = None,
    ) -> None:
        self._online = online
        self._listeners: list[NetworkListener] = []
        self._probe_task: asyncio.Task[None] | None = None
        self.probe_host = probe_host
        self.probe_port = probe_port
        self.probe_interval = probe_interval
        self.probe_timeout = probe_timeout
        self.log: Logger = logger if logger is not None else _log

    @classmethod
    def for_endpoint(cls, endpoint: str, **kwargs: Any) -> NetworkMonitor:
        """Build a monitor that probes the host serving ``endpoint``."""
        url = httpx.URL(endpoint)
        port = url.port or (443 if url.scheme == "https" else 80)
        return cls(probe_host=url.host or None, probe_port=port, **kwargs)

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_probing(self) -> bool:
        return self._probe_task is not None and not self._probe_task.done()

    def add_listener(self, listener: NetworkListener) -> None:
        """Register a callback invoked with the new state on each transition."""
        self._listeners.append(listener)

    def remove_listener(self, listener: NetworkListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    async def set_online(self, online: bool) -> None:
        """Record the connectivity state, notifying listeners if it changed."""
        if online == self._online:
            return

        self._online = online
        self.log.info("network_online" if online else "network_offline")

        for listener in list(self._listeners):
            try:
                result = listener(online)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self.log.exception("network_listener_failed")

    async def probe(self) -> bool:
        """Check whether the probe host accepts TCP connections."""
        if not self.probe_host or not self.probe_port:
            return self._online

        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.probe_host, self.probe_port),
                timeout=self.probe_timeout,
            )
        except (OSError, TimeoutError):
            return False

        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the probe loop when probing is configured."""
        if self.is_probing or self.probe_interval <= 0 or not self.probe_host:
            return
        self._probe_task = asyncio.create_task(self._probe_loop())
        self.log.debug(
            "network_probe_started",
            host=self.probe_host,
            port=self.probe_port,
            interval=self.probe_interval,
        )

    async def stop(self) -> None:
        """Cancel the probe loop.

        Listeners stay registered; owners detach their own with
        :meth:`remove_listener`.
        """
        if self._probe_task and not self._probe_task.done():
            self._probe_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._probe_task
        self._probe_task = None

    async def _probe_loop(self) -> None:
        while True:
            try:
                await self.set_online(await self.probe())
                await asyncio.sleep(self.probe_interval)
            except asyncio.CancelledError:
                break
            except Exception:
                self.log.exception("network_probe_error")
                await asyncio.sleep(self.probe_interval)
