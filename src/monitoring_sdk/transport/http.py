"""HTTP transport: immediate delivery, offline queueing and backoff retries.

:class:`HTTPTransport` POSTs telemetry batches to the ingestion endpoint with
``httpx``. Payloads that cannot be delivered because the network is down or
the endpoint answered with a transient failure are stored in a persisted
:class:`~monitoring_sdk.transport.queue.DeliveryQueue` and delivered by
:meth:`HTTPTransport.flush`, which runs automatically when connectivity
returns.

Queued items leave the persisted queue only once their delivery outcome is
known, so a flush or retry cancelled by shutdown loses nothing. Failed items
are retried individually on an exponential backoff schedule. Each retry is an
``asyncio.Task`` keyed by item id, and flushes skip items that own one so
nothing is sent twice.

No public operation raises. Every call resolves to a
:class:`~monitoring_sdk.transport.models.TransportResponse` (or a plain value
for introspection calls).
"""

from __future__ import annotations

import asyncio
import contextlib
import gzip
import json
from collections.abc import Iterable
from types import TracebackType
from typing import Any, Self

import httpx

from monitoring_sdk.config import get_settings
from monitoring_sdk.logging import get_logger
from monitoring_sdk.transport.errors import InvalidPayloadError
from monitoring_sdk.transport.models import (
    Logger,
    QueueItem,
    TransportConfig,
    TransportResponse,
    TransportStatus,
    now_ms,
)
from monitoring_sdk.transport.network import NetworkMonitor
from monitoring_sdk.transport.plugins import PluginPipeline
from monitoring_sdk.transport.queue import DeliveryQueue
from monitoring_sdk.transport.storage import Storage

_log = get_logger("monitoring_sdk.transport.http")

DESTROYED_MESSAGE = "Transport is destroyed"


def classify_status(status_code: int) -> TransportStatus:
    """Map an HTTP status code to a delivery outcome.

    2xx is success, 5xx and 429 are transient, anything else is terminal.
    """
    if 200 <= status_code < 300:
        return TransportStatus.SUCCESS
    if status_code >= 500 or status_code == 429:
        return TransportStatus.RETRY
    return TransportStatus.ERROR


class HTTPTransport:
    """Delivers telemetry payloads to an HTTP endpoint.

    Args:
        config: Transport configuration. When omitted it is built from
            :func:`~monitoring_sdk.config.get_settings`.
        storage: Key-value store for the offline queue.
        plugins: Interceptors run around each send, in order.
        logger: Diagnostics sink; defaults to the SDK's structlog logger.
        client: Pre-configured ``httpx.AsyncClient``. The transport only
            closes clients it created itself.
        network: Connectivity monitor. Defaults to one probing the endpoint
            host when ``config.probe_interval`` is set.
        **overrides: Field overrides applied on top of ``config``.
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        *,
        storage: Storage | None = None,
        plugins: Iterable[Any] | None = None,
        logger: Logger | None = None,
        client: httpx.AsyncClient | None = None,
        network: NetworkMonitor | None = None,
        **overrides: Any,
    ) -> None:
        if config is None:
            config = TransportConfig.from_settings(get_settings(), **overrides)
        elif overrides:
            config = TransportConfig.model_validate({**config.model_dump(), **overrides})

        self._config = config
        self.log: Logger = logger if logger is not None else _log
        self._queue = DeliveryQueue(
            storage,
            max_size=config.max_queue_size,
            max_age=config.max_item_age,
            default_priority=config.default_priority,
            storage_key=config.storage_key,
            persistent=config.enable_offline_support,
            logger=self.log,
        )
        self._plugins = PluginPipeline(list(plugins or []), logger=self.log)
        self._network = network or NetworkMonitor.for_endpoint(
            config.endpoint,
            probe_interval=config.probe_interval,
            logger=self.log,
        )
        self._network.add_listener(self._on_network_change)

        self._client = client
        self._owns_client = client is None
        self._retry_tasks: dict[str, asyncio.Task[None]] = {}
        self._background_tasks: list[asyncio.Task[None]] = []
        self._started = False
        self._destroyed = False
        self._flush_in_progress = False
        self._stats = {
            "sent": 0,
            "queued": 0,
            "filtered": 0,
            "failed": 0,
            "dropped": 0,
            "retries_scheduled": 0,
        }

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> TransportConfig:
        return self._config

    @property
    def queue(self) -> DeliveryQueue:
        return self._queue

    @property
    def plugins(self) -> PluginPipeline:
        return self._plugins

    @property
    def network(self) -> NetworkMonitor:
        return self._network

    @property
    def is_online(self) -> bool:
        return self._network.is_online

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def pending_retries(self) -> int:
        return len(self._retry_tasks)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Restore the persisted queue and start background work.

        Safe to call more than once.
        """
        if self._started or self._destroyed:
            return

        restored = await self._queue.load()
        # close() detaches the listener, so re-attach after a close/start cycle
        self._network.remove_listener(self._on_network_change)
        self._network.add_listener(self._on_network_change)
        await self._network.start()

        self._background_tasks.append(asyncio.create_task(self._housekeeping_loop()))
        if self._config.flush_interval > 0:
            self._background_tasks.append(asyncio.create_task(self._flush_loop()))

        self._started = True
        self.log.info(
            "transport_started",
            endpoint=self._config.endpoint,
            restored_items=restored,
            online=self.is_online,
        )

    async def close(self) -> None:
        """Stop background work and release the HTTP client.

        The persisted queue is kept, so pending items are delivered after the
        next :meth:`start`.
        """
        await self._cancel_retries()
        await self._cancel_background_tasks()
        self._network.remove_listener(self._on_network_change)
        await self._network.stop()
        await self._close_client()
        self._started = False
        self.log.debug("transport_closed", queue_size=self._queue.size)

    async def destroy(self) -> None:
        """Tear the transport down for good.

        Cancels pending retries and background tasks, empties the queue,
        deletes its persisted state and closes the HTTP client. Every later
        call reports an error result.
        """
        if self._destroyed:
            return

        # In-flight sends and retries check this before touching the queue
        self._destroyed = True
        await self.clear_queue()
        await self._cancel_background_tasks()
        self._network.remove_listener(self._on_network_change)
        await self._network.stop()
        await self._close_client()
        self._queue.destroy()
        self._started = False
        self.log.debug("transport_destroyed")

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def update_config(self, **changes: Any) -> None:
        """Apply a validated partial configuration update.

        Raises:
            pydantic.ValidationError: If the resulting configuration is invalid.
        """
        self._config = TransportConfig.model_validate({**self._config.model_dump(), **changes})
        self._queue.max_size = self._config.max_queue_size
        self._queue.max_age = self._config.max_item_age
        self._queue.default_priority = self._config.default_priority
        self.log.debug("transport_config_updated", fields=sorted(changes))

    def register_plugin(self, plugin: Any) -> None:
        self._plugins.register(plugin)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send(self, payload: Any, *, priority: int | None = None) -> TransportResponse:
        """Deliver one payload now, or queue it when that is not possible.

        Args:
            payload: JSON-serialisable telemetry value.
            priority: Queue priority used if the payload ends up queued.

        Returns:
            The endpoint's response on delivery; a ``queued`` success when the
            payload was stored for later; a ``filtered`` success when a plugin
            vetoed it; an error for terminal failures.
        """
        if self._destroyed:
            return TransportResponse.error(DESTROYED_MESSAGE)

        processed = await self._plugins.before_send(payload)
        if processed is None:
            self._stats["filtered"] += 1
            return TransportResponse.success("Data filtered by plugin", filtered=True)

        return await self._deliver([processed], single=True, priority=priority)

    async def send_batch(self, payloads: Iterable[Any]) -> TransportResponse:
        """Deliver several payloads in one request.

        Vetoed payloads are dropped without affecting the rest of the batch.
        """
        if self._destroyed:
            return TransportResponse.error(DESTROYED_MESSAGE)

        items = list(payloads)
        if not items:
            return TransportResponse.success("No items to send")

        processed = await self._plugins.before_send_many(items)
        self._stats["filtered"] += len(items) - len(processed)
        if not processed:
            return TransportResponse.success("All items filtered by plugins", filtered=True)

        return await self._deliver(processed, single=False)

    async def enqueue(self, payload: Any, priority: int | None = None) -> TransportResponse:
        """Queue a payload for the next flush without attempting delivery."""
        if self._destroyed:
            return TransportResponse.error(DESTROYED_MESSAGE)

        try:
            item = await self._queue.enqueue(payload, priority)
        except InvalidPayloadError as e:
            return TransportResponse.error(str(e))
        self._stats["queued"] += 1
        return TransportResponse.success("Queued", data={"id": item.id}, queued=True)

    async def flush(self) -> list[TransportResponse]:
        """Deliver queued items in batches of ``batch_size``.

        Failed items stay queued with a scheduled retry until they exceed
        ``max_retries``; terminal failures are dropped. Items already waiting
        on a retry are left to it. A flush requested while another is running,
        while offline, or after destroy returns an empty list.

        Returns:
            One response per batch request.
        """
        if self._destroyed or self._flush_in_progress or self._queue.is_empty:
            return []

        self._flush_in_progress = True
        responses: list[TransportResponse] = []
        try:
            while self.is_online and not self._destroyed:
                # Batch items stay queued until the outcome is known
                batch = self._queue.peek_batch(
                    self._config.batch_size, exclude=self._retry_tasks.keys()
                )
                if not batch:
                    break

                response = await self._post([item.payload for item in batch])
                if self._destroyed:
                    break
                responses.append(response)

                if response.ok:
                    await self._queue.remove_many(item.id for item in batch)
                    self._stats["sent"] += len(batch)
                else:
                    await self._handle_failed_items(batch, response)
                await self._plugins.after_send(response)
        finally:
            self._flush_in_progress = False

        self.log.debug(
            "queue_flushed",
            batches=len(responses),
            remaining=self._queue.size,
            pending_retries=len(self._retry_tasks),
        )
        return responses

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_queue_size(self) -> int:
        return self._queue.size

    async def clear_queue(self) -> int:
        """Cancel pending retries, empty the queue and delete its persisted copy.

        Returns:
            Number of items discarded.
        """
        await self._cancel_retries()
        cleared = self._queue.size
        await self._queue.clear(remove_persisted=True)
        self.log.debug("transport_queue_cleared", cleared=cleared)
        return cleared

    def get_stats(self) -> dict[str, Any]:
        """Return queue statistics plus delivery counters."""
        return {
            **self._queue.get_stats(),
            **self._stats,
            "pending_retries": len(self._retry_tasks),
            "online": self.is_online,
            "flush_in_progress": self._flush_in_progress,
            "destroyed": self._destroyed,
        }

    # ------------------------------------------------------------------
    # Delivery internals
    # ------------------------------------------------------------------

    async def _deliver(
        self, payloads: list[Any], *, single: bool, priority: int | None = None
    ) -> TransportResponse:
        """Send already-intercepted payloads, falling back to the queue."""
        subject = "Queued" if single else "Batch queued"
        offline_support = self._config.enable_offline_support

        # Plugins may have awaited across a destroy()
        if self._destroyed:
            return TransportResponse.error(DESTROYED_MESSAGE)

        if not self.is_online and offline_support:
            return await self._queue_payloads(
                payloads, priority, f"{subject} for offline sending"
            )

        response = await self._post(payloads)
        if self._destroyed:
            return TransportResponse.error(DESTROYED_MESSAGE)
        await self._plugins.after_send(response)

        if response.ok:
            self._stats["sent"] += len(payloads)
            return response

        if response.retryable and offline_support:
            self.log.warning(
                "send_failed_queued",
                count=len(payloads),
                reason=response.message,
                status_code=response.status_code,
            )
            return await self._queue_payloads(
                payloads,
                priority,
                f"{subject} after send failure",
                status_code=response.status_code,
            )

        self._stats["failed"] += len(payloads)
        self.log.error(
            "send_failed",
            count=len(payloads),
            reason=response.message,
            status_code=response.status_code,
        )
        return response

    async def _queue_payloads(
        self,
        payloads: list[Any],
        priority: int | None,
        message: str,
        status_code: int | None = None,
    ) -> TransportResponse:
        try:
            await self._queue.enqueue_batch((payload, priority) for payload in payloads)
        except InvalidPayloadError as e:
            self._stats["failed"] += len(payloads)
            return TransportResponse.error(str(e))
        self._stats["queued"] += len(payloads)
        return TransportResponse.success(message, queued=True, status_code=status_code)

    async def _post(self, payloads: list[Any]) -> TransportResponse:
        """POST one batch and classify the outcome. Never raises."""
        config = self._config
        body = {
            "timestamp": now_ms(),
            "items": payloads,
            "sdk": {"name": config.sdk_name, "version": config.sdk_version},
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config.api_key.get_secret_value()}",
            "User-Agent": f"{config.sdk_name}/{config.sdk_version}",
            **config.headers,
        }
        try:
            content = json.dumps(body).encode("utf-8")
        except (TypeError, ValueError) as e:
            return TransportResponse.error(f"Payload is not JSON-serialisable: {e}")
        if config.use_compression:
            content = gzip.compress(content)
            headers["Content-Encoding"] = "gzip"

        try:
            client = await self._get_client()
            resp = await client.post(
                config.endpoint,
                content=content,
                headers=headers,
                timeout=config.timeout,
            )
        except httpx.TimeoutException:
            self.log.warning("request_timeout", endpoint=config.endpoint, timeout=config.timeout)
            return TransportResponse.retry("Request timeout")
        except httpx.HTTPError as exc:
            self.log.warning("request_failed", endpoint=config.endpoint, error=str(exc))
            return TransportResponse.retry(str(exc) or "Network error")

        status = classify_status(resp.status_code)
        if status is TransportStatus.SUCCESS:
            try:
                data = resp.json()
            except ValueError:
                data = {}
            return TransportResponse.success(data=data, status_code=resp.status_code)

        detail = resp.text or resp.reason_phrase or "Unknown error"
        return TransportResponse(
            status,
            message=f"HTTP {resp.status_code}: {detail}",
            status_code=resp.status_code,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._config.timeout)
            self._owns_client = True
        return self._client

    async def _close_client(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Retry scheduling
    # ------------------------------------------------------------------

    async def _handle_failed_items(
        self, items: list[QueueItem], response: TransportResponse
    ) -> None:
        """Schedule backoff retries for retryable items; drop terminal and exhausted ones.

        ``items`` are copies of entries that are still queued.
        """
        retry: list[QueueItem] = []
        dropped: list[str] = []
        for item in items:
            if response.retryable and item.retry_count < self._config.max_retries:
                retry.append(item)
            else:
                reason = "max_retries_exceeded" if response.retryable else "terminal_error"
                self._drop(item, reason, response.message)
                dropped.append(item.id)

        if self._destroyed:
            return

        retry = [item for item in retry if item.id in self._queue]
        for item in retry:
            item.retry_count += 1
            self._schedule_retry(item)

        await self._queue.increment_retries(item.id for item in retry)
        await self._queue.remove_many(dropped)

    def _drop(self, item: QueueItem, reason: str, detail: str | None) -> None:
        self._stats["dropped"] += 1
        self.log.error(
            "item_permanently_failed",
            item_id=item.id,
            reason=reason,
            retry_count=item.retry_count,
            detail=detail,
        )

    def _schedule_retry(self, item: QueueItem) -> None:
        delay = self._config.backoff_delay(item.retry_count)
        existing = self._retry_tasks.pop(item.id, None)
        if existing is not None and existing is not asyncio.current_task():
            existing.cancel()

        self._retry_tasks[item.id] = asyncio.create_task(self._run_retry(item.id, delay))
        self._stats["retries_scheduled"] += 1
        self.log.debug(
            "retry_scheduled",
            item_id=item.id,
            retry_count=item.retry_count,
            delay_seconds=delay,
        )

    async def _run_retry(self, item_id: str, delay: float) -> None:
        """Resend a single queued item after ``delay`` seconds.

        The item stays queued, and this task stays registered, until the
        outcome is known; flushes skip it meanwhile.
        """
        try:
            await asyncio.sleep(delay)
            if self._destroyed or not self.is_online:
                # Left queued; the next flush picks it up
                return

            item = self._queue.get(item_id)
            if item is None:
                return

            response = await self._post([item.payload])
            if self._destroyed:
                return
            if response.ok:
                await self._queue.remove_many([item_id])
                self._stats["sent"] += 1
                self.log.debug("retry_succeeded", item_id=item_id, retry_count=item.retry_count)
            else:
                await self._handle_failed_items([item], response)
            await self._plugins.after_send(response)
        except Exception:
            self.log.exception("retry_error", item_id=item_id)
        finally:
            if self._retry_tasks.get(item_id) is asyncio.current_task():
                del self._retry_tasks[item_id]

    async def _cancel_retries(self) -> None:
        tasks = list(self._retry_tasks.values())
        self._retry_tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    async def _on_network_change(self, online: bool) -> None:
        if not online:
            self.log.debug("transport_offline", queue_size=self._queue.size)
            return

        self.log.debug("transport_online_flushing", queue_size=self._queue.size)
        await self.flush()

    async def _housekeeping_loop(self) -> None:
        """Periodically drop expired items."""
        while True:
            try:
                await asyncio.sleep(self._config.cleanup_interval)
                await self._queue.cleanup()
            except asyncio.CancelledError:
                break
            except Exception:
                self.log.exception("housekeeping_error")

    async def _flush_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._config.flush_interval)
                await self.flush()
            except asyncio.CancelledError:
                break
            except Exception:
                self.log.exception("periodic_flush_error")

    async def _cancel_background_tasks(self) -> None:
        tasks = list(self._background_tasks)
        self._background_tasks.clear()
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
