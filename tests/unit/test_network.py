"""Tests for connectivity tracking."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from monitoring_sdk.transport.network import NetworkMonitor


class TestForEndpoint:
    """Tests for deriving the probe target from the endpoint URL."""

    def test_https_default_port(self) -> None:
        monitor = NetworkMonitor.for_endpoint("https://ingest.example.test/v1")
        assert monitor.probe_host == "ingest.example.test"
        assert monitor.probe_port == 443

    def test_http_explicit_port(self) -> None:
        monitor = NetworkMonitor.for_endpoint("http://localhost:8080/api")
        assert monitor.probe_host == "localhost"
        assert monitor.probe_port == 8080


class TestStateChanges:
    """Tests for listener notification."""

    @pytest.mark.asyncio
    async def test_listener_called_on_transition(self) -> None:
        monitor = NetworkMonitor()
        listener = MagicMock()
        monitor.add_listener(listener)

        await monitor.set_online(False)
        await monitor.set_online(True)

        assert [c.args for c in listener.call_args_list] == [(False,), (True,)]

    @pytest.mark.asyncio
    async def test_no_notification_without_change(self) -> None:
        monitor = NetworkMonitor(online=True)
        listener = MagicMock()
        monitor.add_listener(listener)

        await monitor.set_online(True)
        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_async_listener_awaited(self) -> None:
        monitor = NetworkMonitor()
        listener = AsyncMock()
        monitor.add_listener(listener)

        await monitor.set_online(False)
        listener.assert_awaited_once_with(False)

    @pytest.mark.asyncio
    async def test_failing_listener_logged(self) -> None:
        logger = MagicMock()
        monitor = NetworkMonitor(logger=logger)
        other = MagicMock()
        monitor.add_listener(MagicMock(side_effect=RuntimeError("bad")))
        monitor.add_listener(other)

        await monitor.set_online(False)

        logger.exception.assert_called_once_with("network_listener_failed")
        other.assert_called_once_with(False)
        assert not monitor.is_online

    @pytest.mark.asyncio
    async def test_remove_listener(self) -> None:
        monitor = NetworkMonitor()
        listener = MagicMock()
        monitor.add_listener(listener)
        monitor.remove_listener(listener)
        monitor.remove_listener(listener)

        await monitor.set_online(False)
        listener.assert_not_called()


class TestProbe:
    """Tests for the TCP probe."""

    @pytest.mark.asyncio
    async def test_probe_without_host_reports_current_state(self) -> None:
        monitor = NetworkMonitor(online=False)
        assert await monitor.probe() is False

    @pytest.mark.asyncio
    async def test_probe_success(self) -> None:
        writer = MagicMock()
        writer.wait_closed = AsyncMock()
        monitor = NetworkMonitor(probe_host="h", probe_port=1)

        with patch("asyncio.open_connection", AsyncMock(return_value=(MagicMock(), writer))):
            assert await monitor.probe() is True
        writer.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_probe_connection_refused(self) -> None:
        monitor = NetworkMonitor(probe_host="h", probe_port=1)

        with patch("asyncio.open_connection", AsyncMock(side_effect=ConnectionRefusedError)):
            assert await monitor.probe() is False

    @pytest.mark.asyncio
    async def test_probe_loop_updates_state(self) -> None:
        monitor = NetworkMonitor(probe_host="h", probe_port=1, probe_interval=0.01)
        listener = MagicMock()
        monitor.add_listener(listener)

        with patch.object(monitor, "probe", AsyncMock(return_value=False)):
            await monitor.start()
            assert monitor.is_probing
            await asyncio.sleep(0.05)
            await monitor.stop()

        assert not monitor.is_online
        listener.assert_called_once_with(False)
        assert not monitor.is_probing

    @pytest.mark.asyncio
    async def test_start_without_interval_does_nothing(self) -> None:
        monitor = NetworkMonitor(probe_host="h", probe_port=1)
        await monitor.start()
        assert not monitor.is_probing

    @pytest.mark.asyncio
    async def test_stop_keeps_listeners(self) -> None:
        """Stopping the probe loop leaves other subscribers attached."""
        monitor = NetworkMonitor(probe_host="h", probe_port=1, probe_interval=0.01)
        listener = MagicMock()
        monitor.add_listener(listener)

        with patch.object(monitor, "probe", AsyncMock(return_value=True)):
            await monitor.start()
            await monitor.stop()

        await monitor.set_online(False)
        listener.assert_called_once_with(False)
