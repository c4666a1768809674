"""
Tests for ResilientConnection: initial connect, ensure/force reconnect, close.
"""
from unittest.mock import AsyncMock, patch

import pytest

from offerbot.connection.resilient_connection import ConnectionConfig, ResilientConnection, backoff_delay
from offerbot.errors import LedgerConnectionError, StartupError
from offerbot.execution.state import ReconciliationState
from offerbot.monitoring.metrics import OfferBotMetrics
from tests.conftest import FakeLedgerClient


def _conn(client, state=None, **cfg):
    config = ConnectionConfig(backoff_step_sec=0.0, reconnect_delay_sec=0.0, **cfg)
    return ResilientConnection(client, state or ReconciliationState(), config)


def test_backoff_delay_steps_and_caps():
    assert backoff_delay(1) == 5.0
    assert backoff_delay(3) == 15.0
    assert backoff_delay(10) == 30.0
    assert backoff_delay(2, step_sec=1.0, max_sec=1.5) == 1.5


class TestInitialConnect:
    @pytest.mark.asyncio
    async def test_connects_first_try(self):
        client = FakeLedgerClient()
        conn = _conn(client)
        await conn.connect_initial()
        assert conn.is_connected()
        assert client.connect_calls == 1

    @pytest.mark.asyncio
    async def test_retries_with_backoff(self):
        client = FakeLedgerClient()
        client.connect_failures = 2
        state = ReconciliationState(consecutive_errors=4)
        conn = ResilientConnection(client, state, ConnectionConfig(max_retries=3))
        with patch("offerbot.connection.resilient_connection.asyncio.sleep", new=AsyncMock()) as sleep:
            await conn.connect_initial()
        assert client.connect_calls == 3
        assert [c.args[0] for c in sleep.await_args_list] == [5.0, 10.0]
        assert state.consecutive_errors == 0

    @pytest.mark.asyncio
    async def test_exhaustion_is_fatal(self):
        client = FakeLedgerClient()
        client.connect_failures = 10
        conn = _conn(client, max_retries=3)
        with pytest.raises(StartupError) as info:
            await conn.connect_initial()
        assert client.connect_calls == 3
        assert isinstance(info.value.__cause__, OSError)

    @pytest.mark.asyncio
    async def test_stop_requested_aborts(self):
        client = FakeLedgerClient()
        conn = _conn(client, state=ReconciliationState(is_running=False))
        with pytest.raises(StartupError):
            await conn.connect_initial()
        assert client.connect_calls == 0


class TestReconnect:
    @pytest.mark.asyncio
    async def test_ensure_connected_noop_when_up(self, connection, fake_client, state):
        await connection.ensure_connected()
        assert fake_client.connect_calls == 0
        assert state.reconnects == 0

    @pytest.mark.asyncio
    async def test_ensure_connected_reconnects(self, connection, fake_client, state):
        fake_client.connected = False
        await connection.ensure_connected()
        assert fake_client.connected
        assert fake_client.disconnect_calls == 1
        assert state.reconnects == 1

    @pytest.mark.asyncio
    async def test_ensure_connected_raises_on_failure(self, connection, fake_client):
        fake_client.connected = False
        fake_client.connect_failures = 1
        with pytest.raises(LedgerConnectionError):
            await connection.ensure_connected()

    @pytest.mark.asyncio
    async def test_force_reconnect_cycles_live_connection(self, connection, fake_client, state):
        state.consecutive_errors = 3
        assert await connection.force_reconnect() is True
        assert fake_client.disconnect_calls == 1
        assert fake_client.connect_calls == 1
        assert state.consecutive_errors == 0
        assert state.reconnects == 1

    @pytest.mark.asyncio
    async def test_force_reconnect_failure_returns_false(self, connection, fake_client):
        fake_client.connect_failures = 1
        assert await connection.force_reconnect() is False
        assert not connection.is_connected()

    @pytest.mark.asyncio
    async def test_metrics_track_outcomes(self, fake_client, state):
        metrics = OfferBotMetrics()
        conn = ResilientConnection(fake_client, state, ConnectionConfig(reconnect_delay_sec=0.0), metrics)
        await conn.force_reconnect()
        fake_client.connect_failures = 1
        await conn.force_reconnect()
        registry = metrics.get_registry()
        assert registry.get_sample_value("ledger_reconnects_total", {"outcome": "ok"}) == 1.0
        assert registry.get_sample_value("ledger_reconnects_total", {"outcome": "failed"}) == 1.0
        assert registry.get_sample_value("ledger_connected") == 0.0


class TestClose:
    @pytest.mark.asyncio
    async def test_close_disconnects_and_refuses_reconnect(self, connection, fake_client):
        await connection.close()
        assert not fake_client.connected
        with pytest.raises(LedgerConnectionError):
            await connection.ensure_connected()
        assert await connection.force_reconnect() is False
