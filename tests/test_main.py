"""
Tests for CLI parsing and component wiring.
"""
from unittest.mock import patch

import httpx
import pytest

from offerbot.config.config import Settings
from offerbot.errors import StartupError
from offerbot.main import build_components, main, parse_args
from tests.conftest import BOT_ACCOUNT, FakeLedgerClient


@pytest.fixture
def fake_xrpl():
    with patch("offerbot.main.XrplLedgerClient", side_effect=lambda url, seed: FakeLedgerClient()) as factory:
        yield factory


def test_parse_args():
    assert parse_args([]).once is False
    assert parse_args(["--once"]).once is True


@pytest.mark.asyncio
async def test_minimal_wiring(env, fake_xrpl):
    async with httpx.AsyncClient() as http:
        parts = build_components(Settings.load(), http)
    assert parts.scheduler is None
    assert parts.reporter is None
    assert parts.reconciler.price_channel is None
    assert parts.reconciler.desired.sell.issuer == BOT_ACCOUNT
    assert parts.loop.reconciler is parts.reconciler


@pytest.mark.asyncio
async def test_full_wiring(env, fake_xrpl, tmp_path):
    sources = tmp_path / "sources.yaml"
    sources.write_text("sources:\n  - {name: appraisal, type: static, value: 1000000, confidence: 0.9}\n")
    env.setenv("ORACLE_ENABLED", "true")
    env.setenv("ORACLE_SOURCES_FILE", str(sources))
    env.setenv("ORACLE_PUBLISH_ON_CHAIN", "true")
    env.setenv("COMPLIANCE_ENABLED", "true")
    env.setenv("COMPLIANCE_DIR", str(tmp_path / "reports"))
    env.setenv("TOTAL_TOKEN_SUPPLY", "1000")

    async with httpx.AsyncClient() as http:
        parts = build_components(Settings.load(), http)
    assert parts.scheduler is not None
    assert [s.name for s in parts.scheduler.sources] == ["appraisal"]
    assert parts.scheduler.publisher is not None
    assert parts.reconciler.price_channel is not None
    assert parts.reconciler.total_supply == 1000
    assert parts.reporter is not None
    assert parts.loop.scheduler is parts.scheduler


@pytest.mark.asyncio
async def test_bad_seed_is_startup_error(env):
    with patch("offerbot.main.XrplLedgerClient", side_effect=ValueError("bad seed")):
        async with httpx.AsyncClient() as http:
            with pytest.raises(StartupError):
                build_components(Settings.load(), http)


@pytest.mark.asyncio
async def test_main_exits_1_on_missing_config(env):
    env.delenv("XRPL_ACCOUNT_SEED")
    with patch("offerbot.main.load_dotenv"), patch("offerbot.main.build_logger"):
        assert await main([]) == 1


@pytest.mark.asyncio
async def test_main_run_once(env, fake_xrpl, tmp_path):
    with patch("offerbot.main.load_dotenv"), patch("offerbot.main.build_logger"):
        assert await main(["--once"]) == 0
