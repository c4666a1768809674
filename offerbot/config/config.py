"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from dotenv import load_dotenv

from offerbot.errors import StartupError
from offerbot.ledger.models import NATIVE_CURRENCY, AssetIdentity, DesiredOffer

WEBHOOK_TYPES = {"generic", "slack", "discord"}

REQUIRED_ENV = [
    "XRPL_NETWORK",
    "XRPL_ACCOUNT_SEED",
    "SELL_CURRENCY",
    "SELL_AMOUNT",
    "BUY_CURRENCY",
    "BUY_AMOUNT",
]


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val == "":
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise StartupError(f"{key}={raw!r} is not an integer") from exc


def _float_env(key: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise StartupError(f"{key}={raw!r} is not a number") from exc


def _decimal_env(key: str, default: Optional[Decimal] = None) -> Optional[Decimal]:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        value = Decimal(raw.strip())
    except InvalidOperation as exc:
        raise StartupError(f"{key}={raw!r} is not a decimal amount") from exc
    if not value.is_finite():
        raise StartupError(f"{key}={raw!r} is not a finite amount")
    return value


@dataclass(frozen=True)
class Settings:
    xrpl_network: str
    account_seed: str
    sell_currency: str
    sell_issuer: Optional[str]  # None -> the bot's own account issues the token
    sell_amount: Decimal
    buy_currency: str
    buy_issuer: Optional[str]
    buy_amount: Decimal
    check_interval_sec: float
    max_retries: int
    reconnect_delay_sec: float
    min_confidence: float
    # Oracle / price tracking
    oracle_enabled: bool
    oracle_update_interval_ms: int
    oracle_sources_file: str
    source_timeout_sec: float
    synthetic_valuation: Optional[float]
    synthetic_confidence: float
    total_token_supply: Decimal
    oracle_publish_on_chain: bool
    # Admin fee
    admin_fee_enabled: bool
    admin_fee_pct: Decimal
    # Compliance reporting
    compliance_enabled: bool
    compliance_dir: str
    reporting_interval_sec: float
    compliance_retention_days: int
    # Observability
    metrics_port: int
    alert_webhook_url: Optional[str]
    alert_webhook_type: str  # generic, slack, discord
    alert_enabled: bool
    debug_mode: bool
    log_file: str

    def dump(self) -> dict:
        """Settings as a dict for logging, with the seed masked."""
        data = self.__dict__.copy()
        data["account_seed"] = "***"
        return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in data.items()}

    @classmethod
    def load(cls) -> "Settings":
        load_dotenv()

        missing = [key for key in REQUIRED_ENV if not os.getenv(key)]
        buy_currency = os.getenv("BUY_CURRENCY", "")
        if buy_currency and buy_currency != NATIVE_CURRENCY and not os.getenv("BUY_ISSUER"):
            missing.append("BUY_ISSUER")
        if missing:
            raise StartupError(f"missing required environment variables: {', '.join(missing)}")

        sell_amount = _decimal_env("SELL_AMOUNT")
        cfg = cls(
            xrpl_network=os.environ["XRPL_NETWORK"],
            account_seed=os.environ["XRPL_ACCOUNT_SEED"],
            sell_currency=os.environ["SELL_CURRENCY"],
            sell_issuer=os.getenv("SELL_ISSUER") or None,
            sell_amount=sell_amount,
            buy_currency=buy_currency,
            buy_issuer=os.getenv("BUY_ISSUER") or None,
            buy_amount=_decimal_env("BUY_AMOUNT"),
            check_interval_sec=_float_env("CHECK_INTERVAL_SECONDS", 60.0),
            max_retries=_int_env("MAX_RETRIES", 3),
            reconnect_delay_sec=_float_env("RECONNECT_DELAY_SEC", 5.0),
            min_confidence=_float_env("MIN_CONFIDENCE_THRESHOLD", 0.70),
            oracle_enabled=env_bool("ORACLE_ENABLED", False),
            oracle_update_interval_ms=_int_env("ORACLE_UPDATE_INTERVAL_MS", 3_600_000),
            oracle_sources_file=os.getenv("ORACLE_SOURCES_FILE", "configs/price_sources.yaml"),
            source_timeout_sec=_float_env("SOURCE_TIMEOUT_SEC", 10.0),
            synthetic_valuation=_float_env("SYNTHETIC_VALUATION", None),
            synthetic_confidence=_float_env("SYNTHETIC_CONFIDENCE", 0.5),
            total_token_supply=_decimal_env("TOTAL_TOKEN_SUPPLY", sell_amount),
            oracle_publish_on_chain=env_bool("ORACLE_PUBLISH_ON_CHAIN", False),
            admin_fee_enabled=env_bool("ENABLE_ADMIN_FEE", False),
            admin_fee_pct=_decimal_env("ADMIN_FEE_PERCENTAGE", Decimal("2.5")),
            compliance_enabled=env_bool("COMPLIANCE_ENABLED", False),
            compliance_dir=os.getenv("COMPLIANCE_DIR", "logs/compliance"),
            reporting_interval_sec=_float_env("REPORTING_INTERVAL_SEC", 86400.0),
            compliance_retention_days=_int_env("COMPLIANCE_RETENTION_DAYS", 365),
            metrics_port=_int_env("METRICS_PORT", 0),
            alert_webhook_url=os.getenv("ALERT_WEBHOOK_URL") or None,
            alert_webhook_type=os.getenv("ALERT_WEBHOOK_TYPE", "generic").lower(),
            alert_enabled=env_bool("ALERT_ENABLED", True),
            debug_mode=env_bool("DEBUG_MODE", False),
            log_file=os.getenv("LOG_FILE", "offerbot.log"),
        )
        cfg._validate()
        _sanity_check(cfg)
        return cfg

    def desired_offer(self, account: str) -> DesiredOffer:
        """The standing offer, with the bot's own account as default token issuer."""
        sell_issuer = None if self.sell_currency == NATIVE_CURRENCY else (self.sell_issuer or account)
        buy_issuer = None if self.buy_currency == NATIVE_CURRENCY else self.buy_issuer
        return DesiredOffer(
            sell=AssetIdentity(self.sell_currency, sell_issuer),
            sell_amount=self.sell_amount,
            buy=AssetIdentity(self.buy_currency, buy_issuer),
            buy_amount=self.buy_amount,
        )

    def _validate(self) -> None:
        if not self.xrpl_network.startswith(("ws://", "wss://")):
            raise StartupError("XRPL_NETWORK must be a ws:// or wss:// URL")
        if self.sell_amount <= 0:
            raise StartupError("SELL_AMOUNT must be > 0")
        if self.buy_amount <= 0:
            raise StartupError("BUY_AMOUNT must be > 0")
        if self.sell_currency == self.buy_currency and self.sell_issuer == self.buy_issuer:
            raise StartupError("SELL_* and BUY_* describe the same asset")
        if self.check_interval_sec <= 0:
            raise StartupError("CHECK_INTERVAL_SECONDS must be > 0")
        if self.max_retries < 1:
            raise StartupError("MAX_RETRIES must be >= 1")
        if self.reconnect_delay_sec < 0:
            raise StartupError("RECONNECT_DELAY_SEC must be >= 0")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise StartupError("MIN_CONFIDENCE_THRESHOLD must be within [0, 1]")
        if self.oracle_update_interval_ms <= 0:
            raise StartupError("ORACLE_UPDATE_INTERVAL_MS must be > 0")
        if self.source_timeout_sec <= 0:
            raise StartupError("SOURCE_TIMEOUT_SEC must be > 0")
        if self.synthetic_valuation is not None and self.synthetic_valuation <= 0:
            raise StartupError("SYNTHETIC_VALUATION must be > 0 when set")
        if not 0.0 <= self.synthetic_confidence <= 1.0:
            raise StartupError("SYNTHETIC_CONFIDENCE must be within [0, 1]")
        if self.total_token_supply is None or self.total_token_supply <= 0:
            raise StartupError("TOTAL_TOKEN_SUPPLY must be > 0")
        if not Decimal(0) <= self.admin_fee_pct < Decimal(100):
            raise StartupError("ADMIN_FEE_PERCENTAGE must be within [0, 100)")
        if self.reporting_interval_sec <= 0:
            raise StartupError("REPORTING_INTERVAL_SEC must be > 0")
        if self.compliance_retention_days < 1:
            raise StartupError("COMPLIANCE_RETENTION_DAYS must be >= 1")
        if not 0 <= self.metrics_port <= 65535:
            raise StartupError("METRICS_PORT must be within [0, 65535]")
        if self.alert_webhook_type not in WEBHOOK_TYPES:
            raise StartupError(f"ALERT_WEBHOOK_TYPE must be one of {sorted(WEBHOOK_TYPES)}")


def _sanity_check(cfg: Settings) -> None:
    """
    Log critical settings once at startup so overrides are obvious.
    """
    logger = logging.getLogger("offerbot")
    payload = {
        "event": "config_loaded",
        "network": cfg.xrpl_network,
        "sell": f"{cfg.sell_amount} {cfg.sell_currency}",
        "buy": f"{cfg.buy_amount} {cfg.buy_currency}",
        "check_interval_sec": cfg.check_interval_sec,
        "max_retries": cfg.max_retries,
        "oracle_enabled": cfg.oracle_enabled,
        "admin_fee_pct": str(cfg.admin_fee_pct) if cfg.admin_fee_enabled else None,
        "compliance_enabled": cfg.compliance_enabled,
    }
    logger.info(json.dumps(payload))


def enabled_features(cfg: Settings) -> List[str]:
    features = []
    if cfg.oracle_enabled:
        features.append("price_tracking")
    if cfg.oracle_publish_on_chain:
        features.append("on_chain_valuation")
    if cfg.admin_fee_enabled:
        features.append("admin_fee")
    if cfg.compliance_enabled:
        features.append("compliance_reporting")
    if cfg.metrics_port:
        features.append("metrics")
    if cfg.alert_enabled and cfg.alert_webhook_url:
        features.append("alerts")
    return features
