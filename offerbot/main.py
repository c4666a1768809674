"""
Entry point wiring all components.

    offerbot            keep the offer alive until SIGINT / SIGTERM
    offerbot --once     connect, reconcile once, exit

Exit code 0 on clean shutdown, 1 when configuration or the initial connect fails.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from dataclasses import dataclass
from typing import List, Optional

import httpx
from dotenv import load_dotenv

from offerbot.config.config import Settings, enabled_features, env_bool
from offerbot.config.sources_config import load_sources
from offerbot.config.validator import validate_and_log
from offerbot.connection.resilient_connection import ConnectionConfig, ResilientConnection
from offerbot.errors import StartupError
from offerbot.execution.offer_reconciler import OfferReconciler, ReconcilerConfig
from offerbot.execution.reconciliation_loop import LoopConfig, ReconciliationLoop
from offerbot.execution.state import ReconciliationState
from offerbot.infra.ledger_client import XrplLedgerClient
from offerbot.infra.logging_cfg import LOGGER_NAME, build_logger, log_event
from offerbot.infra.submission_queue import SubmissionQueue
from offerbot.monitoring.alerting import AlertManager, AlertSeverity, configure_alerts
from offerbot.monitoring.compliance import JsonFileComplianceSink, StatusReporter
from offerbot.monitoring.metrics import OfferBotMetrics
from offerbot.oracle.aggregator import AggregatorConfig, SyntheticEstimate, ValuationAggregator
from offerbot.oracle.publisher import ValuationPublisher
from offerbot.oracle.scheduler import OracleScheduler, SchedulerConfig
from offerbot.oracle.sources import PriceSource

log = logging.getLogger(LOGGER_NAME)


@dataclass
class Components:
    connection: ResilientConnection
    state: ReconciliationState
    reconciler: OfferReconciler
    loop: ReconciliationLoop
    scheduler: Optional[OracleScheduler]
    reporter: Optional[StatusReporter]
    alerts: AlertManager
    metrics: OfferBotMetrics


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="offerbot", description="Keep a standing sell offer on the XRP Ledger.")
    parser.add_argument("--once", action="store_true", help="reconcile once and exit")
    return parser.parse_args(argv)


def build_components(cfg: Settings, http_client: httpx.AsyncClient) -> Components:
    """Wire every component from settings. Raises StartupError."""
    try:
        client = XrplLedgerClient(cfg.xrpl_network, cfg.account_seed)
    except Exception as exc:
        raise StartupError(f"cannot load wallet from XRPL_ACCOUNT_SEED: {type(exc).__name__}") from exc

    metrics = OfferBotMetrics()
    alerts = configure_alerts(
        webhook_url=cfg.alert_webhook_url,
        webhook_type=cfg.alert_webhook_type,
        min_severity=AlertSeverity.INFO,
        enabled=cfg.alert_enabled,
        bot_name="OfferBot",
    )
    state = ReconciliationState()
    submission_queue = SubmissionQueue()
    connection = ResilientConnection(
        client,
        state,
        ConnectionConfig(max_retries=cfg.max_retries, reconnect_delay_sec=cfg.reconnect_delay_sec),
        metrics=metrics,
    )

    scheduler: Optional[OracleScheduler] = None
    if cfg.oracle_enabled:
        sources: List[PriceSource] = load_sources(cfg.oracle_sources_file, cfg.source_timeout_sec, http_client)
        synthetic = None
        if cfg.synthetic_valuation is not None:
            synthetic = SyntheticEstimate(cfg.synthetic_valuation, cfg.synthetic_confidence)
        if not sources and synthetic is None:
            log.warning(json.dumps({"event": "no_valuation_sources", "path": cfg.oracle_sources_file}))
        aggregator = ValuationAggregator(
            AggregatorConfig(
                min_confidence=cfg.min_confidence,
                source_timeout_sec=cfg.source_timeout_sec,
                synthetic=synthetic,
            ),
            metrics=metrics,
        )
        publisher = ValuationPublisher(connection, submission_queue, metrics) if cfg.oracle_publish_on_chain else None
        scheduler = OracleScheduler(
            aggregator,
            sources,
            SchedulerConfig(update_interval_ms=cfg.oracle_update_interval_ms),
            publisher=publisher,
            on_error=lambda exc: alerts.alert_oracle_error(f"{type(exc).__name__}: {exc}"),
            metrics=metrics,
        )

    reconciler = OfferReconciler(
        connection,
        cfg.desired_offer(client.address),
        state,
        submission_queue,
        ReconcilerConfig(
            max_retries=cfg.max_retries,
            total_supply=cfg.total_token_supply,
            admin_fee_enabled=cfg.admin_fee_enabled,
            admin_fee_pct=cfg.admin_fee_pct,
            debug=cfg.debug_mode,
        ),
        price_channel=scheduler.subscribe() if scheduler else None,
        metrics=metrics,
        alerts=alerts,
        baseline_provider=(lambda: scheduler.baseline) if scheduler else None,
    )

    reporter: Optional[StatusReporter] = None
    if cfg.compliance_enabled:
        reporter = StatusReporter(
            JsonFileComplianceSink(cfg.compliance_dir, cfg.compliance_retention_days),
            state,
            connection,
            scheduler=scheduler,
            reconciler=reconciler,
            interval_sec=cfg.reporting_interval_sec,
        )

    loop = ReconciliationLoop(
        connection,
        reconciler,
        state,
        LoopConfig(check_interval_sec=cfg.check_interval_sec),
        scheduler=scheduler,
        reporter=reporter,
        alerts=alerts,
        metrics=metrics,
    )
    return Components(connection, state, reconciler, loop, scheduler, reporter, alerts, metrics)


async def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    build_logger(
        LOGGER_NAME,
        level=logging.DEBUG if env_bool("DEBUG_MODE", False) else logging.INFO,
        file_path=os.getenv("LOG_FILE", "offerbot.log"),
    )

    try:
        cfg = Settings.load()
    except StartupError as exc:
        log_event(log, "startup_failed", logging.ERROR, error=str(exc))
        return 1

    if not validate_and_log(cfg, log):
        log.error("Configuration validation failed, exiting")
        return 1

    http_client = httpx.AsyncClient(timeout=cfg.source_timeout_sec)
    try:
        try:
            parts = build_components(cfg, http_client)
        except StartupError as exc:
            log_event(log, "startup_failed", logging.ERROR, error=str(exc))
            return 1

        if cfg.metrics_port:
            parts.metrics.serve(cfg.metrics_port)
        log_event(log, "startup", account=parts.connection.account, features=enabled_features(cfg), once=args.once)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, parts.loop.request_stop, sig.name.lower())
            except NotImplementedError:
                # Windows: KeyboardInterrupt ends the run instead
                log.debug("signal handlers unavailable on this platform")

        try:
            if args.once:
                stats = await parts.loop.run_once()
            else:
                stats = await parts.loop.run()
        except StartupError as exc:
            log_event(log, "startup_failed", logging.ERROR, error=str(exc))
            await parts.alerts.alert_shutdown("startup_failed", error=str(exc))
            await parts.alerts.flush()
            return 1

        log_event(log, "final_stats", **stats)
        return 0
    finally:
        await http_client.aclose()
        log.info("Shutdown complete")


def run(argv: Optional[List[str]] = None) -> None:
    try:
        code = asyncio.run(main(argv))
    except KeyboardInterrupt:
        print("\nBot stopped by user")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    run()
