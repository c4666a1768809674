from offerbot.monitoring.alerting import Alert, AlertConfig, AlertManager, AlertSeverity, AlertType, configure_alerts
from offerbot.monitoring.compliance import ComplianceSink, JsonFileComplianceSink, StatusReporter
from offerbot.monitoring.metrics import OfferBotMetrics

__all__ = [
    "Alert",
    "AlertConfig",
    "AlertManager",
    "AlertSeverity",
    "AlertType",
    "configure_alerts",
    "ComplianceSink",
    "JsonFileComplianceSink",
    "StatusReporter",
    "OfferBotMetrics",
]
