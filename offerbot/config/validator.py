"""
Configuration validation for production safety.

- Range checks for numeric parameters
- Dependency validation (e.g. on-chain publishing requires price tracking)
- Warnings for risky but valid configurations

Settings.load() already rejects values that cannot work at all; this layer
looks at combinations that will run but probably not the way the operator
intended.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, auto
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from offerbot.ledger.models import MATCH_TOLERANCE

logger = logging.getLogger("offerbot")


class ValidationSeverity(Enum):
    """Severity levels for validation issues."""
    ERROR = auto()    # Blocks startup
    WARNING = auto()  # Logs warning but allows startup
    INFO = auto()     # Informational only


@dataclass
class ValidationIssue:
    """A single validation issue."""
    field: str
    message: str
    severity: ValidationSeverity
    value: Any = None
    suggestion: Optional[str] = None


@dataclass
class ValidationResult:
    """Result of config validation."""
    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)

    def has_errors(self) -> bool:
        return any(i.severity == ValidationSeverity.ERROR for i in self.issues)

    def has_warnings(self) -> bool:
        return any(i.severity == ValidationSeverity.WARNING for i in self.issues)

    def get_errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    def get_warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]


class ConfigValidator:
    """
    Validates Settings for production safety.

    Checks:
    - Numeric values are within sane ranges
    - Dependencies between fields
    - Risky configurations
    """

    # Range definitions: (min, max)
    NUMERIC_RANGES: Dict[str, Tuple[float, float]] = {
        "check_interval_sec": (1.0, 86400.0),
        "max_retries": (1, 100),
        "reconnect_delay_sec": (0.0, 300.0),
        "min_confidence": (0.0, 1.0),
        "oracle_update_interval_ms": (1000, 7 * 86_400_000),
        "source_timeout_sec": (0.5, 120.0),
        "reporting_interval_sec": (60.0, 30 * 86400.0),
        "compliance_retention_days": (1, 3650),
    }

    # Conditional requirements
    CONDITIONAL_REQUIREMENTS: List[Tuple[str, str, str]] = [
        # (if_field, then_required, message)
        ("oracle_publish_on_chain", "oracle_enabled", "on-chain valuation publishing requires ORACLE_ENABLED"),
    ]

    def __init__(self) -> None:
        self._custom_validators: List[Callable[[Any], Optional[List[ValidationIssue]]]] = []

    def register_validator(self, validator: Callable[[Any], Optional[List[ValidationIssue]]]) -> None:
        """Register a custom validation function."""
        self._custom_validators.append(validator)

    def validate(self, cfg) -> ValidationResult:
        issues: List[ValidationIssue] = []
        issues.extend(self._validate_numeric_ranges(cfg))
        issues.extend(self._validate_conditional(cfg))
        issues.extend(self._validate_oracle(cfg))
        issues.extend(self._check_risky_configs(cfg))

        for validator in self._custom_validators:
            custom_issues = validator(cfg)
            if custom_issues:
                issues.extend(custom_issues)

        has_errors = any(i.severity == ValidationSeverity.ERROR for i in issues)
        return ValidationResult(valid=not has_errors, issues=issues)

    def _validate_numeric_ranges(self, cfg) -> List[ValidationIssue]:
        issues = []
        for field_name, (min_val, max_val) in self.NUMERIC_RANGES.items():
            value = getattr(cfg, field_name, None)
            if value is None:
                continue
            num_value = float(value)
            if num_value < min_val:
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' value {num_value} is below minimum {min_val}",
                    severity=ValidationSeverity.ERROR,
                    value=num_value,
                    suggestion=f"Set to at least {min_val}",
                ))
            elif num_value > max_val:
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' value {num_value} is above maximum {max_val}",
                    severity=ValidationSeverity.ERROR,
                    value=num_value,
                    suggestion=f"Set to at most {max_val}",
                ))
        return issues

    def _validate_conditional(self, cfg) -> List[ValidationIssue]:
        issues = []
        for if_field, then_required, message in self.CONDITIONAL_REQUIREMENTS:
            if getattr(cfg, if_field, None) and not getattr(cfg, then_required, None):
                issues.append(ValidationIssue(
                    field=then_required,
                    message=message,
                    severity=ValidationSeverity.WARNING,
                    suggestion=f"Set '{then_required}' when using '{if_field}'",
                ))
        return issues

    def _validate_oracle(self, cfg) -> List[ValidationIssue]:
        issues = []
        if not getattr(cfg, "oracle_enabled", False):
            return issues

        sources_file = getattr(cfg, "oracle_sources_file", "")
        if not sources_file or not Path(sources_file).is_file():
            severity = ValidationSeverity.WARNING if cfg.synthetic_valuation else ValidationSeverity.ERROR
            issues.append(ValidationIssue(
                field="oracle_sources_file",
                message=f"Valuation sources file not found: {sources_file!r}",
                severity=severity,
                value=sources_file,
                suggestion="Point ORACLE_SOURCES_FILE at a YAML source list",
            ))

        if cfg.synthetic_valuation is not None:
            issues.append(ValidationIssue(
                field="synthetic_valuation",
                message="Synthetic valuation configured; it is only used when every source fails and is never reliable",
                severity=ValidationSeverity.INFO,
                value=cfg.synthetic_valuation,
            ))

        if cfg.oracle_update_interval_ms < 60_000:
            issues.append(ValidationIssue(
                field="oracle_update_interval_ms",
                message=f"Valuation interval of {cfg.oracle_update_interval_ms} ms may exceed source rate limits",
                severity=ValidationSeverity.WARNING,
                value=cfg.oracle_update_interval_ms,
            ))

        if cfg.min_confidence < 0.5:
            issues.append(ValidationIssue(
                field="min_confidence",
                message=f"Low confidence threshold ({cfg.min_confidence:.0%}) lets weak valuations reprice the offer",
                severity=ValidationSeverity.WARNING,
                value=cfg.min_confidence,
            ))
        return issues

    def _check_risky_configs(self, cfg) -> List[ValidationIssue]:
        issues = []

        if cfg.admin_fee_enabled:
            fee = Decimal(cfg.admin_fee_pct)
            if fee == 0:
                issues.append(ValidationIssue(
                    field="admin_fee_pct",
                    message="Admin fee enabled with a 0% fee",
                    severity=ValidationSeverity.WARNING,
                    value=str(fee),
                ))
            # Matching compares against the pre-fee amount, so a fee at or beyond
            # the tolerance gap makes the bot's own offer look missing every cycle.
            elif fee >= (1 - MATCH_TOLERANCE) * 100:
                issues.append(ValidationIssue(
                    field="admin_fee_pct",
                    message=f"Admin fee {fee}% reaches the {(1 - MATCH_TOLERANCE):.0%} match tolerance; offers would be re-created every cycle",
                    severity=ValidationSeverity.WARNING,
                    value=str(fee),
                    suggestion="Keep the admin fee below 10%",
                ))

        if cfg.check_interval_sec < 10:
            issues.append(ValidationIssue(
                field="check_interval_sec",
                message=f"Check interval of {cfg.check_interval_sec}s polls the ledger aggressively",
                severity=ValidationSeverity.WARNING,
                value=cfg.check_interval_sec,
            ))

        if cfg.alert_enabled and not cfg.alert_webhook_url:
            issues.append(ValidationIssue(
                field="alert_webhook_url",
                message="Alerting enabled without ALERT_WEBHOOK_URL; alerts are dropped",
                severity=ValidationSeverity.INFO,
            ))

        if cfg.xrpl_network.startswith("ws://"):
            issues.append(ValidationIssue(
                field="xrpl_network",
                message="Unencrypted ws:// ledger endpoint",
                severity=ValidationSeverity.WARNING,
                value=cfg.xrpl_network,
                suggestion="Use wss:// outside local development",
            ))
        return issues


def validate_config(cfg) -> ValidationResult:
    validator = ConfigValidator()
    return validator.validate(cfg)


def validate_and_log(cfg, logger_instance=None) -> bool:
    """
    Validate config and log all issues.

    Returns:
        True if config is valid (no errors), False otherwise
    """
    log = logger_instance or logger
    result = validate_config(cfg)

    for issue in result.get_errors():
        msg = f"CONFIG ERROR: {issue.message}"
        if issue.suggestion:
            msg += f" (suggestion: {issue.suggestion})"
        log.error(msg)

    for issue in result.get_warnings():
        msg = f"CONFIG WARNING: {issue.message}"
        if issue.suggestion:
            msg += f" (suggestion: {issue.suggestion})"
        log.warning(msg)

    if result.valid:
        log.info("Configuration validation passed")
    else:
        log.error(f"Configuration validation failed with {len(result.get_errors())} error(s)")

    return result.valid
