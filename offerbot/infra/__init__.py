"""
Infrastructure package.

Ledger client boundary, per-account submission queue and logging configuration.
"""

from offerbot.infra.ledger_client import AccountInfo, LedgerClient, SubmitResult, XrplLedgerClient
from offerbot.infra.logging_cfg import build_logger, log_event
from offerbot.infra.submission_queue import SubmissionQueue

__all__ = [
    "AccountInfo",
    "LedgerClient",
    "SubmitResult",
    "XrplLedgerClient",
    "build_logger",
    "log_event",
    "SubmissionQueue",
]
