from offerbot.execution.offer_reconciler import CycleOutcome, CycleResult, OfferReconciler, ReconcilerConfig
from offerbot.execution.reconciliation_loop import LoopConfig, ReconciliationLoop
from offerbot.execution.state import ReconciliationState, format_uptime

__all__ = [
    "CycleOutcome",
    "CycleResult",
    "OfferReconciler",
    "ReconcilerConfig",
    "LoopConfig",
    "ReconciliationLoop",
    "ReconciliationState",
    "format_uptime",
]
