"""
ReconciliationState: the process-wide mutable counters of one bot run.

Created by the ReconciliationLoop at start, handed by reference to the
reconciler and the connection, discarded after the final snapshot.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


def format_uptime(seconds: float) -> str:
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)
    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


@dataclass
class ReconciliationState:
    is_running: bool = True
    consecutive_errors: int = 0
    total_offers_created: int = 0
    last_offer_hash: Optional[str] = None
    total_errors: int = 0
    total_cycles: int = 0
    offers_cancelled: int = 0
    price_updates: int = 0
    reconnects: int = 0
    started_at: float = field(default_factory=time.time)

    def record_success(self) -> None:
        self.total_cycles += 1
        self.consecutive_errors = 0

    def record_failure(self) -> int:
        self.total_cycles += 1
        self.total_errors += 1
        self.consecutive_errors += 1
        return self.consecutive_errors

    def record_offer_created(self, tx_hash: Optional[str]) -> None:
        self.total_offers_created += 1
        self.last_offer_hash = tx_hash

    def uptime(self, now: Optional[float] = None) -> float:
        return max(0.0, (now if now is not None else time.time()) - self.started_at)

    def snapshot(self) -> Dict[str, Any]:
        uptime = self.uptime()
        return {
            "is_running": self.is_running,
            "offers_created": self.total_offers_created,
            "last_offer_hash": self.last_offer_hash,
            "offers_cancelled": self.offers_cancelled,
            "price_updates": self.price_updates,
            "consecutive_errors": self.consecutive_errors,
            "total_errors": self.total_errors,
            "total_cycles": self.total_cycles,
            "reconnects": self.reconnects,
            "uptime_sec": round(uptime, 1),
            "uptime": format_uptime(uptime),
        }
