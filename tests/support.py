from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

START = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class ManualClock:
    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> None:
        self.current += timedelta(**delta)


def make_signal(
    signal_id: str = "sig-1",
    *,
    signal_type: str = "OPERATIONAL",
    severity: str = "LOW",
    timestamp: str = "2026-01-05T11:55:00Z",
    **data: Any,
) -> dict[str, Any]:
    return {
        "id": signal_id,
        "source": "SYSTEM_MONITOR",
        "type": signal_type,
        "severity": severity,
        "timestamp": timestamp,
        "data": data,
        "organisationId": "org-1",
        "metadata": {"confidence": 0.9, "relatedSignals": [], "tags": ["test"]},
    }
