"""
Capped, file-backed alert list
"""
import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..models import Alert, AlertSeverity, AlertType
from ..storage import read_json_file, write_json_file

logger = logging.getLogger(__name__)

DEFAULT_MAX_ALERTS = 1000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _created_key(alert: Alert) -> datetime:
    return parse_iso(alert.created_at) or datetime.min.replace(tzinfo=timezone.utc)


class AlertStore:
    """
    Alerts newest first in alerts.json.

    Acknowledgement only ever sets acknowledged_at; beyond max_alerts the
    oldest entries are dropped. The file is shared with other processes (the
    CLI acknowledges while the monitor adds), so every operation merges the
    on-disk list into memory before reading or writing.
    """

    def __init__(self, data_dir: Path, max_alerts: int = DEFAULT_MAX_ALERTS,
                 clock: Callable[[], datetime] = utc_now):
        self.path = Path(data_dir) / 'alerts.json'
        self.max_alerts = max_alerts
        self.clock = clock
        self._alerts: List[Alert] = []
        self._lock = asyncio.Lock()

    def _read_disk(self) -> List[Alert]:
        data = read_json_file(self.path)
        alerts = []
        if isinstance(data, list):
            for row in data:
                try:
                    alerts.append(Alert.from_dict(row))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping unreadable alert record: {e}")
        return alerts

    def _sync(self) -> None:
        """Merge alerts.json into memory; an acknowledgement on either side wins"""
        merged: Dict[str, Alert] = {a.id: a for a in self._alerts}
        for alert in self._read_disk():
            mine = merged.get(alert.id)
            if mine is None or (alert.is_acknowledged and not mine.is_acknowledged):
                merged[alert.id] = alert
        ordered = sorted(merged.values(), key=_created_key, reverse=True)
        self._alerts = ordered[:self.max_alerts]

    def _persist(self) -> None:
        write_json_file(self.path, [a.to_dict() for a in self._alerts[:self.max_alerts]])

    async def list(self, limit: int = 200, include_acknowledged: bool = False) -> List[Alert]:
        async with self._lock:
            self._sync()
            limit = max(1, min(int(limit), self.max_alerts))
            alerts = self._alerts if include_acknowledged else [a for a in self._alerts if not a.is_acknowledged]
            return list(alerts[:limit])

    async def add(self, type: AlertType, severity: AlertSeverity, title: str, message: str,
                  dedupe_key: str, symbol: Optional[str] = None,
                  metadata: Optional[Dict[str, Any]] = None) -> Alert:
        async with self._lock:
            self._sync()
            alert = Alert(
                id=str(uuid.uuid4()),
                created_at=self.clock().isoformat(),
                type=type,
                severity=severity,
                title=title,
                message=message,
                symbol=symbol,
                dedupe_key=dedupe_key,
                metadata=metadata
            )
            self._alerts.insert(0, alert)
            if len(self._alerts) > self.max_alerts:
                dropped = len(self._alerts) - self.max_alerts
                self._alerts = self._alerts[:self.max_alerts]
                logger.debug(f"Evicted {dropped} oldest alerts")
            self._persist()
            return alert

    async def acknowledge(self, alert_id: str) -> Optional[Alert]:
        """Mark an alert acknowledged; returns it unchanged if already acknowledged"""
        async with self._lock:
            self._sync()
            for index, alert in enumerate(self._alerts):
                if alert.id != alert_id:
                    continue
                if alert.is_acknowledged:
                    return alert
                acked = replace(alert, acknowledged_at=self.clock().isoformat())
                self._alerts[index] = acked
                self._persist()
                return acked
            return None

    async def find_recent_by_dedupe_key(self, dedupe_key: str, since: datetime) -> Optional[Alert]:
        """Newest alert with this key created at or after since"""
        async with self._lock:
            self._sync()
            for alert in self._alerts:
                if alert.dedupe_key != dedupe_key:
                    continue
                created = parse_iso(alert.created_at)
                if created is not None and created >= since:
                    return alert
            return None
