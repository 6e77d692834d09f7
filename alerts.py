import time
import threading
from enum import Enum
from datetime import datetime, timedelta
from dataclasses import dataclass
from typing import Optional, Dict, Any, List
from events import EventType

ALERT_SEND_GRACE = 2  # Seconds to wait for pending alerts on shutdown


class AlertType(Enum):
    LEAK = "leak"
    SYSTEM_EXIT = "system_exit"


class AlertSeverity(Enum):
    WARNING = "warning"
    CRITICAL = "critical"


# Map alert types to their severity
ALERT_SEVERITY_MAP = {
    AlertType.LEAK: AlertSeverity.CRITICAL,
    AlertType.SYSTEM_EXIT: AlertSeverity.WARNING,
}


@dataclass
class Alert:
    """Represents a single alert occurrence"""
    type: AlertType
    timestamp: datetime
    message: str
    data: Dict[str, Any]  # Context data (flow percentages, signal, etc.)

    @property
    def severity(self) -> AlertSeverity:
        return ALERT_SEVERITY_MAP[self.type]

    def to_dict(self):
        """Convert alert to dictionary for logging/serialization"""
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "data": self.data
        }


class AlertManager:
    """Turns leak events into notifications, with repeat suppression"""

    def __init__(self, logger, config, bus, channels: Optional[List] = None):
        self.logger = logger
        self.channels = channels or []

        alerts_cfg = getattr(config.cfg, 'alerts', None)
        self.enabled = {
            AlertType.LEAK: config.waterLeakAlert,
            AlertType.SYSTEM_EXIT: getattr(alerts_cfg, 'system_exit', False),
        }
        self.leak_repeat_minutes = getattr(alerts_cfg, 'leak_repeat_minutes', 60)

        # State tracking: key = alert_type, value = last_alerted_time
        self._alert_state: Dict[AlertType, datetime] = {}
        self.history: List[Alert] = []
        self._workers: List[threading.Thread] = []
        self._workers_lock = threading.Lock()

        bus.subscribe(EventType.LEAK_DETECTED, self.on_leak_detected)
        bus.subscribe(EventType.LEAK_CLEARED, self.on_leak_cleared)

        self.logger.info("AlertManager initialized")

    def _should_alert(self, alert_type: AlertType) -> bool:
        """Check if we should fire this alert based on repeat logic"""
        # LEAK has repeat logic (every N minutes)
        if alert_type == AlertType.LEAK and alert_type in self._alert_state:
            time_since_last = datetime.now() - self._alert_state[alert_type]
            return time_since_last >= timedelta(minutes=self.leak_repeat_minutes)

        # All other alerts: only fire once until state is cleared
        return alert_type not in self._alert_state

    def clear_alert_state(self, alert_type: AlertType):
        """Clear alert state (e.g., when condition no longer exists)"""
        self._alert_state.pop(alert_type, None)

    def _notify(self, alert: Alert):
        """Log the alert and hand it to every configured channel"""
        log_message = f"ALERT [{alert.severity.value.upper()}] {alert.type.value}: {alert.message}"
        if alert.severity == AlertSeverity.CRITICAL:
            self.logger.critical(log_message)
        else:
            self.logger.warning(log_message)

        if alert.data:
            self.logger.info(f"  Alert data: {alert.data}")

        if not self.channels:
            return

        # Channels may retry for a long time, keep them off the timer thread
        worker = threading.Thread(target=self._send, args=(alert,))
        worker.daemon = True
        worker.name = f"AlertTh-{alert.type.value}"
        with self._workers_lock:
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(worker)
        worker.start()

    def _send(self, alert: Alert):
        for channel in self.channels:
            try:
                channel.send(alert)
            except Exception as ex:
                self.logger.error(f"Alert channel {type(channel).__name__} failed: {ex}")

    def wait(self, timeout: float = ALERT_SEND_GRACE) -> bool:
        """Wait up to timeout seconds for alerts still being sent. Returns True when none are left."""
        deadline = time.monotonic() + timeout
        with self._workers_lock:
            workers = list(self._workers)
        for worker in workers:
            worker.join(max(0, deadline - time.monotonic()))
        return not any(worker.is_alive() for worker in workers)

    def alert(self, alert_type: AlertType, message: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """Fire an alert if conditions allow"""
        if not self.enabled[alert_type] or not self._should_alert(alert_type):
            return False

        alert = Alert(
            type=alert_type,
            timestamp=datetime.now(),
            message=message,
            data=data or {}
        )
        self._notify(alert)
        self._alert_state[alert_type] = alert.timestamp
        self.history.append(alert)
        return True

    def on_leak_detected(self, event):
        self.alert(AlertType.LEAK, "Suspected water leak on irrigation system",
                   {"non_zero_percentage": round(event.get("percentage", 0), 1)})

    def on_leak_cleared(self, event):
        self.clear_alert_state(AlertType.LEAK)

    def on_system_exit(self, signum):
        self.alert(AlertType.SYSTEM_EXIT, "Irrigation system is shutting down", {"signal": signum})
