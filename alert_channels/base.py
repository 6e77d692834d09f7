from abc import ABC, abstractmethod


class AlertChannel(ABC):
    """Destination for irrigation alerts (leak, shutdown)."""

    def __init__(self, logger, cfg):
        self.logger = logger
        self.name = getattr(cfg, 'name', None) or type(self).__name__

    def format_text(self, alert) -> str:
        """Plain text rendering of an alert for channels that display text."""
        lines = [
            f"[{alert.severity.value.upper()}] {alert.type.value}",
            f"Time: {alert.timestamp.isoformat()}",
            f"Message: {alert.message}",
        ]
        if alert.data:
            lines.append("Data:")
            for k, v in alert.data.items():
                lines.append(f"  {k}: {v}")
        return "\n".join(lines)

    @abstractmethod
    def send(self, alert) -> bool:
        """Deliver an alert. Returns True once the destination accepted it."""
