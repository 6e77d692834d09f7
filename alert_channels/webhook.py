import time
import requests
from alert_channels.base import AlertChannel

WEBHOOK_ATTEMPTS = 5
WEBHOOK_TIMEOUT = 10  # Seconds


class WebhookChannel(AlertChannel):
    """Alert channel that POSTs each alert as JSON to a configured URL."""

    def __init__(self, logger, cfg, sleep=time.sleep):
        AlertChannel.__init__(self, logger, cfg)
        self.url = cfg.url
        self.api_key = getattr(cfg, 'api_key', None)
        self.sleep = sleep

    def send(self, alert) -> bool:
        payload = alert.to_dict()
        payload["text"] = self.format_text(alert)
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key

        for attempt in range(WEBHOOK_ATTEMPTS):
            try:
                response = requests.post(self.url, headers=headers, json=payload, timeout=WEBHOOK_TIMEOUT)
                response.raise_for_status()
                self.logger.info(f"Webhook alert sent to '{self.name}': {alert.type.value}")
                return True
            except requests.exceptions.RequestException as e:
                delay = 2 * (2 ** attempt)
                if attempt < WEBHOOK_ATTEMPTS - 1:
                    self.logger.warning(
                        f"Webhook send failed (attempt {attempt + 1}/{WEBHOOK_ATTEMPTS}), retrying in {delay}s: {e}"
                    )
                    self.sleep(delay)
                else:
                    self.logger.error(f"Webhook send failed after {WEBHOOK_ATTEMPTS} attempts: {e}")
        return False
