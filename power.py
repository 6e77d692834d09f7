import math
import time
import pytz
from datetime import datetime
from datetime import timedelta
from events import EventType

PAUSE_CHECK_INTERVAL = 5  # Seconds between checks for an expired pause

class PowerScheduler():
  def __init__(self, logger, bus, zones, power = False, pauseTimeout = 0, timezone = "UTC", clock = time.time):
    self.logger = logger
    self.bus = bus
    self.zones = zones
    self.timezone = timezone
    self.clock = clock
    self.pauseTimeout = pauseTimeout
    # A pending pause always starts the system switched off
    self.power = power and pauseTimeout == 0

  def isPowered(self):
    return self.power

  def setPower(self, value):
    if not isinstance(value, bool):
      self.logger.warning("Invalid power value '%s' ignored." % value)
      return False

    if not value:
      # Finish any running zones gracefully before switching off
      self.zones.powerOff()
    elif self.pauseTimeout != 0:
      self._setPauseTimeout(0)

    changed = value != self.power
    self.power = value
    if changed:
      self.bus.publish(EventType.POWER, power=value, time=self.clock())
    self.logger.info("Irrigation system was turned '%s'." % ("On" if value else "Off"))
    return True

  def setPause(self, until):
    if isinstance(until, bool) or not isinstance(until, (int, float)) or not math.isfinite(until) or until < 0:
      self.logger.warning("Invalid pause timestamp '%s' ignored." % until)
      return False

    until = int(until)
    if until == 0:
      self._setPauseTimeout(0)
      self.logger.info("Watering pause cleared.")
      return True

    if until <= self.clock():
      self.logger.warning("Pause timestamp %s is in the past. Ignored." % until)
      return False

    self._setPauseTimeout(until)
    self.logger.warning("Watering has been paused until %s." % datetime.fromtimestamp(until).isoformat())
    if self.power:
      self.setPower(False)
    return True

  def pauseForDays(self, days):
    """Pause watering for the rest of today (1) or today and following days (>1).

    The pause ends at local midnight in the configured timezone.
    """
    if isinstance(days, bool) or not isinstance(days, int) or days < 1:
      self.logger.warning("Invalid pause duration '%s' days ignored." % days)
      return False
    tz = pytz.timezone(self.timezone)
    now = datetime.fromtimestamp(self.clock(), tz)
    midnight = tz.localize(datetime(now.year, now.month, now.day) + timedelta(days=days))
    return self.setPause(int(midnight.timestamp()))

  def _setPauseTimeout(self, value):
    if value == self.pauseTimeout:
      return
    self.pauseTimeout = value
    self.bus.publish(EventType.PAUSE, pause_timeout=value, time=self.clock())

  def tick(self):
    if self.pauseTimeout != 0 and self.clock() >= self.pauseTimeout:
      self.logger.info("Watering has resumed after being paused for a period.")
      self.setPower(True)

  def snapshot(self):
    return {
      "power": self.power,
      "pause_timeout": self.pauseTimeout,
      "paused": self.pauseTimeout != 0,
    }
