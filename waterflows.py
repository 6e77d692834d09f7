import time
import threading
from datetime import datetime
from datetime import timedelta
from collections import deque
from events import EventType

FLOW_INTERVAL = 1  # Seconds between flow samples (1Hz)
HISTORY_MINUTES = 120

class FlowSampler():
  """Turns flow sensor pulses into FLOW events.

  Q (L/min) = pulses per second * calibration factor
  V (L)     = Q * elapsed minutes
  """

  def __init__(self, logger, bus, config, clock = time.time):
    self.logger = logger
    self.bus = bus
    self.clock = clock
    self.pin = config.pin
    self.flowRate = config.flowRate
    self.started = False
    self._pulseCounter = 0
    self._lastFlowTime = clock()
    self._lock = threading.Lock()
    self._lastRate = 0
    self._minuteVolume = 0
    self._minuteStart = datetime.fromtimestamp(self._lastFlowTime)
    # Last 120 minutes of water usage as (timestamp, liters) tuples
    self._history = deque(maxlen=HISTORY_MINUTES)
    for i in range(HISTORY_MINUTES):
      self._history.append((self._minuteStart - timedelta(minutes=HISTORY_MINUTES-i), 0.0))

  # Can be called multiple times. Make sure to initialize only once
  def start(self, hardware):
    if self.started:
      return

    self.logger.info("Setting up water flow sensor on pin %s." % self.pin)
    with self._lock:
      self._pulseCounter = 0
      self._lastFlowTime = self.clock()
    hardware.pollDigitalInput(self.pin, self.pulse)
    self.started = True

  def pulse(self):
    with self._lock:
      self._pulseCounter += 1

  def sample(self):
    now = self.clock()
    with self._lock:
      pulses = self._pulseCounter
      elapsed = now - self._lastFlowTime
      self._pulseCounter = 0
      self._lastFlowTime = now

    if elapsed <= 0:
      return None

    rate = (pulses / elapsed) * self.flowRate
    volume = rate * (elapsed / 60)
    self._lastRate = rate
    self._updateHistory(now, volume)
    return self.bus.publish(EventType.FLOW, time=now, rate=rate, volume=volume)

  def lastRate(self):
    return self._lastRate

  def _updateHistory(self, now, volume):
    nowTime = datetime.fromtimestamp(now)
    if nowTime >= self._minuteStart + timedelta(seconds=60):
      self._history.append((self._minuteStart, round(self._minuteVolume, 3)))
      self._minuteStart = nowTime
      self._minuteVolume = 0
    self._minuteVolume += volume

  def getHistory(self):
    """Return the last 120 minutes of water usage as dicts with timestamp and liters"""
    return [{"timestamp": ts.isoformat(), "liters": val} for ts, val in self._history]
